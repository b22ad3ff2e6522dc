"""
Cart / pricing engine.

The cart is an immutable ``CartState``; every operation takes a state and
returns a new one, so a rejected operation leaves the caller's state as it
was. Persistence lives in ``cart_storage``.

All amounts are integers in the smallest currency unit.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict

import config
from models import AppliedCoupon, CartItem, CartOption, OrderItem, Product

logger = logging.getLogger(__name__)


# Errors

class CartError(Exception):
    """Base class for rejected cart operations. ``str(err)`` is user-facing."""
    message = "Impossible de modifier le panier"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)


class NoContextError(CartError):
    message = "Veuillez scanner le QR code de votre table avant de commander"


class CrossRestaurantError(CartError):
    message = "Impossible de mélanger les produits de plusieurs restaurants"


class InvalidQuantityError(CartError):
    message = "La quantité doit être positive"


class CartFullError(CartError):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Impossible d'ajouter plus de {limit} articles au panier")


class MaxQuantityError(CartError):
    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Impossible d'ajouter plus de {limit} fois le même article")


@dataclass(frozen=True)
class CartLimits:
    max_cart_items: int = config.MAX_CART_ITEMS
    max_order_quantity: int = config.MAX_ORDER_QUANTITY


DEFAULT_LIMITS = CartLimits()


class CartState(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: List[CartItem] = []
    restaurantId: Optional[str] = None
    tableId: Optional[str] = None
    appliedCoupon: Optional[AppliedCoupon] = None


EMPTY_CART = CartState()


# Pricing helpers

def _option_key(opt: CartOption):
    return (opt.name, opt.value, opt.priceModifier is None, opt.priceModifier or 0)


def are_options_equal(opts1: Optional[Iterable[CartOption]], opts2: Optional[Iterable[CartOption]]) -> bool:
    """Compare two option lists regardless of their order."""
    a = sorted(opts1 or [], key=_option_key)
    b = sorted(opts2 or [], key=_option_key)
    if len(a) != len(b):
        return False
    return all(
        x.name == y.name and x.value == y.value and x.priceModifier == y.priceModifier
        for x, y in zip(a, b)
    )


def calculate_order_total(items: Iterable[Union[CartItem, OrderItem]]) -> int:
    total = 0
    for item in items:
        modifiers = sum(opt.priceModifier or 0 for opt in item.options or [])
        total += (item.unitPrice + modifiers) * item.quantity
    return total


def calculate_discount(discount_type: str, discount_value: int, subtotal: int) -> int:
    if discount_type == "percentage":
        # half-up rounding on integers
        return (subtotal * discount_value + 50) // 100
    if discount_type == "fixed_amount":
        return min(discount_value, subtotal)
    # free_item: which item becomes free is not defined yet
    return 0


# Computed values

def get_total_items(state: CartState) -> int:
    return sum(item.quantity for item in state.items)


def get_subtotal(state: CartState) -> int:
    return calculate_order_total(state.items)


def get_discount_amount(state: CartState) -> int:
    coupon = state.appliedCoupon
    if coupon is None:
        return 0
    return calculate_discount(coupon.discountType, coupon.discountValue, get_subtotal(state))


def get_total_amount(state: CartState) -> int:
    return max(0, get_subtotal(state) - get_discount_amount(state))


# Operations

def set_context(state: CartState, restaurant_id: str, table_id: str) -> CartState:
    if state.restaurantId and state.restaurantId != restaurant_id and state.items:
        logger.warning("⚠️ Restaurant context changed (%s -> %s), clearing cart", state.restaurantId, restaurant_id)
        return state.model_copy(update={
            "items": [],
            "appliedCoupon": None,
            "restaurantId": restaurant_id,
            "tableId": table_id,
        })
    return state.model_copy(update={"restaurantId": restaurant_id, "tableId": table_id})


def add_item(
    state: CartState,
    product: Product,
    quantity: int = 1,
    options: Optional[List[CartOption]] = None,
    limits: CartLimits = DEFAULT_LIMITS,
) -> CartState:
    """
    Add ``quantity`` of ``product`` to the cart.

    A line with the same product id and the same options (in any order)
    is incremented instead of duplicated.
    """
    if not state.restaurantId or not state.tableId:
        raise NoContextError()
    if product.restaurantId != state.restaurantId:
        raise CrossRestaurantError()
    if quantity <= 0:
        raise InvalidQuantityError()
    if get_total_items(state) + quantity > limits.max_cart_items:
        raise CartFullError(limits.max_cart_items)

    items = list(state.items)
    for index, item in enumerate(items):
        if item.productId == product.id and are_options_equal(item.options, options):
            new_quantity = item.quantity + quantity
            if new_quantity > limits.max_order_quantity:
                raise MaxQuantityError(limits.max_order_quantity)
            items[index] = item.model_copy(update={"quantity": new_quantity})
            return state.model_copy(update={"items": items})

    if quantity > limits.max_order_quantity:
        raise MaxQuantityError(limits.max_order_quantity)
    items.append(CartItem(
        productId=product.id,
        productName=product.name,
        quantity=quantity,
        unitPrice=product.price,
        options=list(options) if options else None,
        product=product,
    ))
    return state.model_copy(update={"items": items})


def remove_item(state: CartState, product_id: str) -> CartState:
    # Drops every option variant of the product.
    return state.model_copy(update={"items": [i for i in state.items if i.productId != product_id]})


def update_quantity(
    state: CartState,
    product_id: str,
    quantity: int,
    limits: CartLimits = DEFAULT_LIMITS,
) -> CartState:
    if quantity <= 0:
        return remove_item(state, product_id)
    if quantity > limits.max_order_quantity:
        raise MaxQuantityError(limits.max_order_quantity)
    items = [
        item.model_copy(update={"quantity": quantity}) if item.productId == product_id else item
        for item in state.items
    ]
    return state.model_copy(update={"items": items})


def clear_cart(state: CartState, force: bool = False) -> CartState:
    """Empty items and coupon, keep the restaurant/table context."""
    if not force and state.items:
        logger.warning("⚠️ Clearing cart with items. Set force=True to suppress this warning.")
    return state.model_copy(update={"items": [], "appliedCoupon": None})


def apply_coupon(state: CartState, coupon: AppliedCoupon) -> CartState:
    # Coupon must already have been verified server side.
    return state.model_copy(update={"appliedCoupon": coupon})


def remove_coupon(state: CartState) -> CartState:
    return state.model_copy(update={"appliedCoupon": None})
