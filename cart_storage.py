"""
Persistence for the cart.

A cart is stored as one JSON entry in a key/value storage::

    {"version": 1, "items": [...], "restaurantId": ..., "tableId": ...,
     "appliedCoupon": ..., "timestamp": <epoch ms of the last write>}

Loading never raises: an expired, unreadable or incompatible entry gives an
empty cart.
"""
import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Union

from pydantic import BaseModel, ValidationError

import cart
import config
from cart import CartLimits, CartState, DEFAULT_LIMITS, EMPTY_CART
from models import AppliedCoupon, CartItem, CartOption, Product

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class StorageError(Exception):
    """Storage is unavailable or full."""


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    def __init__(self, quota: Optional[int] = None):
        self.data: Dict[str, str] = {}
        self.quota = quota

    def get_item(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self.quota is not None and len(value) > self.quota:
            raise StorageError(f"quota exceeded ({len(value)} > {self.quota})")
        self.data[key] = value

    def remove_item(self, key: str) -> None:
        self.data.pop(key, None)


class FileStorage:
    """One file per key inside ``directory``."""

    def __init__(self, directory: str):
        self.directory = directory

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, f"{key}.json")

    def get_item(self, key: str) -> Optional[str]:
        try:
            with open(self._path(key), encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def set_item(self, key: str, value: str) -> None:
        os.makedirs(self.directory, exist_ok=True)
        tmp = self._path(key) + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(value)
        os.replace(tmp, self._path(key))

    def remove_item(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass


class CartSnapshot(BaseModel):
    version: int
    items: List[CartItem]
    restaurantId: Optional[str]
    tableId: Optional[str]
    appliedCoupon: Optional[AppliedCoupon]
    timestamp: int


# Load results

@dataclass(frozen=True)
class Loaded:
    state: CartState


@dataclass(frozen=True)
class Absent:
    pass


@dataclass(frozen=True)
class Expired:
    age_ms: int


@dataclass(frozen=True)
class Corrupted:
    reason: str


LoadResult = Union[Loaded, Absent, Expired, Corrupted]


def parse_snapshot(raw: Optional[str], now: int, max_age_ms: int = config.SESSION_TIMEOUT_MS) -> LoadResult:
    if raw is None:
        return Absent()
    try:
        snapshot = CartSnapshot.model_validate_json(raw)
    except ValidationError as e:
        return Corrupted(f"invalid cart snapshot: {e.error_count()} error(s)")
    if snapshot.version != config.CART_VERSION:
        return Corrupted(f"incompatible cart version {snapshot.version}")
    problem = _check_snapshot(snapshot)
    if problem:
        return Corrupted(problem)
    age = now - snapshot.timestamp
    if age > max_age_ms:
        return Expired(age)
    return Loaded(CartState(
        items=snapshot.items,
        restaurantId=snapshot.restaurantId,
        tableId=snapshot.tableId,
        appliedCoupon=snapshot.appliedCoupon,
    ))


def _check_snapshot(snapshot: CartSnapshot) -> Optional[str]:
    """Cart rules the schema alone cannot express."""
    if snapshot.items and not (snapshot.restaurantId and snapshot.tableId):
        return "cart items without a restaurant/table context"
    for item in snapshot.items:
        if item.product is not None and item.product.restaurantId != snapshot.restaurantId:
            return f"item {item.productId} belongs to another restaurant"
    total = sum(item.quantity for item in snapshot.items)
    if total > config.MAX_CART_ITEMS:
        return f"cart holds {total} items (max {config.MAX_CART_ITEMS})"
    return None


def dump_snapshot(state: CartState, now: int) -> str:
    snapshot = CartSnapshot(
        version=config.CART_VERSION,
        items=state.items,
        restaurantId=state.restaurantId,
        tableId=state.tableId,
        appliedCoupon=state.appliedCoupon,
        timestamp=now,
    )
    return snapshot.model_dump_json()


class CartRepository:
    def __init__(
        self,
        storage: KeyValueStorage,
        key: str = config.CART_STORAGE_KEY,
        max_age_ms: int = config.SESSION_TIMEOUT_MS,
        clock: Callable[[], int] = now_ms,
    ):
        self.storage = storage
        self.key = key
        self.max_age_ms = max_age_ms
        self.clock = clock

    def load(self) -> CartState:
        try:
            raw = self.storage.get_item(self.key)
        except (OSError, StorageError) as e:
            logger.error("❌ Cart storage unreadable, starting empty: %s", e)
            return EMPTY_CART

        result = parse_snapshot(raw, self.clock(), self.max_age_ms)
        if isinstance(result, Loaded):
            return result.state
        if isinstance(result, Expired):
            logger.info("Cart expired (%d ms old), clearing", result.age_ms)
        elif isinstance(result, Corrupted):
            logger.warning("⚠️ %s, resetting cart", result.reason)
            try:
                self.storage.remove_item(self.key)
            except (OSError, StorageError) as e:
                logger.error("❌ Could not remove corrupted cart: %s", e)
        return EMPTY_CART

    def save(self, state: CartState) -> None:
        self.storage.set_item(self.key, dump_snapshot(state, self.clock()))


class CartSession:
    """
    A cart bound to a repository. Every mutation is written through; if the
    storage fails the session keeps working in memory only.
    """

    def __init__(self, repository: CartRepository, limits: CartLimits = DEFAULT_LIMITS):
        self.repository = repository
        self.limits = limits
        self.persistent = True
        self.state = repository.load()

    def _commit(self, state: CartState) -> None:
        self.state = state
        if not self.persistent:
            return
        try:
            self.repository.save(state)
        except (OSError, StorageError) as e:
            logger.error("❌ Cart storage unavailable, keeping cart in memory only: %s", e)
            self.persistent = False

    def set_context(self, restaurant_id: str, table_id: str) -> None:
        self._commit(cart.set_context(self.state, restaurant_id, table_id))

    def add_item(self, product: Product, quantity: int = 1, options: Optional[List[CartOption]] = None) -> None:
        self._commit(cart.add_item(self.state, product, quantity, options, self.limits))

    def remove_item(self, product_id: str) -> None:
        self._commit(cart.remove_item(self.state, product_id))

    def update_quantity(self, product_id: str, quantity: int) -> None:
        self._commit(cart.update_quantity(self.state, product_id, quantity, self.limits))

    def clear_cart(self, force: bool = False) -> None:
        self._commit(cart.clear_cart(self.state, force))

    def apply_coupon(self, coupon: AppliedCoupon) -> None:
        self._commit(cart.apply_coupon(self.state, coupon))

    def remove_coupon(self) -> None:
        self._commit(cart.remove_coupon(self.state))

    @property
    def total_items(self) -> int:
        return cart.get_total_items(self.state)

    @property
    def subtotal(self) -> int:
        return cart.get_subtotal(self.state)

    @property
    def discount_amount(self) -> int:
        return cart.get_discount_amount(self.state)

    @property
    def total_amount(self) -> int:
        return cart.get_total_amount(self.state)
