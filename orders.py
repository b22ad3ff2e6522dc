"""
Checkout: turning a submitted cart into an order document.

Totals are recomputed here from the submitted lines; a coupon is checked
again and claimed together with the order.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from cart import calculate_discount, calculate_order_total
from coupons import aware, claim_coupon, local_now, release_coupon
from firebase_util import COLLECTIONS, DocumentStore
from models import OrderCreate, OrderStatus

logger = logging.getLogger(__name__)

PENDING_VALIDATION = "pending_validation"

# status -> timestamp field set when entering it
STATUS_TIMESTAMPS = {
    "preparing": "validatedAt",
    "ready": "readyAt",
    "served": "servedAt",
}


class OrderError(Exception):
    status_code = 400


class OrderNotFoundError(OrderError):
    status_code = 404

    def __init__(self):
        super().__init__("Commande introuvable")


@dataclass
class OrderResult:
    order_id: str
    subtotal: int
    discount_amount: int
    total_amount: int


def create_order(store: DocumentStore, data: OrderCreate, now: Optional[datetime] = None) -> OrderResult:
    """
    Write a ``pending_validation`` order. With ``couponId`` the coupon is
    claimed first and released again if the order cannot be written.

    Raises the coupon errors of ``coupons.claim_coupon``.
    """
    now = aware(now) if now else local_now()
    subtotal = calculate_order_total(data.items)
    doc = data.model_dump(exclude_none=True)
    doc.update({
        "status": PENDING_VALIDATION,
        "createdAt": now.isoformat(),
        "updatedAt": now.isoformat(),
    })

    if not data.couponId:
        doc["totalAmount"] = subtotal
        order_id = store.add(COLLECTIONS["ORDERS"], doc)
        logger.info("✅ Order created: %s", order_id)
        return OrderResult(order_id, subtotal, 0, subtotal)

    coupon = claim_coupon(store, data.couponId, data.restaurantId, now=now)
    discount = calculate_discount(coupon.discountType, coupon.discountValue, subtotal)
    total = max(0, subtotal - discount)
    doc.update({
        "subtotalBeforeDiscount": subtotal,
        "discountAmount": discount,
        "totalAmount": total,
    })
    try:
        order_id = store.add(COLLECTIONS["ORDERS"], doc)
    except Exception:
        release_coupon(store, data.couponId)
        raise
    store.update(COLLECTIONS["COUPONS"], data.couponId, {"orderId": order_id})

    logger.info("✅ Order created with coupon: %s (saved %d)", order_id, discount)
    return OrderResult(order_id, subtotal, discount, total)


def update_order_status(
    store: DocumentStore,
    order_id: str,
    status: OrderStatus,
    rejection_reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    now = aware(now) if now else local_now()
    if status == "rejected" and not rejection_reason:
        raise OrderError("Le motif du refus est requis")
    if store.get(COLLECTIONS["ORDERS"], order_id) is None:
        raise OrderNotFoundError()

    fields = {"status": status, "updatedAt": now.isoformat()}
    if status in STATUS_TIMESTAMPS:
        fields[STATUS_TIMESTAMPS[status]] = now.isoformat()
    if status == "rejected":
        fields["rejectionReason"] = rejection_reason

    store.update(COLLECTIONS["ORDERS"], order_id, fields)
    logger.info("✅ Order %s updated to status: %s", order_id, status)
