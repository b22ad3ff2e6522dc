"""
Timed promotions: happy hours repeated on some weekdays and one-shot events
(Christmas, New Year...) that lower product prices while they run.

They are stored in the campaigns collection with ``type: "timed_promotion"``.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from coupons import LOCAL_TZ, aware, local_now
from firebase_util import COLLECTIONS, DocumentStore
from models import Product, PromotionDiscount, TimedPromotion, TimedPromotionCreate

logger = logging.getLogger(__name__)

TIMED_PROMOTION = "timed_promotion"


class PromotionError(ValueError):
    pass


@dataclass
class ProductPrice:
    price: int
    original_price: Optional[int] = None
    has_discount: bool = False


def is_promotion_active(promotion: TimedPromotion, now: Optional[datetime] = None) -> bool:
    now = aware(now).astimezone(LOCAL_TZ) if now else local_now()
    rules = promotion.rules
    if promotion.type != TIMED_PROMOTION or not promotion.isActive or rules is None:
        return False

    if promotion.recurrence == "one_shot":
        if not rules.startDate or not rules.endDate:
            return False
        return aware(rules.startDate) <= now <= aware(rules.endDate)

    if not rules.daysOfWeek or not rules.startTime or not rules.endTime:
        return False
    # 0 = Sunday
    if (now.weekday() + 1) % 7 not in rules.daysOfWeek:
        return False
    return rules.startTime <= now.strftime("%H:%M") <= rules.endTime


def calculate_discounted_price(price: int, discount: PromotionDiscount) -> int:
    if discount.type == "percentage":
        return max(0, price - (price * discount.value + 50) // 100)
    return max(0, price - discount.value)


def is_product_eligible(product: Product, promotion: TimedPromotion) -> bool:
    # no target categories: the whole menu
    return not promotion.targetCategories or product.categoryId in promotion.targetCategories


def get_product_price(product: Product, promotion: Optional[TimedPromotion]) -> ProductPrice:
    if promotion is None or promotion.discount is None or not is_product_eligible(product, promotion):
        return ProductPrice(product.price)
    return ProductPrice(
        price=calculate_discounted_price(product.price, promotion.discount),
        original_price=product.price,
        has_discount=True,
    )


def apply_promotion(product: Product, promotion: Optional[TimedPromotion]) -> Product:
    """The product at its promotional price, ready for ``cart.add_item``."""
    price = get_product_price(product, promotion)
    if not price.has_discount:
        return product
    return product.model_copy(update={"price": price.price})


def time_until_end(promotion: TimedPromotion, now: Optional[datetime] = None) -> Optional[timedelta]:
    now = aware(now).astimezone(LOCAL_TZ) if now else local_now()
    rules = promotion.rules
    if rules is None:
        return None

    if promotion.recurrence == "one_shot" and rules.endDate:
        return max(timedelta(0), aware(rules.endDate) - now)

    if promotion.recurrence == "recurring" and rules.endTime:
        hour, minute = (int(part) for part in rules.endTime.split(":"))
        end_today = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if end_today > now:
            return end_today - now
    return None


def find_active_promotion(store: DocumentStore, restaurant_id: str, now: Optional[datetime] = None) -> Optional[TimedPromotion]:
    docs = store.query(COLLECTIONS["CAMPAIGNS"], restaurantId=restaurant_id, isActive=True)
    for doc_id, data in docs:
        if data.get("type") != TIMED_PROMOTION:
            continue
        promotion = TimedPromotion(id=doc_id, **{k: v for k, v in data.items() if k != "id"})
        if is_promotion_active(promotion, now):
            return promotion
    return None


def validate_promotion(data: TimedPromotionCreate) -> None:
    rules = data.rules
    if data.recurrence == "one_shot":
        if not rules.startDate or not rules.endDate:
            raise PromotionError("Les dates de début et fin sont requises pour un événement unique")
        if aware(rules.endDate) < aware(rules.startDate):
            raise PromotionError("La date de fin doit être après la date de début")
    else:
        if not rules.daysOfWeek:
            raise PromotionError("Au moins un jour doit être sélectionné pour un Happy Hour récurrent")
        if not rules.startTime or not rules.endTime:
            raise PromotionError("Les heures de début et fin sont requises")
        if rules.endTime <= rules.startTime:
            raise PromotionError("L'heure de fin doit être après l'heure de début")
    if data.discount.type == "percentage" and data.discount.value > 100:
        raise PromotionError("La réduction ne peut pas dépasser 100%")
    if not data.bannerText.strip():
        raise PromotionError("Le texte de la bannière est requis")


def create_promotion(store: DocumentStore, data: TimedPromotionCreate, now: Optional[datetime] = None) -> str:
    now = aware(now) if now else local_now()
    validate_promotion(data)
    doc = data.model_dump(mode="json", exclude_none=True)
    doc.update({
        "name": data.name.strip(),
        "bannerText": data.bannerText.strip(),
        "type": TIMED_PROMOTION,
        "createdAt": now.isoformat(),
        "updatedAt": now.isoformat(),
    })
    promotion_id = store.add(COLLECTIONS["CAMPAIGNS"], doc)
    logger.info("✅ Timed promotion created: %s", promotion_id)
    return promotion_id
