"""
Campaigns and coupons: minting coupons from a campaign's win probability,
verifying a code before it is applied to a cart, and marking it used.

Day boundaries ("today", "same day") are local midnight in APP_TIMEZONE.
"""
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import config
from firebase_util import COLLECTIONS, DocumentStore
from models import Campaign, CampaignCreate, Coupon, VerifiedCoupon

logger = logging.getLogger(__name__)

LOCAL_TZ = ZoneInfo(config.APP_TIMEZONE)


class CouponError(Exception):
    status_code = 400


class CampaignNotFoundError(CouponError):
    status_code = 404

    def __init__(self):
        super().__init__("Campagne introuvable")


class CampaignInactiveError(CouponError):
    def __init__(self):
        super().__init__("Cette campagne est inactive")


class CouponNotFoundError(CouponError):
    status_code = 404

    def __init__(self):
        super().__init__("Coupon introuvable")


class CouponAlreadyUsedError(CouponError):
    status_code = 409

    def __init__(self):
        super().__init__("Ce coupon a déjà été utilisé")


class CouponRejectedError(CouponError):
    """Same day, expired or inactive; the message says which."""


@dataclass
class GenerateResult:
    won: bool
    message: str
    coupon: Optional[Coupon] = None


@dataclass
class VerifyResult:
    valid: bool
    status_code: int = 200
    coupon: Optional[VerifiedCoupon] = None
    error: Optional[str] = None


# Time helpers

def local_now() -> datetime:
    return datetime.now(LOCAL_TZ)


def start_of_day(now: datetime) -> datetime:
    """Local midnight of the day ``now`` falls on."""
    return aware(now).astimezone(LOCAL_TZ).replace(hour=0, minute=0, second=0, microsecond=0)


def aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=LOCAL_TZ)


def _to_coupon(doc_id: str, data: Dict[str, Any]) -> Coupon:
    coupon = Coupon(id=doc_id, **{k: v for k, v in data.items() if k != "id"})
    updates = {"createdAt": aware(coupon.createdAt), "validUntil": aware(coupon.validUntil)}
    if coupon.usedAt:
        updates["usedAt"] = aware(coupon.usedAt)
    return coupon.model_copy(update=updates)


def generate_code(rng: random.Random) -> str:
    """PROMO-XXXXX"""
    suffix = "".join(rng.choice(config.COUPON_CODE_CHARS) for _ in range(config.COUPON_CODE_RANDOM_LENGTH))
    return f"{config.COUPON_CODE_PREFIX}-{suffix}"


# Campaigns

def create_campaign(store: DocumentStore, data: CampaignCreate, now: Optional[datetime] = None) -> str:
    now = aware(now) if now else local_now()
    doc = data.model_dump()
    doc["name"] = doc["name"].strip()
    doc["rewardDescription"] = doc["rewardDescription"].strip()
    doc["createdAt"] = now.isoformat()
    doc["updatedAt"] = now.isoformat()
    campaign_id = store.add(COLLECTIONS["CAMPAIGNS"], doc)
    logger.info("✅ Campaign created: %s", campaign_id)
    return campaign_id


def get_campaign(store: DocumentStore, campaign_id: str) -> Optional[Campaign]:
    data = store.get(COLLECTIONS["CAMPAIGNS"], campaign_id)
    # timed promotions share the collection but are not drawn against
    if not data or data.get("type") == "timed_promotion":
        return None
    return Campaign(id=campaign_id, **{k: v for k, v in data.items() if k != "id"})


# Coupons

def count_device_coupons_today(store: DocumentStore, restaurant_id: str, device_id: str, now: datetime) -> int:
    midnight = start_of_day(now)
    docs = store.query(COLLECTIONS["COUPONS"], deviceId=device_id, restaurantId=restaurant_id)
    return sum(1 for doc_id, data in docs if _to_coupon(doc_id, data).createdAt >= midnight)


def generate_coupon(
    store: DocumentStore,
    campaign_id: str,
    restaurant_id: str,
    device_id: str,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
    daily_limit: int = config.MAX_COUPONS_PER_DEVICE_PER_DAY,
) -> GenerateResult:
    """
    Draw against the campaign's win probability and mint a coupon on a win.

    The daily per-device limit is checked before the campaign is looked up.
    Raises CampaignNotFoundError / CampaignInactiveError.
    """
    now = aware(now) if now else local_now()
    rng = rng or random.SystemRandom()

    count = count_device_coupons_today(store, restaurant_id, device_id, now)
    logger.info("📊 Device %s coupon count today: %d", device_id, count)
    if count >= daily_limit:
        return GenerateResult(won=False, message=f"Limite de {daily_limit} coupons par jour atteinte")

    campaign = get_campaign(store, campaign_id)
    if campaign is None:
        raise CampaignNotFoundError()
    if not campaign.isActive:
        raise CampaignInactiveError()

    draw = rng.random() * 100
    won = draw < campaign.winProbability
    logger.info("🎲 Random: %.2f | Probability: %s | Won: %s", draw, campaign.winProbability, won)
    if not won:
        return GenerateResult(won=False, message="Dommage ! Réessayez plus tard.")

    code = generate_code(rng)
    valid_until = now + timedelta(days=campaign.validityDays)
    data = {
        "restaurantId": restaurant_id,
        "campaignId": campaign_id,
        "code": code,
        "status": "active",
        "discountType": campaign.rewardType,
        "discountValue": campaign.rewardValue,
        "discountDescription": campaign.rewardDescription,
        "deviceId": device_id,
        "createdAt": now.isoformat(),
        "validUntil": valid_until.isoformat(),
    }
    # TODO: accept a client request id so a retried call cannot mint a second coupon
    coupon_id = store.add(COLLECTIONS["COUPONS"], data)
    logger.info("🎉 Coupon generated: %s %s", coupon_id, code)

    return GenerateResult(
        won=True,
        coupon=_to_coupon(coupon_id, data),
        message=f"Félicitations ! Vous avez gagné : {campaign.rewardDescription}",
    )


def find_coupon(store: DocumentStore, restaurant_id: str, code: str) -> Optional[Coupon]:
    code = code.strip().upper()
    docs = store.query(COLLECTIONS["COUPONS"], code=code, restaurantId=restaurant_id)
    if not docs:
        return None
    doc_id, data = docs[0]
    return _to_coupon(doc_id, data)


def check_coupon(coupon: Coupon, now: datetime) -> Optional[VerifyResult]:
    """The rejection for ``coupon`` at ``now``, or None when it can be applied."""
    if coupon.status == "used":
        logger.info("❌ Coupon already used: %s", coupon.code)
        return VerifyResult(valid=False, status_code=400, error="Ce coupon a déjà été utilisé")

    if coupon.createdAt >= start_of_day(now):
        logger.info("❌ Coupon cannot be used on same day: %s", coupon.code)
        return VerifyResult(
            valid=False,
            status_code=400,
            error="Ce coupon ne peut être utilisé que lors de votre prochaine visite (pas le même jour)",
        )

    if coupon.status != "active" or coupon.validUntil < now:
        logger.info("❌ Coupon expired: %s", coupon.code)
        return VerifyResult(valid=False, status_code=400, error="Ce coupon a expiré")

    return None


def verify_coupon(store: DocumentStore, restaurant_id: str, code: str, now: Optional[datetime] = None) -> VerifyResult:
    now = aware(now) if now else local_now()
    coupon = find_coupon(store, restaurant_id, code)

    if coupon is None:
        logger.info("❌ Coupon not found: %s", code)
        return VerifyResult(valid=False, status_code=404, error="Code invalide")

    rejection = check_coupon(coupon, now)
    if rejection is not None:
        return rejection

    logger.info("✅ Coupon valid: %s %s", coupon.code, coupon.discountDescription)
    return VerifyResult(valid=True, coupon=VerifiedCoupon(
        id=coupon.id,
        code=coupon.code,
        discountType=coupon.discountType,
        discountValue=coupon.discountValue,
        discountDescription=coupon.discountDescription,
        validUntil=coupon.validUntil,
    ))


def claim_coupon(
    store: DocumentStore,
    coupon_id: str,
    restaurant_id: str,
    order_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Coupon:
    """
    Re-run the verify checks and mark the coupon used in one transaction.

    Raises CouponNotFoundError (also for another restaurant's coupon),
    CouponAlreadyUsedError or CouponRejectedError; the coupon is left
    untouched in every case.
    """
    now = aware(now) if now else local_now()

    def mark_used(current):
        if not current or current.get("restaurantId") != restaurant_id:
            raise CouponNotFoundError()
        if current.get("status") == "used":
            raise CouponAlreadyUsedError()
        rejection = check_coupon(_to_coupon(coupon_id, current), now)
        if rejection is not None:
            raise CouponRejectedError(rejection.error)
        updated = dict(current, status="used", usedAt=now.isoformat())
        if order_id:
            updated["orderId"] = order_id
        return updated

    data = store.transaction(COLLECTIONS["COUPONS"], coupon_id, mark_used)
    logger.info("✅ Coupon used: %s for order: %s", coupon_id, order_id)
    return _to_coupon(coupon_id, data)


def redeem_coupon(
    store: DocumentStore,
    coupon_id: str,
    restaurant_id: str,
    order_id: str,
    now: Optional[datetime] = None,
) -> Coupon:
    return claim_coupon(store, coupon_id, restaurant_id, order_id, now)


def release_coupon(store: DocumentStore, coupon_id: str) -> None:
    """Undo a claim whose order could not be written."""
    store.update(COLLECTIONS["COUPONS"], coupon_id, {"status": "active", "usedAt": None, "orderId": None})
    logger.warning("⚠️ Coupon released: %s", coupon_id)


def expire_old_coupons(store: DocumentStore, restaurant_id: str, now: Optional[datetime] = None) -> int:
    now = aware(now) if now else local_now()
    count = 0
    for doc_id, data in store.query(COLLECTIONS["COUPONS"], restaurantId=restaurant_id, status="active"):
        if _to_coupon(doc_id, data).validUntil < now:
            store.update(COLLECTIONS["COUPONS"], doc_id, {"status": "expired"})
            count += 1
    logger.info("Expired %d coupon(s) for restaurant %s", count, restaurant_id)
    return count


def list_device_coupons(store: DocumentStore, restaurant_id: str, device_id: str) -> List[Coupon]:
    docs = store.query(COLLECTIONS["COUPONS"], deviceId=device_id, restaurantId=restaurant_id)
    coupons = [_to_coupon(doc_id, data) for doc_id, data in docs]
    return sorted(coupons, key=lambda c: c.createdAt, reverse=True)