"""
Review firewall: happy customers are sent to the public review platform,
unhappy ones to a private feedback form read by the restaurant.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import config
from firebase_util import COLLECTIONS, DocumentStore

logger = logging.getLogger(__name__)

PUBLIC = "public"
INTERNAL = "internal"


def route_review(rating: int, threshold: int = config.PUBLIC_REVIEW_MIN_RATING) -> str:
    if not 1 <= rating <= 5:
        raise ValueError(f"rating must be between 1 and 5, got {rating}")
    return PUBLIC if rating >= threshold else INTERNAL


def submit_feedback(
    store: DocumentStore,
    restaurant_id: str,
    table_id: str,
    rating: int,
    comment: str,
    email: Optional[str],
    now: datetime,
) -> Dict[str, Any]:
    branch = route_review(rating)

    if branch == PUBLIC:
        restaurant = store.get(COLLECTIONS["RESTAURANTS"], restaurant_id) or {}
        review_url = restaurant.get("googleReviewUrl")
        if not review_url:
            logger.warning("⚠️ No public review link configured for restaurant %s", restaurant_id)
        return {"branch": PUBLIC, "reviewUrl": review_url}

    review_id = store.add(COLLECTIONS["INTERNAL_REVIEWS"], {
        "restaurantId": restaurant_id,
        "tableId": table_id,
        "rating": rating,
        "comment": comment.strip(),
        "email": email or None,
        "isRead": False,
        "createdAt": now.isoformat(),
    })
    logger.info("✓ Internal review created: %s", review_id)
    return {"branch": INTERNAL, "reviewId": review_id}
