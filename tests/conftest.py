import itertools
import random
from collections import defaultdict
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

import main
from firebase_util import get_store
from models import Product

TZ = ZoneInfo("Africa/Dakar")
NOW = datetime(2026, 10, 17, 12, 0, tzinfo=TZ)


class FakeStore:
    """In-memory stand-in for the Firebase document store."""

    def __init__(self):
        self.collections = defaultdict(dict)
        self._ids = itertools.count(1)

    def get(self, collection, doc_id):
        doc = self.collections[collection].get(doc_id)
        return dict(doc) if doc is not None else None

    def add(self, collection, data):
        doc_id = f"{collection}-{next(self._ids)}"
        self.collections[collection][doc_id] = dict(data)
        return doc_id

    def update(self, collection, doc_id, fields):
        self.collections[collection][doc_id].update(fields)

    def query(self, collection, **equals):
        return [
            (doc_id, dict(data))
            for doc_id, data in self.collections[collection].items()
            if all(data.get(k) == v for k, v in equals.items())
        ]

    def transaction(self, collection, doc_id, update_fn):
        new = update_fn(self.get(collection, doc_id))
        self.collections[collection][doc_id] = dict(new)
        return dict(new)


class StubRandom(random.Random):
    """Always draws ``value`` from random()."""

    def __init__(self, value):
        super().__init__(0)
        self.value = value

    def random(self):
        return self.value


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def rng():
    return StubRandom(0.1)  # draw = 10.0


@pytest.fixture
def client(store, rng):
    main.app.dependency_overrides[get_store] = lambda: store
    main.app.dependency_overrides[main.get_clock] = lambda: (lambda: NOW)
    main.app.dependency_overrides[main.get_rng] = lambda: rng
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def make_product(product_id="p1", price=1000, restaurant_id="r1", name=None):
    return Product(id=product_id, restaurantId=restaurant_id, name=name or f"Product {product_id}", price=price)


def coupon_doc(
    created_at,
    valid_until,
    status="active",
    code="PROMO-ABC12",
    restaurant_id="r1",
    device_id="d1",
    discount_type="percentage",
    discount_value=10,
):
    return {
        "restaurantId": restaurant_id,
        "campaignId": "c1",
        "code": code,
        "status": status,
        "discountType": discount_type,
        "discountValue": discount_value,
        "discountDescription": "10% de réduction",
        "deviceId": device_id,
        "createdAt": created_at.isoformat(),
        "validUntil": valid_until.isoformat(),
    }


def campaign_doc(win_probability=50, is_active=True, validity_days=30, restaurant_id="r1"):
    return {
        "restaurantId": restaurant_id,
        "name": "Rentrée",
        "isActive": is_active,
        "winProbability": win_probability,
        "rewardType": "percentage",
        "rewardValue": 10,
        "rewardDescription": "10% de réduction",
        "validityDays": validity_days,
    }
