import json
from datetime import timedelta

import httpx
import pytest

import main
from concierge import ChatCompletionClient
from conftest import NOW, campaign_doc, coupon_doc


@pytest.fixture
def admin_key(monkeypatch):
    monkeypatch.setattr(main, "ADMIN_KEY", "secret")
    return "secret"


def use_llm(handler, api_key="sk-test"):
    llm = ChatCompletionClient(api_key=api_key, base_url="https://llm.test", transport=httpx.MockTransport(handler))
    main.app.dependency_overrides[main.get_chat_client] = lambda: llm


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


# coupons

def test_verify_requires_fields(client):
    r = client.post("/api/coupon/verify", json={"restaurantId": "r1"})
    assert r.status_code == 400
    assert r.json() == {"valid": False, "error": "restaurantId et code sont requis"}


def test_verify_valid(client, store):
    store.add("coupons", coupon_doc(NOW - timedelta(days=2), NOW + timedelta(days=5)))

    r = client.post("/api/coupon/verify", json={"restaurantId": "r1", "code": "promo-abc12"})

    assert r.status_code == 200
    body = r.json()
    assert body["valid"] is True
    assert body["coupon"]["code"] == "PROMO-ABC12"
    assert body["coupon"]["discountType"] == "percentage"
    assert "validUntil" in body["coupon"]


def test_verify_not_found(client):
    r = client.post("/api/coupon/verify", json={"restaurantId": "r1", "code": "PROMO-XXXXX"})
    assert r.status_code == 404
    assert r.json() == {"valid": False, "error": "Code invalide"}


def test_verify_same_day(client, store):
    store.add("coupons", coupon_doc(NOW - timedelta(hours=2), NOW + timedelta(days=5)))
    r = client.post("/api/coupon/verify", json={"restaurantId": "r1", "code": "PROMO-ABC12"})
    assert r.status_code == 400
    assert "prochaine visite" in r.json()["error"]


def test_generate_requires_fields(client):
    r = client.post("/api/campaign/generate-coupon", json={"campaignId": "c1"})
    assert r.status_code == 400


def test_generate_win(client, store):
    store.collections["campaigns"]["c1"] = campaign_doc(win_probability=30)

    r = client.post("/api/campaign/generate-coupon",
                    json={"campaignId": "c1", "restaurantId": "r1", "deviceId": "d1"})

    body = r.json()
    assert r.status_code == 200
    assert body["won"] is True
    assert body["coupon"]["code"].startswith("PROMO-")
    assert body["message"].startswith("Félicitations")


def test_generate_lose(client, store):
    store.collections["campaigns"]["c1"] = campaign_doc(win_probability=5)
    r = client.post("/api/campaign/generate-coupon",
                    json={"campaignId": "c1", "restaurantId": "r1", "deviceId": "d1"})
    assert r.json() == {"won": False, "message": "Dommage ! Réessayez plus tard."}


def test_generate_unknown_campaign(client):
    r = client.post("/api/campaign/generate-coupon",
                    json={"campaignId": "nope", "restaurantId": "r1", "deviceId": "d1"})
    assert r.status_code == 404
    assert r.json() == {"error": "Campagne introuvable"}


def test_redeem_and_list(client, store):
    coupon_id = store.add("coupons", coupon_doc(NOW - timedelta(days=2), NOW + timedelta(days=5)))

    r = client.post("/api/coupon/redeem", json={"restaurantId": "r1", "couponId": coupon_id, "orderId": "o1"})
    assert r.json()["success"] is True

    r = client.post("/api/coupon/redeem", json={"restaurantId": "r1", "couponId": coupon_id, "orderId": "o2"})
    assert r.status_code == 409

    r = client.get("/api/coupons", params={"restaurantId": "r1", "deviceId": "d1"})
    assert [c["status"] for c in r.json()["coupons"]] == ["used"]


def test_redeem_same_day_coupon_is_refused(client, store):
    coupon_id = store.add("coupons", coupon_doc(NOW.replace(hour=8), NOW + timedelta(days=5)))
    r = client.post("/api/coupon/redeem", json={"restaurantId": "r1", "couponId": coupon_id, "orderId": "o1"})
    assert r.status_code == 400
    assert store.get("coupons", coupon_id)["status"] == "active"


def test_admin_routes_need_key(client, admin_key):
    r = client.post("/api/coupons/expire", params={"restaurantId": "r1"}, headers={"x-api-key": "wrong"})
    assert r.status_code == 401


def test_admin_create_campaign_and_expire(client, store, admin_key):
    r = client.post("/api/campaigns", headers={"x-api-key": admin_key}, json={
        "restaurantId": "r1", "name": "Ramadan", "winProbability": 25, "rewardType": "percentage",
        "rewardValue": 15, "rewardDescription": "15% de réduction", "validityDays": 10,
    })
    assert r.status_code == 201
    assert r.json()["id"] in store.collections["campaigns"]

    store.add("coupons", coupon_doc(NOW - timedelta(days=20), NOW - timedelta(days=1)))
    r = client.post("/api/coupons/expire", params={"restaurantId": "r1"}, headers={"x-api-key": admin_key})
    assert r.json() == {"expired": 1}


def test_admin_campaign_validation(client, admin_key):
    r = client.post("/api/campaigns", headers={"x-api-key": admin_key}, json={
        "restaurantId": "r1", "name": "Trop", "winProbability": 120, "rewardType": "percentage",
        "rewardValue": 15, "rewardDescription": "15%", "validityDays": 10,
    })
    assert r.status_code == 422


# AI

def seed_menu(store):
    store.collections["restaurants"]["r1"] = {"name": "Chez Fatou"}
    store.collections["products"]["p1"] = {"restaurantId": "r1", "name": "Yassa", "price": 3000,
                                           "description": "Poulet épicé"}


def test_chat_streams_reply(client, store):
    seed_menu(store)
    seen = {}

    def handler(request):
        seen["payload"] = json.loads(request.content)
        chunk = {"choices": [{"delta": {"content": "Le Yassa 🍗 !"}}]}
        return httpx.Response(200, content=f"data: {json.dumps(chunk)}\n\ndata: [DONE]\n\n".encode())

    use_llm(handler)
    r = client.post("/api/chat", json={"restaurantId": "r1", "messages": [{"role": "user", "content": "Un conseil ?"}]})

    assert r.status_code == 200
    assert r.text == "Le Yassa 🍗 !"
    system = seen["payload"]["messages"][0]
    assert system["role"] == "system"
    assert "Chez Fatou" in system["content"]
    assert '"spicy"' in system["content"]


def test_chat_validation(client):
    assert client.post("/api/chat", json={"messages": []}).status_code == 400
    assert client.post("/api/chat", json={"restaurantId": "r1"}).status_code == 400


def test_chat_without_api_key(client, store):
    seed_menu(store)
    use_llm(lambda request: httpx.Response(200), api_key="")
    r = client.post("/api/chat", json={"restaurantId": "r1", "messages": []})
    assert r.status_code == 500
    assert r.json()["error"] == "OpenAI API key not configured"


def test_chat_without_menu(client):
    use_llm(lambda request: httpx.Response(200))
    r = client.post("/api/chat", json={"restaurantId": "r1", "messages": []})
    assert r.status_code == 404


def test_chat_rate_limited(client, store):
    seed_menu(store)
    use_llm(lambda request: httpx.Response(429, text="rate limit"))
    r = client.post("/api/chat", json={"restaurantId": "r1", "messages": []})
    assert r.status_code == 429
    assert r.json()["error"] == "Rate limit exceeded"


def test_chat_suggestions(client):
    assert len(client.get("/api/chat/suggestions").json()["suggestions"]) == 6


UPSELL_BODY = {
    "cartItems": [{"productId": "burger", "productName": "Burger", "quantity": 1, "unitPrice": 4500}],
    "menuContext": [
        {"id": "burger", "name": "Burger", "price": 4500},
        {"id": "bissap", "name": "Bissap", "price": 1000},
    ],
}


def test_upsell(client):
    use_llm(lambda request: httpx.Response(200, json={"choices": [{"message": {
        "content": '{"suggestedProductId": "bissap", "shortReason": "Pour se rafraîchir"}'}}]}))
    r = client.post("/api/ai/upsell", json=UPSELL_BODY)
    assert r.status_code == 200
    assert r.json() == {"suggestedProductId": "bissap", "shortReason": "Pour se rafraîchir"}


def test_upsell_unknown_product_is_an_error(client):
    use_llm(lambda request: httpx.Response(200, json={"choices": [{"message": {
        "content": '{"suggestedProductId": "ghost", "shortReason": "Boo"}'}}]}))
    r = client.post("/api/ai/upsell", json=UPSELL_BODY)
    assert r.status_code == 500


def test_upsell_requires_cart(client):
    r = client.post("/api/ai/upsell", json={"cartItems": [], "menuContext": UPSELL_BODY["menuContext"]})
    assert r.status_code == 400
    assert r.json() == {"error": "Cart items are required"}


def test_upsell_nothing_available(client):
    use_llm(lambda request: httpx.Response(500))
    body = dict(UPSELL_BODY, menuContext=UPSELL_BODY["menuContext"][:1])
    r = client.post("/api/ai/upsell", json=body)
    assert r.json() == {"suggestedProductId": None, "shortReason": "Aucun produit disponible"}


# feedback

def test_feedback_happy_customer_goes_public(client, store):
    store.collections["restaurants"]["r1"] = {"name": "Chez Fatou", "googleReviewUrl": "https://g.page/r/fatou"}
    r = client.post("/api/feedback", json={"restaurantId": "r1", "tableId": "t1", "rating": 5})
    assert r.json() == {"branch": "public", "reviewUrl": "https://g.page/r/fatou"}
    assert store.collections["internal_reviews"] == {}


def test_feedback_unhappy_customer_stays_internal(client, store):
    r = client.post("/api/feedback", json={"restaurantId": "r1", "tableId": "t1", "rating": 2,
                                           "comment": " Trop froid ", "email": "a@b.sn"})
    body = r.json()
    assert body["branch"] == "internal"
    review = store.get("internal_reviews", body["reviewId"])
    assert review["comment"] == "Trop froid"
    assert review["isRead"] is False


def test_feedback_rating_out_of_range(client):
    r = client.post("/api/feedback", json={"restaurantId": "r1", "tableId": "t1", "rating": 6})
    assert r.status_code == 422


# orders

ORDER = {
    "restaurantId": "r1",
    "tableId": "t1",
    "tableLabelString": "Table 1",
    "customerSessionId": "s1",
    "items": [{"productId": "p1", "productName": "Burger", "quantity": 2, "unitPrice": 5000}],
}


def test_create_order_with_coupon(client, store):
    coupon_id = store.add("coupons", coupon_doc(NOW - timedelta(days=2), NOW + timedelta(days=5)))

    r = client.post("/api/orders", json=dict(ORDER, couponId=coupon_id))

    assert r.status_code == 201
    body = r.json()
    assert body["subtotalBeforeDiscount"] == 10000
    assert body["discountAmount"] == 1000
    assert body["totalAmount"] == 9000
    assert store.get("coupons", coupon_id)["orderId"] == body["orderId"]


def test_create_order_with_rejected_coupon(client, store):
    coupon_id = store.add("coupons", coupon_doc(NOW - timedelta(days=20), NOW - timedelta(days=1)))
    r = client.post("/api/orders", json=dict(ORDER, couponId=coupon_id))
    assert r.status_code == 400
    assert r.json() == {"error": "Ce coupon a expiré"}


def test_create_order_validation(client):
    assert client.post("/api/orders", json=dict(ORDER, items=[])).status_code == 422


def test_order_status_needs_admin_key(client, store, admin_key):
    order_id = client.post("/api/orders", json=ORDER).json()["orderId"]

    r = client.patch(f"/api/orders/{order_id}/status", json={"status": "preparing"}, headers={"x-api-key": "wrong"})
    assert r.status_code == 401

    r = client.patch(f"/api/orders/{order_id}/status", json={"status": "preparing"}, headers={"x-api-key": admin_key})
    assert r.json() == {"success": True, "status": "preparing"}
    assert store.get("orders", order_id)["validatedAt"] == NOW.isoformat()


# timed promotions

def test_promotion_lifecycle(client, store, admin_key):
    r = client.post("/api/promotions", headers={"x-api-key": admin_key}, json={
        "restaurantId": "r1", "name": "Happy hour", "recurrence": "recurring",
        "rules": {"daysOfWeek": [6], "startTime": "11:00", "endTime": "13:00"},
        "discount": {"type": "percentage", "value": 20}, "bannerText": "-20% à midi",
    })
    assert r.status_code == 201

    r = client.get("/api/promotions/active", params={"restaurantId": "r1"})
    body = r.json()
    assert body["promotion"]["bannerText"] == "-20% à midi"
    assert body["timeRemainingMs"] == 60 * 60 * 1000


def test_no_active_promotion(client):
    r = client.get("/api/promotions/active", params={"restaurantId": "r1"})
    assert r.json() == {"promotion": None, "timeRemainingMs": None}


def test_promotion_with_bad_rules(client, admin_key):
    r = client.post("/api/promotions", headers={"x-api-key": admin_key}, json={
        "restaurantId": "r1", "name": "Happy hour", "recurrence": "recurring",
        "rules": {"daysOfWeek": [6], "startTime": "13:00", "endTime": "11:00"},
        "discount": {"type": "percentage", "value": 20}, "bannerText": "-20%",
    })
    assert r.status_code == 400
