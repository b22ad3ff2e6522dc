import logging
import os
import random
from datetime import datetime
from typing import Callable

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool

import config
from concierge import (
    ChatCompletionClient, ChatCompletionError, UpsellError,
    build_system_prompt, format_menu_for_ai, quick_suggestions, suggest_upsell,
)
from coupons import (
    CouponError, create_campaign, expire_old_coupons, generate_coupon,
    list_device_coupons, local_now, redeem_coupon, verify_coupon,
)
from firebase_util import COLLECTIONS, DocumentStore, get_store
from models import (
    CampaignCreate, ChatRequest, CouponVerifyRequest, FeedbackRequest, GenerateCouponRequest,
    OrderCreate, OrderStatusUpdate, Product, RedeemCouponRequest, TimedPromotionCreate, UpsellRequest,
)
from orders import OrderError, create_order, update_order_status
from promotions import PromotionError, create_promotion, find_active_promotion, time_until_end
from reviews import submit_feedback

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
logger = logging.getLogger("tableorder")

app = FastAPI(title="Table ordering API")

# 🔐 Allow frontend CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ADMIN_KEY = config.ADMIN_KEY


# 🔐 Admin API key check
def check_admin(api_key: str = Header(..., alias="x-api-key")):
    if api_key != ADMIN_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


# Collaborators, overridden in tests
def get_clock() -> Callable[[], datetime]:
    return local_now


def get_rng() -> random.Random:
    return random.SystemRandom()


def get_chat_client() -> ChatCompletionClient:
    return ChatCompletionClient()


@app.get("/api/health")
def health():
    return {"status": "ok"}


# 🎯 1. VERIFY COUPON
@app.post("/api/coupon/verify")
def verify(
    body: CouponVerifyRequest,
    store: DocumentStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    if not body.restaurantId or not body.code:
        return JSONResponse(status_code=400, content={"valid": False, "error": "restaurantId et code sont requis"})

    logger.info("🎫 Verify coupon: %s %s", body.restaurantId, body.code.upper())
    try:
        result = verify_coupon(store, body.restaurantId, body.code, clock())
    except Exception:
        logger.exception("❌ Coupon verification failed")
        return JSONResponse(status_code=500, content={"valid": False, "error": "Erreur lors de la vérification du coupon"})

    if not result.valid:
        return JSONResponse(status_code=result.status_code, content={"valid": False, "error": result.error})
    return {"valid": True, "coupon": result.coupon.model_dump(mode="json")}


# 🎯 2. GENERATE COUPON
@app.post("/api/campaign/generate-coupon")
def generate(
    body: GenerateCouponRequest,
    store: DocumentStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
    rng: random.Random = Depends(get_rng),
):
    if not body.campaignId or not body.restaurantId or not body.deviceId:
        return JSONResponse(status_code=400, content={"error": "campaignId, restaurantId et deviceId sont requis"})

    logger.info("🎲 Generate coupon: campaign=%s restaurant=%s device=%s", body.campaignId, body.restaurantId, body.deviceId)
    try:
        result = generate_coupon(store, body.campaignId, body.restaurantId, body.deviceId, clock(), rng)
    except CouponError as e:
        return JSONResponse(status_code=e.status_code, content={"error": str(e)})
    except Exception as e:
        logger.exception("❌ Coupon generation failed")
        return JSONResponse(status_code=500, content={"error": f"Erreur lors de la génération du coupon: {e}"})

    response = {"won": result.won, "message": result.message}
    if result.coupon is not None:
        response["coupon"] = result.coupon.model_dump(mode="json")
    return response


# 🎯 3. REDEEM COUPON
@app.post("/api/coupon/redeem")
def redeem(
    body: RedeemCouponRequest,
    store: DocumentStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    try:
        redeem_coupon(store, body.couponId, body.restaurantId, body.orderId, clock())
    except CouponError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"success": True, "message": f"✅ Coupon {body.couponId} utilisé"}


# 🎯 4. DEVICE COUPONS
@app.get("/api/coupons")
def device_coupons(restaurantId: str, deviceId: str, store: DocumentStore = Depends(get_store)):
    coupons = list_device_coupons(store, restaurantId, deviceId)
    return {"coupons": [c.model_dump(mode="json") for c in coupons]}


# 🎯 5. ADMIN: CREATE CAMPAIGN
@app.post("/api/campaigns", status_code=201)
def new_campaign(
    campaign: CampaignCreate,
    api_key: str = Header(..., alias="x-api-key"),
    store: DocumentStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    check_admin(api_key)
    campaign_id = create_campaign(store, campaign, clock())
    return {"id": campaign_id, "message": f"✅ Campagne {campaign.name.strip()} créée"}


# 🎯 6. ADMIN: EXPIRE COUPONS
@app.post("/api/coupons/expire")
def expire_coupons(
    restaurantId: str,
    api_key: str = Header(..., alias="x-api-key"),
    store: DocumentStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    check_admin(api_key)
    return {"expired": expire_old_coupons(store, restaurantId, clock())}


# 🎯 7. AI CHAT
@app.get("/api/chat/suggestions")
def chat_suggestions():
    return {"suggestions": quick_suggestions()}


@app.post("/api/chat")
async def chat(
    body: ChatRequest,
    store: DocumentStore = Depends(get_store),
    client: ChatCompletionClient = Depends(get_chat_client),
):
    if not body.restaurantId:
        return PlainTextResponse("Missing or invalid restaurantId", status_code=400)
    if body.messages is None:
        return PlainTextResponse("Missing or invalid messages", status_code=400)

    if not client.configured:
        return JSONResponse(status_code=500, content={
            "error": "OpenAI API key not configured",
            "message": "Please add your OpenAI API key to .env and restart the server.",
        })

    docs = await run_in_threadpool(store.query, COLLECTIONS["PRODUCTS"], restaurantId=body.restaurantId)
    products = [Product(id=doc_id, **{k: v for k, v in data.items() if k != "id"}) for doc_id, data in docs]
    if not products:
        return JSONResponse(status_code=404, content={
            "error": "No menu available",
            "message": "Désolé, aucun menu n'est disponible pour ce restaurant actuellement.",
        })

    restaurant = await run_in_threadpool(store.get, COLLECTIONS["RESTAURANTS"], body.restaurantId) or {}
    system_prompt = build_system_prompt(restaurant.get("name") or "Restaurant", format_menu_for_ai(products))
    messages = [{"role": "system", "content": system_prompt}] + [m.model_dump() for m in body.messages]
    logger.info("💬 Chat: %d messages, %d menu items", len(body.messages), len(products))

    try:
        deltas = await client.stream_chat(messages)
    except ChatCompletionError as e:
        logger.error("❌ Chat completion failed: %s", e)
        if e.status_code == 429:
            return JSONResponse(status_code=429, content={
                "error": "Rate limit exceeded",
                "message": "Trop de requêtes. Veuillez réessayer dans quelques instants.",
            })
        if e.status_code in (401, 403):
            return JSONResponse(status_code=500, content={
                "error": "API configuration error",
                "message": "Erreur de configuration de l'API OpenAI.",
            })
        return _chat_unavailable()
    except httpx.HTTPError as e:
        logger.error("❌ Chat completion unreachable: %s", e)
        return _chat_unavailable()

    return StreamingResponse(deltas, media_type="text/plain; charset=utf-8")


def _chat_unavailable() -> JSONResponse:
    return JSONResponse(status_code=500, content={
        "error": "Internal server error",
        "message": "Une erreur est survenue. Veuillez réessayer dans quelques instants.",
    })


# 🎯 8. AI UPSELL
@app.post("/api/ai/upsell")
async def upsell(body: UpsellRequest, client: ChatCompletionClient = Depends(get_chat_client)):
    if not body.cartItems:
        return JSONResponse(status_code=400, content={"error": "Cart items are required"})
    if not body.menuContext:
        return JSONResponse(status_code=400, content={"error": "Menu context is required"})

    try:
        suggestion = await suggest_upsell(client, body.cartItems, body.menuContext)
    except UpsellError as e:
        logger.error("❌ Upsell rejected: %s", e)
        return JSONResponse(status_code=500, content={"error": str(e)})
    except (ChatCompletionError, httpx.HTTPError) as e:
        logger.error("❌ Upsell failed: %s", e)
        return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(e)})

    if suggestion is None:
        return {"suggestedProductId": None, "shortReason": "Aucun produit disponible"}
    return suggestion.model_dump()


# 🎯 9. FEEDBACK
@app.post("/api/feedback")
def feedback(
    body: FeedbackRequest,
    store: DocumentStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    return submit_feedback(store, body.restaurantId, body.tableId, body.rating, body.comment, body.email, clock())


# 🎯 10. ORDERS
@app.post("/api/orders", status_code=201)
def new_order(
    body: OrderCreate,
    store: DocumentStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    logger.info("🧾 New order: restaurant=%s table=%s items=%d", body.restaurantId, body.tableId, len(body.items))
    try:
        result = create_order(store, body, clock())
    except (CouponError, OrderError) as e:
        return JSONResponse(status_code=e.status_code, content={"error": str(e)})
    return {
        "orderId": result.order_id,
        "subtotalBeforeDiscount": result.subtotal,
        "discountAmount": result.discount_amount,
        "totalAmount": result.total_amount,
    }


@app.patch("/api/orders/{order_id}/status")
def order_status(
    order_id: str,
    body: OrderStatusUpdate,
    api_key: str = Header(..., alias="x-api-key"),
    store: DocumentStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    check_admin(api_key)
    try:
        update_order_status(store, order_id, body.status, body.rejectionReason, clock())
    except OrderError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"success": True, "status": body.status}


# 🎯 11. TIMED PROMOTIONS
@app.get("/api/promotions/active")
def active_promotion(
    restaurantId: str,
    store: DocumentStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    now = clock()
    promotion = find_active_promotion(store, restaurantId, now)
    if promotion is None:
        return {"promotion": None, "timeRemainingMs": None}
    remaining = time_until_end(promotion, now)
    return {
        "promotion": promotion.model_dump(mode="json"),
        "timeRemainingMs": int(remaining.total_seconds() * 1000) if remaining is not None else None,
    }


@app.post("/api/promotions", status_code=201)
def new_promotion(
    promotion: TimedPromotionCreate,
    api_key: str = Header(..., alias="x-api-key"),
    store: DocumentStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    check_admin(api_key)
    try:
        promotion_id = create_promotion(store, promotion, clock())
    except PromotionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"id": promotion_id, "message": f"✅ Promotion {promotion.name.strip()} créée"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
