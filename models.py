from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

import config

DiscountType = Literal["percentage", "fixed_amount", "free_item"]
CouponStatus = Literal["active", "used", "expired"]

# Catalog

class Product(BaseModel):
    id: str
    restaurantId: str
    categoryId: str = ""
    name: str
    description: str = ""
    price: int  # smallest currency unit
    isAvailable: bool = True
    aiTags: List[str] = []

# Cart

class CartOption(BaseModel):
    name: str  # e.g. "Cuisson"
    value: str  # e.g. "À point"
    priceModifier: Optional[int] = None

class CartItem(BaseModel):
    productId: str
    productName: str
    quantity: int = Field(..., gt=0, le=config.MAX_ORDER_QUANTITY)
    unitPrice: int = Field(..., ge=0)
    options: Optional[List[CartOption]] = None
    product: Optional[Product] = None  # display only, never used for pricing

class AppliedCoupon(BaseModel):
    id: str
    code: str
    discountType: DiscountType
    discountValue: int = Field(..., ge=0)
    discountDescription: str

# Marketing

class Campaign(BaseModel):
    id: str
    restaurantId: str
    name: str = ""
    isActive: bool = True
    winProbability: float
    rewardType: DiscountType
    rewardValue: int
    rewardDescription: str
    validityDays: int

class CampaignCreate(BaseModel):
    restaurantId: str
    name: str = Field(..., min_length=1, max_length=config.CAMPAIGN_NAME_MAX)
    winProbability: float = Field(..., ge=config.MIN_WIN_PROBABILITY, le=config.MAX_WIN_PROBABILITY)
    rewardType: DiscountType
    rewardValue: int = Field(..., ge=0)
    rewardDescription: str = Field(..., max_length=config.CAMPAIGN_REWARD_DESCRIPTION_MAX)
    validityDays: int = Field(..., ge=config.MIN_VALIDITY_DAYS, le=config.MAX_VALIDITY_DAYS)
    isActive: bool = True

class Coupon(BaseModel):
    id: str
    restaurantId: str
    campaignId: str
    code: str
    status: CouponStatus
    discountType: DiscountType
    discountValue: int = Field(..., ge=0)
    discountDescription: str
    deviceId: str
    createdAt: datetime
    validUntil: datetime
    usedAt: Optional[datetime] = None
    orderId: Optional[str] = None

class VerifiedCoupon(AppliedCoupon):
    validUntil: datetime

# Timed promotions (happy hour, one-shot events)

PromotionRecurrence = Literal["one_shot", "recurring"]

class TimedPromotionRules(BaseModel):
    startDate: Optional[datetime] = None  # one_shot
    endDate: Optional[datetime] = None
    daysOfWeek: Optional[List[int]] = None  # recurring, 0 = Sunday
    startTime: Optional[str] = None  # "HH:MM"
    endTime: Optional[str] = None

class PromotionDiscount(BaseModel):
    type: Literal["percentage", "fixed"]
    value: int = Field(..., gt=0)

class TimedPromotion(BaseModel):
    id: str
    restaurantId: str
    name: str = ""
    type: Literal["timed_promotion"] = "timed_promotion"
    isActive: bool = True
    recurrence: PromotionRecurrence
    rules: Optional[TimedPromotionRules] = None
    discount: Optional[PromotionDiscount] = None
    targetCategories: List[str] = []
    bannerText: str = ""

class TimedPromotionCreate(BaseModel):
    restaurantId: str
    name: str = Field(..., min_length=1, max_length=config.CAMPAIGN_NAME_MAX)
    recurrence: PromotionRecurrence
    rules: TimedPromotionRules
    discount: PromotionDiscount
    targetCategories: List[str] = []
    bannerText: str = Field(..., min_length=1)
    isActive: bool = True

# Orders

OrderStatus = Literal["pending_validation", "preparing", "ready", "served", "rejected"]

class OrderItemOption(CartOption):
    name: str = Field(..., min_length=1, max_length=config.OPTION_NAME_MAX)
    value: str = Field(..., min_length=1, max_length=config.OPTION_VALUE_MAX)

class OrderItem(BaseModel):
    productId: str = Field(..., min_length=1)
    productName: str = Field(..., min_length=1, max_length=100)
    quantity: int = Field(..., gt=0, le=config.MAX_ORDER_QUANTITY)
    unitPrice: int = Field(..., gt=0)  # snapshot at order time
    options: Optional[List[OrderItemOption]] = None
    specialInstructions: Optional[str] = Field(None, max_length=config.SPECIAL_INSTRUCTIONS_MAX)

class OrderCreate(BaseModel):
    restaurantId: str = Field(..., min_length=1)
    tableId: str = Field(..., min_length=1)
    tableLabelString: str = Field(..., min_length=1, max_length=config.TABLE_LABEL_MAX)
    items: List[OrderItem] = Field(..., min_length=1, max_length=config.MAX_CART_ITEMS)
    customerNote: Optional[str] = Field(None, max_length=config.ORDER_NOTE_MAX)
    customerSessionId: str = Field(..., min_length=1)
    couponId: Optional[str] = None

class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    rejectionReason: Optional[str] = Field(None, max_length=200)

# Requests / responses

class CouponVerifyRequest(BaseModel):
    restaurantId: Optional[str] = None
    code: Optional[str] = None

class GenerateCouponRequest(BaseModel):
    campaignId: Optional[str] = None
    restaurantId: Optional[str] = None
    deviceId: Optional[str] = None

class RedeemCouponRequest(BaseModel):
    restaurantId: str
    couponId: str
    orderId: str

class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str

class ChatRequest(BaseModel):
    restaurantId: Optional[str] = None
    messages: Optional[List[ChatMessage]] = None

class UpsellCartItem(BaseModel):
    productId: str
    productName: str
    quantity: int
    unitPrice: int

class MenuProduct(BaseModel):
    id: str
    name: str
    description: str = ""
    price: int
    categoryId: str = ""
    aiTags: List[str] = []

class UpsellRequest(BaseModel):
    cartItems: Optional[List[UpsellCartItem]] = None
    menuContext: Optional[List[MenuProduct]] = None

class UpsellResponse(BaseModel):
    suggestedProductId: Optional[str] = None
    shortReason: str

class FeedbackRequest(BaseModel):
    restaurantId: str
    tableId: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    email: Optional[str] = None
