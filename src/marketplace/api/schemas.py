"""Pydantic request/response schemas for the Marketplace API.

These are external contracts (anti-corruption layer), separate from
internal Protean commands. Money is always a string with two decimals.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------
class AddToCartRequest(BaseModel):
    product_id: str
    quantity: int = Field(ge=1, le=10, default=1)


class UpdateCartQuantityRequest(BaseModel):
    quantity: int = Field(ge=0, le=10)


class MergeCartRequest(BaseModel):
    session_id: str


class CartItemResponse(BaseModel):
    product_id: str
    quantity: int


class CartResponse(BaseModel):
    cart_id: str | None = None
    items: list[CartItemResponse] = []
    expires_at: datetime | None = None


class MergeResponse(BaseModel):
    merged: int
    cart: CartResponse


class PricedLineResponse(BaseModel):
    product_id: str
    quantity: int
    unit_price: str
    user_price: str
    line_total: str


class PricePreviewResponse(BaseModel):
    lines: list[PricedLineResponse]
    subtotal: str
    discount: str
    tax: str
    total: str


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class CheckoutRequest(BaseModel):
    payment_method: str = "mock_payment"
    coupon_code: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "payment_method": "pm_card_visa",
                    "coupon_code": "WELCOME10",
                }
            ]
        }
    }


class UpdateStatusRequest(BaseModel):
    status: Literal["pending", "processing", "confirmed", "shipped", "delivered", "cancelled", "refunded"]
    note: str | None = None


class CancelOrderRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class RequestRefundRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)
    amount: str | None = None


class ResolveRefundRequest(BaseModel):
    decision: Literal["approved", "denied", "completed"]
    note: str | None = None


class OrderItemResponse(BaseModel):
    product_id: str
    title: str
    quantity: int
    unit_price: str
    user_price: str
    line_total: str
    inventory_mode: str
    code_delivered: bool
    codes: list[str]
    revoked_codes: list[str] = []


class PricingResponse(BaseModel):
    subtotal: str
    discount: str
    tax: str
    total: str
    tax_rate: str
    currency: str


class PaymentResponse(BaseModel):
    method: str
    status: str
    transaction_id: str | None = None
    paid_at: datetime | None = None


class RefundResponse(BaseModel):
    status: str
    amount: str | None = None
    reason: str | None = None


class TimelineEntryResponse(BaseModel):
    status: str
    timestamp: datetime
    note: str | None = None
    actor: str


class OrderResponse(BaseModel):
    order_number: str
    customer_id: str | None = None
    status: str
    items: list[OrderItemResponse]
    pricing: PricingResponse
    payment: PaymentResponse
    refund: RefundResponse
    coupon_code: str | None = None
    can_be_cancelled: bool
    can_be_refunded: bool
    created_at: datetime | None = None


class StatusResponse(BaseModel):
    status: str = "ok"


# ---------------------------------------------------------------------------
# Payments webhook
# ---------------------------------------------------------------------------
class PaymentWebhookRequest(BaseModel):
    order_number: str
    transaction_id: str | None = None
    status: Literal["succeeded", "failed"]
    failure_reason: str | None = None


# ---------------------------------------------------------------------------
# Back office
# ---------------------------------------------------------------------------
class StockCodesRequest(BaseModel):
    mode: Literal["unlimited", "limited", "preorder"] = "limited"
    codes: list[str] = []


class StockResponse(BaseModel):
    product_id: str
    available: int | None = None


class CreatePromotionRequest(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str | None = None
    discount_type: Literal["percentage", "fixed"]
    value: str
    min_purchase: str | None = None
    max_discount: str | None = None
    usage_limit: int | None = Field(default=None, ge=1)
    usage_per_user: int = Field(default=1, ge=1)
    starts_at: datetime
    ends_at: datetime
    eligible_products: list[str] = []
    exclude_sale_items: bool = False
    exclude_plus_discount: bool = False
    user_types: list[Literal["new", "existing", "plus"]] = ["new", "existing"]
    target_audience: Literal["all", "new-users", "plus-members", "specific-users"] = "all"
    specific_customers: list[str] = []


class PromotionIdResponse(BaseModel):
    promotion_id: str


class ConfigureGatewayRequest(BaseModel):
    mode: Literal["succeed", "fail", "pending", "timeout"] = "succeed"
    failure_reason: str = "Card declined"


class GatewayConfigResponse(BaseModel):
    gateway: str
    mode: str
    failure_reason: str
