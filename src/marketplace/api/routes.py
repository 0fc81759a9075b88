"""FastAPI routes for the Marketplace — cart, checkout, orders and payments.

The caller's identity arrives in headers set by the auth gateway in front of
this service: ``X-Customer-Id`` for logged-in customers, ``X-Session-Id`` for
guests, ``X-Plus-Member`` for the membership flag.

Routes that reach the domain are plain ``def``: they wait on locks and on the
payment gateway, and FastAPI runs them in its thread pool. The webhook reads
its raw body asynchronously and hands the settlement to the thread pool.
"""

import json

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from protean.utils.globals import current_domain

from marketplace import config
from marketplace.api.schemas import (
    AddToCartRequest,
    CancelOrderRequest,
    CartItemResponse,
    CartResponse,
    CheckoutRequest,
    ConfigureGatewayRequest,
    CreatePromotionRequest,
    GatewayConfigResponse,
    MergeCartRequest,
    MergeResponse,
    OrderItemResponse,
    OrderResponse,
    PaymentResponse,
    PaymentWebhookRequest,
    PricedLineResponse,
    PricePreviewResponse,
    PricingResponse,
    PromotionIdResponse,
    RefundResponse,
    RequestRefundRequest,
    ResolveRefundRequest,
    StatusResponse,
    StockCodesRequest,
    StockResponse,
    TimelineEntryResponse,
    UpdateCartQuantityRequest,
    UpdateStatusRequest,
)
from marketplace.cart.store import CartStore
from marketplace.checkout.service import CheckoutService
from marketplace.gateway import FakeGateway, get_gateway
from marketplace.inventory.ledger import InventoryLedger
from marketplace.order.order import Actor, Order
from marketplace.order.refunds import RefundWorkflow
from marketplace.order.status import CancelOrder, UpdateOrderStatus
from marketplace.promotion.redemption import CreatePromotion
from marketplace.requester import Requester
from marketplace.utils.dispatch import dispatch


def current_requester(
    x_customer_id: str | None = Header(default=None),
    x_session_id: str | None = Header(default=None),
    x_plus_member: bool = Header(default=False),
    x_customer_email: str | None = Header(default=None),
) -> Requester:
    if not x_customer_id and not x_session_id:
        raise HTTPException(status_code=401, detail="X-Customer-Id or X-Session-Id header required")
    return Requester(
        customer_id=x_customer_id,
        session_id=x_session_id,
        is_plus_member=x_plus_member,
        email=x_customer_email,
    )


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------
def _cart_response(cart) -> CartResponse:
    if cart is None:
        return CartResponse()
    return CartResponse(
        cart_id=str(cart.id),
        items=[CartItemResponse(product_id=pid, quantity=qty) for pid, qty in cart.quantities().items()],
        expires_at=cart.expires_at,
    )


def _order_response(order) -> OrderResponse:
    return OrderResponse(
        order_number=order.order_number,
        customer_id=str(order.customer_id) if order.customer_id else None,
        status=order.status,
        items=[
            OrderItemResponse(
                product_id=str(item.product_id),
                title=item.title,
                quantity=item.quantity,
                unit_price=item.unit_price,
                user_price=item.user_price,
                line_total=item.line_total,
                inventory_mode=item.inventory_mode,
                code_delivered=item.code_delivered,
                codes=item.code_list,
                revoked_codes=item.revoked_code_list,
            )
            for item in order.items
        ],
        pricing=PricingResponse(
            subtotal=order.pricing.subtotal,
            discount=order.pricing.discount,
            tax=order.pricing.tax,
            total=order.pricing.total,
            tax_rate=order.pricing.tax_rate,
            currency=order.pricing.currency,
        ),
        payment=PaymentResponse(
            method=order.payment.method,
            status=order.payment.status,
            transaction_id=order.payment.transaction_id,
            paid_at=order.payment.paid_at,
        ),
        refund=RefundResponse(
            status=order.refund.status,
            amount=order.refund.amount,
            reason=order.refund.reason,
        ),
        coupon_code=order.coupon_code,
        can_be_cancelled=order.can_be_cancelled,
        can_be_refunded=order.can_be_refunded,
        created_at=order.created_at,
    )


# ---------------------------------------------------------------------------
# Cart Router
# ---------------------------------------------------------------------------
cart_router = APIRouter(prefix="/cart", tags=["cart"])


@cart_router.get("", response_model=CartResponse)
def get_cart(requester: Requester = Depends(current_requester)) -> CartResponse:
    return _cart_response(CartStore().get(requester))


@cart_router.post("/items", response_model=CartResponse)
def add_cart_item(body: AddToCartRequest, requester: Requester = Depends(current_requester)) -> CartResponse:
    cart = CartStore().add_item(requester, body.product_id, body.quantity)
    return _cart_response(cart)


@cart_router.put("/items/{product_id}", response_model=CartResponse)
def update_cart_item(
    product_id: str,
    body: UpdateCartQuantityRequest,
    requester: Requester = Depends(current_requester),
) -> CartResponse:
    cart = CartStore().update_quantity(requester, product_id, body.quantity)
    return _cart_response(cart)


@cart_router.delete("/items/{product_id}", response_model=CartResponse)
def remove_cart_item(product_id: str, requester: Requester = Depends(current_requester)) -> CartResponse:
    cart = CartStore().remove_item(requester, product_id)
    return _cart_response(cart)


@cart_router.delete("", response_model=StatusResponse)
def clear_cart(requester: Requester = Depends(current_requester)) -> StatusResponse:
    CartStore().clear(requester)
    return StatusResponse(status="cleared")


@cart_router.post("/merge", response_model=MergeResponse)
def merge_cart(body: MergeCartRequest, requester: Requester = Depends(current_requester)) -> MergeResponse:
    if not requester.customer_id:
        raise HTTPException(status_code=401, detail="Merging requires a logged-in customer")
    store = CartStore()
    merged = store.merge(body.session_id, requester.customer_id)
    return MergeResponse(merged=merged, cart=_cart_response(store.get(requester)))


@cart_router.get("/preview", response_model=PricePreviewResponse)
def preview_cart(
    coupon_code: str | None = None,
    requester: Requester = Depends(current_requester),
) -> PricePreviewResponse:
    breakdown = CheckoutService().preview(requester, coupon_code=coupon_code)
    return PricePreviewResponse(
        lines=[
            PricedLineResponse(
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price=str(line.unit_price),
                user_price=str(line.user_price),
                line_total=str(line.line_total),
            )
            for line in breakdown.lines
        ],
        subtotal=str(breakdown.subtotal),
        discount=str(breakdown.discount),
        tax=str(breakdown.tax),
        total=str(breakdown.total),
    )


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.post("", status_code=201, response_model=OrderResponse)
def checkout(body: CheckoutRequest, requester: Requester = Depends(current_requester)) -> OrderResponse:
    order = CheckoutService().place_order(requester, body.payment_method, coupon_code=body.coupon_code)
    return _order_response(order)


@order_router.get("", response_model=list[OrderResponse])
def list_orders(
    customer_id: str | None = None,
    x_customer_id: str | None = Header(default=None),
) -> list[OrderResponse]:
    owner = customer_id or x_customer_id
    if not owner:
        raise HTTPException(status_code=400, detail="customer_id is required")
    orders = current_domain.repository_for(Order).for_customer(owner)
    return [_order_response(o) for o in orders]


@order_router.get("/{order_number}", response_model=OrderResponse)
def get_order(order_number: str) -> OrderResponse:
    order = current_domain.repository_for(Order).get_by_number(order_number)
    return _order_response(order)


@order_router.get("/{order_number}/timeline", response_model=list[TimelineEntryResponse])
def get_order_timeline(order_number: str) -> list[TimelineEntryResponse]:
    order = current_domain.repository_for(Order).get_by_number(order_number)
    return [
        TimelineEntryResponse(status=e.status, timestamp=e.timestamp, note=e.note, actor=e.actor)
        for e in order.sorted_timeline()
    ]


@order_router.put("/{order_number}/status", response_model=OrderResponse)
def update_order_status(order_number: str, body: UpdateStatusRequest) -> OrderResponse:
    command = UpdateOrderStatus(
        order_number=order_number,
        status=body.status,
        note=body.note,
        actor=Actor.ADMIN.value,
    )
    dispatch(command)
    return _order_response(current_domain.repository_for(Order).get_by_number(order_number))


@order_router.post("/{order_number}/cancel", response_model=OrderResponse)
def cancel_order(order_number: str, body: CancelOrderRequest) -> OrderResponse:
    command = CancelOrder(order_number=order_number, reason=body.reason, actor=Actor.CUSTOMER.value)
    dispatch(command)
    return _order_response(current_domain.repository_for(Order).get_by_number(order_number))


@order_router.post("/{order_number}/refund", response_model=OrderResponse)
def request_refund(order_number: str, body: RequestRefundRequest) -> OrderResponse:
    order = RefundWorkflow().request(order_number, body.reason, amount=body.amount)
    return _order_response(order)


@order_router.put("/{order_number}/refund", response_model=OrderResponse)
def resolve_refund(order_number: str, body: ResolveRefundRequest) -> OrderResponse:
    order = RefundWorkflow().resolve(order_number, body.decision, actor=Actor.ADMIN.value, note=body.note)
    return _order_response(order)


# ---------------------------------------------------------------------------
# Admin Router
# ---------------------------------------------------------------------------
admin_router = APIRouter(prefix="/admin", tags=["admin"])


@admin_router.get("/orders", response_model=list[OrderResponse])
def list_all_orders(status: str | None = None, awaiting_codes: bool = False) -> list[OrderResponse]:
    repo = current_domain.repository_for(Order)
    orders = repo.awaiting_codes() if awaiting_codes else repo.all_orders(status=status)
    return [_order_response(o) for o in orders]


@admin_router.post("/inventory/{product_id}/codes", response_model=StockResponse)
def stock_codes(product_id: str, body: StockCodesRequest) -> StockResponse:
    available = InventoryLedger().stock(product_id, mode=body.mode, codes=body.codes)
    return StockResponse(product_id=product_id, available=available)


@admin_router.post("/promotions", status_code=201, response_model=PromotionIdResponse)
def create_promotion(body: CreatePromotionRequest) -> PromotionIdResponse:
    command = CreatePromotion(
        code=body.code,
        name=body.name,
        discount_type=body.discount_type,
        value=body.value,
        min_purchase=body.min_purchase,
        max_discount=body.max_discount,
        usage_limit=body.usage_limit,
        usage_per_user=body.usage_per_user,
        starts_at=body.starts_at,
        ends_at=body.ends_at,
        eligible_products=json.dumps(body.eligible_products) if body.eligible_products else None,
        exclude_sale_items=body.exclude_sale_items,
        exclude_plus_discount=body.exclude_plus_discount,
        user_types=json.dumps(body.user_types),
        target_audience=body.target_audience,
        specific_customers=json.dumps(body.specific_customers) if body.specific_customers else None,
    )
    promotion_id = dispatch(command)
    return PromotionIdResponse(promotion_id=promotion_id)


# ---------------------------------------------------------------------------
# Payments Router
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("/webhook", response_model=StatusResponse)
async def payment_webhook(
    request: Request,
    x_gateway_signature: str = Header(default=""),
) -> StatusResponse:
    """Process a settlement callback from the payment gateway."""
    payload = await request.body()
    if not get_gateway().verify_webhook_signature(payload, x_gateway_signature):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    body = PaymentWebhookRequest.model_validate(json.loads(payload))
    checkout_service = CheckoutService()
    if body.status == "succeeded":
        order = await run_in_threadpool(checkout_service.confirm_payment, body.order_number, body.transaction_id)
    else:
        order = await run_in_threadpool(
            checkout_service.fail_payment,
            body.order_number,
            body.failure_reason or "declined",
        )

    return StatusResponse(status="processed" if order is not None else "ignored")


@payment_router.post("/gateway/configure", response_model=GatewayConfigResponse)
async def configure_gateway(body: ConfigureGatewayRequest) -> GatewayConfigResponse:
    """Switch the FakeGateway between outcomes (non-production only)."""
    if config.environment() == "production":
        raise HTTPException(status_code=403, detail="Gateway configuration not available in production")

    gateway = get_gateway()
    if not isinstance(gateway, FakeGateway):
        raise HTTPException(status_code=400, detail="Gateway configuration only available for FakeGateway")

    gateway.configure(mode=body.mode, failure_reason=body.failure_reason)
    return GatewayConfigResponse(
        gateway=type(gateway).__name__,
        mode=gateway.mode,
        failure_reason=gateway.failure_reason,
    )
