from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from clients.payments import ExternalPayment, MockGateway
from settlement import SettlementEngine, SettlementResult
from utils import log

from .dependencies import Identity, get_engine, require_buyer
from .schemas import ApiModel, TransactionView

logger = log.get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class CreateOrderRequest(ApiModel):
    listing_id: str
    quantity: int


class OrderResponse(ApiModel):
    success: bool = True
    external_order_id: str
    receipt: str
    listing_id: str
    quantity: int
    unit_price: Decimal
    total_amount: Decimal
    amount_minor_units: int
    currency: str


class VerifyPaymentRequest(ApiModel):
    external_order_id: str
    external_payment_id: str
    # HMAC proof from the mock checkout; Stripe confirms the charge server-side
    signature: Optional[str] = None
    listing_id: str
    quantity: int


class DirectPurchaseRequest(ApiModel):
    listing_id: str
    quantity: int


class SettlementResponse(ApiModel):
    success: bool = True
    replayed: bool
    transaction_id: str
    reference: str
    certificate_number: Optional[str] = None
    certificate_path: Optional[str] = None
    quantity: int
    total_amount: Decimal
    currency: str


class PaymentView(ApiModel):
    id: str
    amount_minor_units: int
    currency: str
    status: str
    refunded: bool


class PaymentStatusResponse(ApiModel):
    success: bool = True
    external_order_id: str
    transactions: List[TransactionView]
    payments: List[PaymentView]


class MockConfirmResponse(ApiModel):
    success: bool = True
    external_order_id: str
    external_payment_id: str
    signature: str


def _settlement_response(result: SettlementResult) -> SettlementResponse:
    data = result.transaction.data
    return SettlementResponse(
        replayed=result.replayed,
        transaction_id=result.transaction.id,
        reference=data.transaction_id,
        certificate_number=data.certificate_number,
        certificate_path=data.certificate_path,
        quantity=data.quantity,
        total_amount=data.total_amount,
        currency=data.currency,
    )


def _payment_view(payment: ExternalPayment) -> PaymentView:
    return PaymentView(
        id=payment.id,
        amount_minor_units=payment.amount_minor_units,
        currency=payment.currency,
        status=payment.status,
        refunded=payment.refunded,
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("", response_model=OrderResponse)
async def route_order_create(
    body: CreateOrderRequest,
    user: Identity = Depends(require_buyer),
    engine: SettlementEngine = Depends(get_engine),
):
    handle = await engine.create_order(user.id, body.listing_id, body.quantity)
    return OrderResponse(
        external_order_id=handle.external_order_id,
        receipt=handle.receipt,
        listing_id=handle.listing_id,
        quantity=handle.quantity,
        unit_price=handle.unit_price,
        total_amount=handle.total_amount,
        amount_minor_units=handle.amount_minor_units,
        currency=handle.currency,
    )


@router.post("/verify", response_model=SettlementResponse)
async def route_order_verify(
    body: VerifyPaymentRequest,
    user: Identity = Depends(require_buyer),
    engine: SettlementEngine = Depends(get_engine),
):
    result = await engine.verify_and_settle(
        external_order_id=body.external_order_id,
        external_payment_id=body.external_payment_id,
        signature=body.signature,
        listing_id=body.listing_id,
        quantity=body.quantity,
        buyer_id=user.id,
    )
    return _settlement_response(result)


@router.post("/purchase", response_model=SettlementResponse)
async def route_order_direct_purchase(
    body: DirectPurchaseRequest,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    user: Identity = Depends(require_buyer),
    engine: SettlementEngine = Depends(get_engine),
):
    """Settle without a payment. Only available when direct purchase is enabled."""
    result = await engine.direct_purchase(
        user.id, body.listing_id, body.quantity, idempotency_key=idempotency_key
    )
    return _settlement_response(result)


@router.get("/{external_order_id}/status", response_model=PaymentStatusResponse)
async def route_order_status(
    external_order_id: str,
    user: Identity = Depends(require_buyer),
    engine: SettlementEngine = Depends(get_engine),
):
    view = await engine.payment_status(external_order_id, buyer_id=user.id)
    return PaymentStatusResponse(
        external_order_id=view.external_order_id,
        transactions=[TransactionView.from_entity(t) for t in view.transactions],
        payments=[_payment_view(p) for p in view.payments],
    )


@router.post("/{external_order_id}/mock-confirm", response_model=MockConfirmResponse)
async def route_order_mock_confirm(
    external_order_id: str,
    user: Identity = Depends(require_buyer),
    engine: SettlementEngine = Depends(get_engine),
):
    """Stand-in for the hosted checkout when running against the mock gateway."""
    gateway = engine.gateway
    if not isinstance(gateway, MockGateway):
        raise HTTPException(status_code=404, detail="Mock checkout is only available with the mock gateway")

    order = await gateway.get_external_order(external_order_id)
    if order.metadata.get("buyer_id") != user.id:
        raise HTTPException(status_code=404, detail="Order not found")

    payment_id, signature = gateway.capture(external_order_id)
    logger.info(f"Mock checkout captured {payment_id} for order {external_order_id}")
    return MockConfirmResponse(
        external_order_id=external_order_id,
        external_payment_id=payment_id,
        signature=signature,
    )
