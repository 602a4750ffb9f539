from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from settlement import InsufficientInventoryError, SettlementEngine
from utils import log

from .dependencies import get_engine

logger = log.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def route_stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    engine: SettlementEngine = Depends(get_engine),
):
    payload = await request.body()

    # Unauthenticated deliveries raise InvalidSignatureError -> 400
    event = engine.gateway.parse_webhook(payload, stripe_signature)

    try:
        result = await engine.settle_from_webhook(event)
    except InsufficientInventoryError as e:
        # Acknowledge so the gateway stops redelivering; the capture is queued for refund
        logger.warning(f"Webhook for order {event.order_id} could not be settled: {e}")
        return {
            "success": True,
            "status": "flagged",
            "transactionId": e.transaction_id,
            "reconciliationRequired": e.reconciliation_required,
        }

    if result is None:
        return {"success": True, "status": "ignored"}

    status = "replayed" if result.replayed else "settled"
    logger.info(f"Order {event.order_id} {status} via webhook as {result.transaction.data.transaction_id}")
    return {"success": True, "status": status, "transactionId": result.transaction.id}
