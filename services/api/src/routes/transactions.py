from typing import List, Optional

from fastapi import APIRouter, Depends

from settlement import RefundResult, SettlementEngine
from utils import log

from .dependencies import Identity, current_user_get, get_engine, require_buyer, require_certifier
from .schemas import ApiModel, TransactionView

logger = log.get_logger(__name__)

router = APIRouter(prefix="/transactions", tags=["transactions"])


class RefundRequest(ApiModel):
    reason: Optional[str] = None


class RefundResponse(ApiModel):
    success: bool = True
    refund_id: str
    transaction_id: str
    transaction: TransactionView


class TransactionListResponse(ApiModel):
    success: bool = True
    transactions: List[TransactionView]


class TransactionResponse(ApiModel):
    success: bool = True
    transaction: TransactionView


def _refund_response(result: RefundResult) -> RefundResponse:
    return RefundResponse(
        refund_id=result.refund_id,
        transaction_id=result.transaction.id,
        transaction=TransactionView.from_entity(result.transaction),
    )


@router.get("", response_model=TransactionListResponse)
async def route_transactions_mine(
    user: Identity = Depends(require_buyer),
    engine: SettlementEngine = Depends(get_engine),
):
    transactions = await engine.transactions_for_buyer(user.id)
    return TransactionListResponse(transactions=[TransactionView.from_entity(t) for t in transactions])


@router.get("/reconciliation", response_model=TransactionListResponse)
async def route_transactions_reconciliation(
    user: Identity = Depends(require_certifier),
    engine: SettlementEngine = Depends(get_engine),
):
    """Captured payments that could not be settled and still need a refund."""
    transactions = await engine.reconciliation_queue()
    return TransactionListResponse(transactions=[TransactionView.from_entity(t) for t in transactions])


@router.get("/{transaction_id}", response_model=TransactionResponse)
async def route_transaction_get(
    transaction_id: str,
    user: Identity = Depends(current_user_get),
    engine: SettlementEngine = Depends(get_engine),
):
    # buyers only see their own; certifiers and admins see everything
    buyer_id = None if user.role in ("certifier", "admin") else user.id
    transaction = await engine.get_transaction(transaction_id, buyer_id=buyer_id)
    return TransactionResponse(transaction=TransactionView.from_entity(transaction))


@router.post("/{transaction_id}/refund", response_model=RefundResponse)
async def route_transaction_refund(
    transaction_id: str,
    body: Optional[RefundRequest] = None,
    user: Identity = Depends(require_certifier),
    engine: SettlementEngine = Depends(get_engine),
):
    reason = body.reason if body else None
    logger.info(f"Refund of {transaction_id} requested by {user.role} {user.id}")
    result = await engine.refund(transaction_id, actor_id=user.id, reason=reason)
    return _refund_response(result)


@router.post("/{transaction_id}/reconcile", response_model=RefundResponse)
async def route_transaction_reconcile(
    transaction_id: str,
    body: Optional[RefundRequest] = None,
    user: Identity = Depends(require_certifier),
    engine: SettlementEngine = Depends(get_engine),
):
    reason = body.reason if body else None
    result = await engine.resolve_reconciliation(transaction_id, actor_id=user.id, reason=reason)
    return _refund_response(result)
