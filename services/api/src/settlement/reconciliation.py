"""APScheduler setup for the periodic reconciliation sweep."""

from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from utils import log

from .engine import SettlementEngine
from .errors import PaymentGatewayError, SettlementError

logger = log.get_logger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None


async def reconcile_flagged(engine: SettlementEngine) -> Dict[str, int]:
    """Walk the reconciliation queue and compare each entry with the gateway.

    With automatic refunds enabled every flagged capture is refunded;
    otherwise entries are only reported for an operator to resolve.
    """
    counts = {"flagged": 0, "refunded": 0, "errors": 0}
    flagged = await engine.reconciliation_queue()
    counts["flagged"] = len(flagged)

    for transaction in flagged:
        data = transaction.data
        try:
            payments = await engine.gateway.fetch_payments_for_order(data.external_order_id)
        except PaymentGatewayError as e:
            logger.warning(f"Reconciliation: could not fetch payments for {data.external_order_id}: {e}")
            counts["errors"] += 1
            continue

        captured = next((p for p in payments if p.id == data.external_payment_id), None)
        gateway_state = captured.status if captured else "unknown"
        logger.warning(
            f"Reconciliation: {data.transaction_id} buyer {data.buyer_id} "
            f"payment {data.external_payment_id} is {gateway_state} at the gateway, "
            f"{data.amount_minor_units} {data.currency} awaiting refund"
        )

        if not engine.options.auto_refund_oversold:
            continue
        try:
            await engine.resolve_reconciliation(
                transaction.id, actor_id="system", reason="Automatic refund: insufficient inventory"
            )
            counts["refunded"] += 1
        except (PaymentGatewayError, SettlementError) as e:
            logger.error(f"Reconciliation: refund of {data.transaction_id} failed: {e}")
            counts["errors"] += 1

    return counts


async def reconciliation_job(engine: SettlementEngine):
    logger.info("Reconciliation sweep starting...")
    try:
        counts = await reconcile_flagged(engine)
        logger.info(f"Reconciliation sweep finished: {counts}")
    except Exception as e:
        logger.error(f"Reconciliation sweep failed: {e}", exc_info=True)


def init_scheduler(engine: SettlementEngine, interval_seconds: int) -> AsyncIOScheduler:
    """Start the APScheduler with the reconciliation sweep."""
    global _scheduler
    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        reconciliation_job,
        trigger=IntervalTrigger(seconds=interval_seconds),
        args=[engine],
        id="settlement_reconciliation",
        name="Settlement Reconciliation Sweep",
        replace_existing=True,
    )
    _scheduler.start()
    logger.info(f"APScheduler started with reconciliation sweep every {interval_seconds}s")
    return _scheduler


def shutdown_scheduler():
    """Gracefully shut down the scheduler."""
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("APScheduler shut down")
