from fastapi import APIRouter, Depends

from settlement import SettlementEngine
from utils import log

from .dependencies import get_engine
from .listings import router as listings_router
from .orders import router as orders_router
from .transactions import router as transactions_router
from .webhooks import router as webhooks_router

logger = log.get_logger(__name__)

router = APIRouter(prefix="/api")
router.include_router(orders_router)
router.include_router(transactions_router)
router.include_router(listings_router)
router.include_router(webhooks_router)


@router.get("/health", tags=["dev"])
async def route_health():
    return {"success": True, "status": "ok"}


@router.post("/seed", tags=["dev"])
async def route_seed(engine: SettlementEngine = Depends(get_engine)):
    """Populate the store with demo listings (dev only)."""
    from seed import run_seed

    counts = await run_seed(engine.store)
    return {"success": True, "seeded": counts}
