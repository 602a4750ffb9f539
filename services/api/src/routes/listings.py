from fastapi import APIRouter, Depends

from models.operations.listings import listing_get
from settlement import NotFoundError, SettlementEngine
from utils import log

from .dependencies import get_engine
from .schemas import ApiModel, ListingView

logger = log.get_logger(__name__)

router = APIRouter(prefix="/listings", tags=["listings"])


class ListingResponse(ApiModel):
    success: bool = True
    listing: ListingView


@router.get("/{listing_id}", response_model=ListingResponse)
async def route_listing_get(listing_id: str, engine: SettlementEngine = Depends(get_engine)):
    """Read-only availability view of a listing."""
    listing = await listing_get(engine.store, listing_id)
    if listing is None:
        raise NotFoundError(f"Listing {listing_id} not found")
    return ListingResponse(listing=ListingView.from_entity(listing))
