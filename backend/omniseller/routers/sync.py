from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from omniseller.dependencies import get_sync_service
from omniseller.models.catalog import CanonicalOrder, CanonicalProduct, EntityKind
from omniseller.models.store import TIKTOK_SHOP
from omniseller.services.store_sync_service import StoreSyncService

router = APIRouter(prefix="/api", tags=["Sync"])


@router.get("/products", response_model=List[CanonicalProduct])
async def get_products(
    userId: str = Query(..., description="Seller id"),
    storeId: Optional[str] = Query(None, description="Limit the sync to one store"),
    marketplace: str = Query(TIKTOK_SHOP),
    sync_service: StoreSyncService = Depends(get_sync_service),
):
    """Fetch and normalize products from every connected store.

    Stores that fail are skipped; the response is an empty list rather than
    an error when nothing could be fetched.
    """
    return await sync_service.sync_entity(userId, marketplace, EntityKind.PRODUCTS, storeId)


@router.get("/orders", response_model=List[CanonicalOrder])
async def get_orders(
    userId: str = Query(..., description="Seller id"),
    storeId: Optional[str] = Query(None, description="Limit the sync to one store"),
    marketplace: str = Query(TIKTOK_SHOP),
    sync_service: StoreSyncService = Depends(get_sync_service),
):
    return await sync_service.sync_entity(userId, marketplace, EntityKind.ORDERS, storeId)


@router.get("/sync/{entity}/status")
async def get_sync_status(
    entity: EntityKind,
    userId: str = Query(..., description="Seller id"),
    storeId: Optional[str] = Query(None),
    marketplace: str = Query(TIKTOK_SHOP),
    sync_service: StoreSyncService = Depends(get_sync_service),
):
    """Run a sync pass and report each store's outcome instead of the records."""
    results = await sync_service.sync_stores(userId, marketplace, entity, storeId)
    return {"stores": [r.to_dict() for r in results]}
