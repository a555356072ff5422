from fastapi import APIRouter, Depends, Query
from typing import List

from omniseller.dependencies import get_repository, get_token_service
from omniseller.models.store import StoreCreateRequest, StoreResponse
from omniseller.services.credential_repository import SqlAlchemyCredentialRepository
from omniseller.services.errors import StoreNotFoundError
from omniseller.services.tiktok_token_service import TikTokTokenService

router = APIRouter(prefix="/api/stores", tags=["Stores"])


@router.get("", response_model=List[StoreResponse])
async def list_stores(
    userId: str = Query(..., description="Seller id"),
    repository: SqlAlchemyCredentialRepository = Depends(get_repository),
):
    return [StoreResponse.from_connection(s) for s in repository.list_store_connections(userId)]


@router.post("")
async def create_store(
    payload: StoreCreateRequest,
    repository: SqlAlchemyCredentialRepository = Depends(get_repository),
):
    store = repository.create_manual_store(payload.userId, payload.marketplace, payload.name)
    return {"success": True, "id": store.id}


@router.delete("/{store_id}")
async def delete_store(
    store_id: str,
    repository: SqlAlchemyCredentialRepository = Depends(get_repository),
):
    if not repository.delete_store_connection(store_id):
        raise StoreNotFoundError(f"Store {store_id} not found", details={"store_id": store_id})
    return {"success": True}


@router.post("/{store_id}/refresh-token", response_model=StoreResponse)
async def refresh_store_token(
    store_id: str,
    token_service: TikTokTokenService = Depends(get_token_service),
):
    store = await token_service.refresh_store_token(store_id)
    return StoreResponse.from_connection(store)
