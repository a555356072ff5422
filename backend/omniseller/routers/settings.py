from fastapi import APIRouter, Depends, Query

from omniseller.dependencies import get_repository
from omniseller.models.store import MarketplaceConfig, SettingsSaveRequest
from omniseller.services.credential_repository import SqlAlchemyCredentialRepository

router = APIRouter(prefix="/api/settings", tags=["Settings"])


@router.get("")
async def get_settings(
    userId: str = Query(..., description="Seller id"),
    repository: SqlAlchemyCredentialRepository = Depends(get_repository),
):
    """Marketplace credentials keyed by marketplace name, in the shape the settings form uses."""
    return {
        c.marketplace: {
            "appKey": c.app_key,
            "appSecret": c.app_secret,
            "serviceId": c.service_id,
            "webhookSecret": c.webhook_secret,
            "apiUrl": c.api_base_url,
        }
        for c in repository.list_marketplace_configs(userId)
    }


@router.post("")
async def save_settings(
    payload: SettingsSaveRequest,
    repository: SqlAlchemyCredentialRepository = Depends(get_repository),
):
    configs = {
        marketplace: MarketplaceConfig(
            seller_id=payload.userId,
            marketplace=marketplace,
            app_key=block.appKey,
            app_secret=block.appSecret,
            service_id=block.serviceId,
            webhook_secret=block.webhookSecret,
            api_base_url=block.apiUrl,
        )
        for marketplace, block in payload.settings.items()
    }
    repository.save_marketplace_configs(payload.userId, configs)
    return {"success": True, "message": "Settings saved"}


@router.post("/test")
async def test_connection():
    return {"success": True, "message": "Backend is reachable."}
