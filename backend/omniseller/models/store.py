from pydantic import BaseModel
from typing import Optional, Dict
from datetime import datetime


TIKTOK_SHOP = "TikTok Shop"


class MarketplaceConfig(BaseModel):
    seller_id: str
    marketplace: str
    app_key: str = ""
    app_secret: str = ""
    service_id: str = ""
    webhook_secret: str = ""
    api_base_url: str = ""

    @property
    def has_credentials(self) -> bool:
        return bool(self.app_key and self.app_secret)


class StoreConnection(BaseModel):
    id: str
    seller_id: str
    marketplace: str
    store_name: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expiry: Optional[datetime] = None
    external_shop_id: Optional[str] = None
    connected: bool = False
    last_sync_at: Optional[datetime] = None

    @property
    def is_usable(self) -> bool:
        return self.connected and bool(self.access_token)


class MarketplaceSettingsIn(BaseModel):
    """One marketplace block of the settings form (camelCase, as the UI sends it)."""

    appKey: str = ""
    appSecret: str = ""
    serviceId: str = ""
    webhookSecret: str = ""
    apiUrl: str = ""


class SettingsSaveRequest(BaseModel):
    userId: str
    settings: Dict[str, MarketplaceSettingsIn]


class StoreCreateRequest(BaseModel):
    userId: str
    name: str
    marketplace: str = TIKTOK_SHOP


class StoreResponse(BaseModel):
    id: str
    userId: str
    name: str
    marketplace: str
    connected: bool
    lastSync: Optional[datetime]
    avatarUrl: str = ""

    @classmethod
    def from_connection(cls, store: StoreConnection) -> "StoreResponse":
        return cls(
            id=store.id,
            userId=store.seller_id,
            name=store.store_name,
            marketplace=store.marketplace,
            connected=store.connected,
            lastSync=store.last_sync_at,
        )
