import json
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from omniseller.config import Settings
from omniseller.models.store import TIKTOK_SHOP, MarketplaceConfig
from omniseller.models_sqlalchemy import Base, build_engine, build_session_factory
from omniseller.services.credential_repository import SqlAlchemyCredentialRepository
from omniseller.services.store_sync_service import StoreSyncService
from omniseller.services.tiktok_api_client import TikTokApiClient
from omniseller.services.tiktok_token_service import TikTokTokenService
from omniseller.utils.crypto import TokenCipher


API_BASE = "https://open-api.test"
AUTH_BASE = "https://auth.test"


def envelope(data: Optional[Dict[str, Any]] = None, *, code: int = 0, message: str = "Success",
             request_id: str = "req-1") -> Dict[str, Any]:
    return {"code": code, "message": message, "data": data or {}, "request_id": request_id}


def tiktok_product(pid: str, *, status: str = "ACTIVATE", sku: str = "SKU-1", price: str = "12.50",
                   quantity: int = 7) -> Dict[str, Any]:
    return {
        "id": pid,
        "title": f"Product {pid}",
        "status": status,
        "skus": [
            {
                "id": f"sku-{pid}",
                "seller_sku": sku,
                "price": {"tax_exclusive_price": price, "currency": "USD"},
                "inventory": [{"quantity": quantity, "warehouse_id": "w1"}],
            }
        ],
        "main_images": [{"thumb_urls": [f"https://img.test/{pid}.jpg"]}],
        "sales_count": 3,
    }


class FakeMarketplace:
    """Scriptable TikTok Shop stand-in served through ``httpx.MockTransport``.

    Handlers are keyed by URL path; product/order search handlers may also be
    keyed per shop cipher via ``by_shop``.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.routes: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.by_shop: Dict[str, Dict[str, Callable[[httpx.Request], httpx.Response]]] = {}

    def on(self, path: str, handler: Callable[[httpx.Request], httpx.Response], *, shop: Optional[str] = None) -> None:
        if shop is None:
            self.routes[path] = handler
        else:
            self.by_shop.setdefault(shop, {})[path] = handler

    def on_json(self, path: str, body: Dict[str, Any], *, shop: Optional[str] = None, status_code: int = 200) -> None:
        self.on(path, lambda request: httpx.Response(status_code, json=body), shop=shop)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        shop = request.url.params.get("shop_cipher")
        if shop is not None and path in self.by_shop.get(shop, {}):
            return self.by_shop[shop][path](request)
        if path in self.routes:
            return self.routes[path](request)
        return httpx.Response(404, text="not found")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls_to(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]


def query_of(request: httpx.Request) -> Dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(str(request.url)).query).items()}


def json_of(request: httpx.Request) -> Dict[str, Any]:
    return json.loads(request.content.decode("utf-8")) if request.content else {}


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite://",
        SECRET_KEY="test-secret-key",
        TIKTOK_AUTH_BASE_URL=AUTH_BASE,
        TIKTOK_API_BASE_URL=API_BASE,
        TIKTOK_AUTHORIZE_URL="https://services.test/open/authorize",
        HTTP_TIMEOUT_SECONDS=5.0,
        API_MAX_RETRIES=0,
        SYNC_CONCURRENCY=4,
        SYNC_PAGE_SIZE=20,
    )


@pytest.fixture
def repository(settings: Settings) -> SqlAlchemyCredentialRepository:
    engine = build_engine(settings.DATABASE_URL)
    Base.metadata.create_all(bind=engine)
    return SqlAlchemyCredentialRepository(build_session_factory(engine), TokenCipher(settings.SECRET_KEY))


@pytest.fixture
def marketplace() -> FakeMarketplace:
    return FakeMarketplace()


@pytest.fixture
def api_client(settings: Settings, marketplace: FakeMarketplace) -> TikTokApiClient:
    return TikTokApiClient(settings, transport=marketplace.transport)


@pytest.fixture
def token_service(settings, repository, api_client) -> TikTokTokenService:
    return TikTokTokenService(settings, repository, api_client)


@pytest.fixture
def sync_service(settings, repository, api_client) -> StoreSyncService:
    return StoreSyncService(settings, repository, api_client)


@pytest.fixture
def seller_config(repository) -> MarketplaceConfig:
    """Store valid TikTok Shop credentials for seller-42 and return them."""
    config = MarketplaceConfig(
        seller_id="seller-42",
        marketplace=TIKTOK_SHOP,
        app_key="app-key-1",
        app_secret="app-secret-1",
        service_id="svc-1",
        api_base_url=API_BASE,
    )
    repository.save_marketplace_configs("seller-42", {TIKTOK_SHOP: config})
    return config


def connect_store(repository, shop: str, *, seller_id: str = "seller-42", token: str = "access-1"):
    return repository.upsert_store_connection(
        seller_id=seller_id,
        marketplace=TIKTOK_SHOP,
        external_shop_id=shop,
        store_name=f"Shop {shop}",
        access_token=token,
        refresh_token=f"refresh-{shop}",
        token_expiry=None,
    )
