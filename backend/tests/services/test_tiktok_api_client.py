import httpx
import pytest

from omniseller.models.store import TIKTOK_SHOP, MarketplaceConfig, StoreConnection
from omniseller.services.errors import (
    ConfigurationMissingError,
    ExternalApiError,
    StoreNotConnectedError,
    TransportError,
)
from omniseller.services.tiktok_api_client import (
    ACCESS_TOKEN_HEADER,
    TikTokApiClient,
    order_search_path,
    product_search_path,
)
from omniseller.services.tiktok_signature import sign

from conftest import API_BASE, envelope, json_of, query_of


PRODUCTS = product_search_path("202309")
ORDERS = order_search_path("202309")


@pytest.fixture
def config():
    return MarketplaceConfig(
        seller_id="seller-42",
        marketplace=TIKTOK_SHOP,
        app_key="app-key-1",
        app_secret="app-secret-1",
        api_base_url=API_BASE,
    )


@pytest.fixture
def store():
    return StoreConnection(
        id="store-1",
        seller_id="seller-42",
        marketplace=TIKTOK_SHOP,
        store_name="Shop A",
        access_token="access-A",
        external_shop_id="cipher-A",
        connected=True,
    )


def test_paths():
    assert PRODUCTS == "/product/202309/products/search"
    assert ORDERS == "/order/202309/orders/search"


@pytest.mark.asyncio
async def test_call_api_builds_signed_request(api_client, marketplace, config, store):
    marketplace.on_json(PRODUCTS, envelope({"products": []}))

    data = await api_client.search_products(config, store, page_size=20)

    assert data == {"products": []}
    (request,) = marketplace.requests
    query = query_of(request)

    assert request.method == "POST"
    assert str(request.url).startswith(f"{API_BASE}{PRODUCTS}?")
    assert set(query) == {"app_key", "timestamp", "shop_cipher", "version", "sign"}
    assert query["app_key"] == "app-key-1"
    assert query["shop_cipher"] == "cipher-A"
    assert query["version"] == "202309"
    assert query["timestamp"].isdigit()

    unsigned = {k: v for k, v in query.items() if k != "sign"}
    assert query["sign"] == sign("app-secret-1", PRODUCTS, unsigned)

    assert request.headers[ACCESS_TOKEN_HEADER] == "access-A"
    assert "access_token" not in query
    assert "access-A" not in str(request.url)
    assert json_of(request) == {"page_size": 20}


@pytest.mark.asyncio
async def test_order_search_body(api_client, marketplace, config, store):
    marketplace.on_json(ORDERS, envelope({"orders": []}))

    await api_client.search_orders(config, store, page_size=50)

    (request,) = marketplace.requests
    assert json_of(request) == {"page_size": 50, "sort_field": "create_time", "sort_order": "DESC"}


@pytest.mark.asyncio
async def test_falls_back_to_settings_base_url(settings, marketplace, config, store):
    client = TikTokApiClient(settings, transport=marketplace.transport)
    marketplace.on_json(PRODUCTS, envelope({"products": []}))

    await client.search_products(config.model_copy(update={"api_base_url": ""}), store, page_size=5)

    assert str(marketplace.requests[0].url).startswith(settings.TIKTOK_API_BASE_URL)


@pytest.mark.asyncio
async def test_nonzero_code_raises_external_api_error(api_client, marketplace, config, store):
    marketplace.on_json(PRODUCTS, envelope(code=105001, message="Access token is invalid", request_id="rq-77"))

    with pytest.raises(ExternalApiError) as excinfo:
        await api_client.search_products(config, store, page_size=20)

    assert excinfo.value.api_code == 105001
    assert excinfo.value.request_id == "rq-77"
    assert excinfo.value.details["request_id"] == "rq-77"


@pytest.mark.asyncio
async def test_error_envelope_on_http_error_status(api_client, marketplace, config, store):
    marketplace.on_json(PRODUCTS, envelope(code=36009003, message="bad sign"), status_code=401)

    with pytest.raises(ExternalApiError):
        await api_client.search_products(config, store, page_size=20)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(502, text="<html>Bad gateway</html>"),
        httpx.Response(200, json=["not", "an", "envelope"]),
        httpx.Response(200, json={"message": "no code"}),
        httpx.Response(200, json={"code": "abc"}),
    ],
)
async def test_malformed_response_is_transport_error(api_client, marketplace, config, store, response):
    marketplace.on(PRODUCTS, lambda request: response)

    with pytest.raises(TransportError):
        await api_client.search_products(config, store, page_size=20)


@pytest.mark.asyncio
async def test_timeout_is_transport_error(api_client, marketplace, config, store):
    def slow(request):
        raise httpx.ReadTimeout("timed out", request=request)

    marketplace.on(PRODUCTS, slow)

    with pytest.raises(TransportError):
        await api_client.search_products(config, store, page_size=20)


@pytest.mark.asyncio
async def test_transport_retry(settings, marketplace, config, store):
    settings.API_MAX_RETRIES = 1
    client = TikTokApiClient(settings, transport=marketplace.transport)
    attempts = []

    def flaky(request):
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ConnectError("reset", request=request)
        return httpx.Response(200, json=envelope({"products": [{"id": "1"}]}))

    marketplace.on(PRODUCTS, flaky)

    data = await client.search_products(config, store, page_size=20)

    assert data == {"products": [{"id": "1"}]}
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_api_errors_are_not_retried(settings, marketplace, config, store):
    settings.API_MAX_RETRIES = 3
    client = TikTokApiClient(settings, transport=marketplace.transport)
    marketplace.on_json(PRODUCTS, envelope(code=1, message="nope"))

    with pytest.raises(ExternalApiError):
        await client.search_products(config, store, page_size=20)
    assert len(marketplace.requests) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("update", [{"connected": False}, {"access_token": ""}, {"access_token": None}])
async def test_unusable_store_is_rejected_without_call(api_client, marketplace, config, store, update):
    with pytest.raises(StoreNotConnectedError):
        await api_client.search_products(config, store.model_copy(update=update), page_size=20)
    assert marketplace.requests == []


@pytest.mark.asyncio
async def test_missing_credentials_rejected(api_client, marketplace, config, store):
    with pytest.raises(ConfigurationMissingError):
        await api_client.search_products(config.model_copy(update={"app_secret": ""}), store, page_size=20)
    assert marketplace.requests == []


@pytest.mark.asyncio
async def test_last_transport_error_raised_after_retries(settings, marketplace, config, store):
    settings.API_MAX_RETRIES = 2
    client = TikTokApiClient(settings, transport=marketplace.transport)

    def down(request):
        raise httpx.ConnectError(f"refused #{len(marketplace.requests)}", request=request)

    marketplace.on(PRODUCTS, down)

    with pytest.raises(TransportError) as excinfo:
        await client.search_products(config, store, page_size=20)

    assert len(marketplace.requests) == 3
    assert "refused #3" in excinfo.value.message
