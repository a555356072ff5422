"""Signed request proxy for the TikTok Shop Open API.

One :class:`TikTokApiClient` call builds one signed, authenticated request
for one store and one API operation, dispatches it, and classifies the
outcome:

- envelope ``code == 0``  -> the ``data`` object is returned;
- envelope ``code != 0``  -> :class:`ExternalApiError` (logged with request id);
- timeout / connection error / non-envelope body -> :class:`TransportError`.

The token endpoints (``/api/v2/token/*``) share the envelope parsing but are
not signed; see :meth:`TikTokApiClient.request_token`.
"""
from __future__ import annotations

import time
from typing import Any, Dict, Optional

import httpx

from omniseller.config import Settings
from omniseller.models.store import MarketplaceConfig, StoreConnection
from omniseller.services.errors import (
    ConfigurationMissingError,
    ExternalApiError,
    StoreNotConnectedError,
    TransportError,
)
from omniseller.services.tiktok_signature import sign
from omniseller.utils.logger import logger, sanitize_credentials


ACCESS_TOKEN_HEADER = "x-tts-access-token"


def product_search_path(version: str) -> str:
    return f"/product/{version}/products/search"


def order_search_path(version: str) -> str:
    return f"/order/{version}/orders/search"


def _parse_envelope(response: httpx.Response, *, context: str) -> Dict[str, Any]:
    """Return the ``data`` object of a ``{code, message, data, request_id}`` envelope."""
    try:
        body = response.json()
    except ValueError as exc:
        raise TransportError(
            f"{context}: response is not JSON (HTTP {response.status_code})",
            details={"http_status": response.status_code, "body": response.text[:500]},
        ) from exc

    if not isinstance(body, dict) or "code" not in body:
        raise TransportError(
            f"{context}: response is not a marketplace envelope (HTTP {response.status_code})",
            details={"http_status": response.status_code, "body": str(body)[:500]},
        )

    request_id = body.get("request_id")
    try:
        api_code = int(body.get("code"))
    except (TypeError, ValueError) as exc:
        raise TransportError(
            f"{context}: envelope code is not numeric: {body.get('code')!r}",
            details={"http_status": response.status_code, "request_id": request_id},
        ) from exc

    if api_code != 0:
        raise ExternalApiError(
            str(body.get("message") or "Unknown marketplace error"),
            api_code=api_code,
            request_id=request_id,
            details={"http_status": response.status_code},
        )

    data = body.get("data")
    return data if isinstance(data, dict) else {}


class TikTokApiClient:

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.HTTP_TIMEOUT_SECONDS),
            transport=self._transport,
        )

    def _base_url(self, config: MarketplaceConfig) -> str:
        return (config.api_base_url or self.settings.TIKTOK_API_BASE_URL).rstrip("/")

    def build_common_params(self, config: MarketplaceConfig, store: StoreConnection) -> Dict[str, str]:
        return {
            "app_key": config.app_key,
            "timestamp": str(int(time.time())),
            "shop_cipher": store.external_shop_id or "",
            "version": self.settings.TIKTOK_API_VERSION,
        }

    async def request_token(self, url: str, params: Dict[str, str]) -> Dict[str, Any]:
        """Unsigned GET against a token endpoint; returns the envelope ``data``."""
        logger.info("[tiktok-api] Token request url=%s params=%s", url, sanitize_credentials(params))
        try:
            async with self._client() as client:
                response = await client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise TransportError(f"Token endpoint request failed: {type(exc).__name__}: {exc}") from exc
        return _parse_envelope(response, context="token")

    async def _send_once(
        self,
        config: MarketplaceConfig,
        store: StoreConnection,
        api_path: str,
        body: Dict[str, Any],
    ) -> Dict[str, Any]:
        params = self.build_common_params(config, store)
        params["sign"] = sign(config.app_secret, api_path, params)
        headers = {
            ACCESS_TOKEN_HEADER: store.access_token or "",
            "Content-Type": "application/json",
        }
        url = f"{self._base_url(config)}{api_path}"

        started = time.monotonic()
        try:
            async with self._client() as client:
                response = await client.post(url, params=params, headers=headers, json=body)
        except httpx.HTTPError as exc:
            raise TransportError(
                f"Request to {api_path} failed: {type(exc).__name__}: {exc}",
                details={"store_id": store.id},
            ) from exc

        logger.debug(
            "[tiktok-api] store=%s path=%s status=%s duration_ms=%d",
            store.id,
            api_path,
            response.status_code,
            int((time.monotonic() - started) * 1000),
        )
        return _parse_envelope(response, context=api_path)

    async def call_api(
        self,
        config: MarketplaceConfig,
        store: StoreConnection,
        api_path: str,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Signed POST of ``body`` to ``api_path`` on behalf of ``store``.

        Transport failures are retried up to ``API_MAX_RETRIES`` times with a
        freshly signed request; marketplace errors are raised immediately.
        """
        if not config.has_credentials:
            raise ConfigurationMissingError(
                f"No app key/secret configured for {config.marketplace}; configure credentials first"
            )
        if not store.is_usable:
            raise StoreNotConnectedError(
                f"Store {store.id} is not connected or has no access token",
                details={"store_id": store.id},
            )

        attempts = 1 + max(0, self.settings.API_MAX_RETRIES)
        last_error: Optional[TransportError] = None
        for attempt in range(1, attempts + 1):
            try:
                return await self._send_once(config, store, api_path, body or {})
            except ExternalApiError as exc:
                logger.warning(
                    "[tiktok-api] store=%s path=%s api_code=%s request_id=%s message=%s",
                    store.id,
                    api_path,
                    exc.api_code,
                    exc.request_id,
                    exc.message,
                )
                raise
            except TransportError as exc:
                last_error = exc
                logger.warning(
                    "[tiktok-api] store=%s path=%s transport failure (attempt %d/%d): %s",
                    store.id, api_path, attempt, attempts, exc.message,
                )
        raise last_error

    async def search_products(
        self,
        config: MarketplaceConfig,
        store: StoreConnection,
        *,
        page_size: int,
        status: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"page_size": page_size}
        if status:
            body["status"] = status
        return await self.call_api(config, store, product_search_path(self.settings.TIKTOK_API_VERSION), body)

    async def search_orders(
        self,
        config: MarketplaceConfig,
        store: StoreConnection,
        *,
        page_size: int,
    ) -> Dict[str, Any]:
        body = {"page_size": page_size, "sort_field": "create_time", "sort_order": "DESC"}
        return await self.call_api(config, store, order_search_path(self.settings.TIKTOK_API_VERSION), body)
