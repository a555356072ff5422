"""TikTok Shop OAuth credential lifecycle.

Covers the whole life of a store's credentials:

1. ``build_authorization_url`` - where the seller's browser is sent, carrying
   an opaque ``state`` (base64 JSON with the initiating seller id under ``u``);
2. ``decode_state`` - validation of that state when the marketplace redirects
   back; anything malformed is an :class:`InvalidStateError` and no network
   call is made;
3. ``exchange_authorization_code`` - auth code -> tokens, then an upsert of
   the seller's :class:`StoreConnection` keyed by shop cipher;
4. ``refresh_store_token`` - refresh grant for an existing store.

Token operations fail closed: nothing is persisted unless the marketplace
returned a complete, successful token payload.

Usage:
    state = decode_state(request.query_params["state"])
    store = await token_service.exchange_authorization_code(state.seller_id, code)
"""
from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from omniseller.config import Settings
from omniseller.models.store import TIKTOK_SHOP, MarketplaceConfig, StoreConnection
from omniseller.services.credential_repository import CredentialRepository
from omniseller.services.errors import (
    ConfigurationMissingError,
    ExternalApiError,
    InvalidStateError,
    StoreNotFoundError,
)
from omniseller.services.tiktok_api_client import TikTokApiClient
from omniseller.utils.logger import logger, mask_secret


# access_token_expire_in values above this are absolute unix timestamps.
_ABSOLUTE_EXPIRY_THRESHOLD = 1_000_000_000


@dataclass
class AuthState:
    seller_id: str
    extra: Dict[str, Any] = field(default_factory=dict)


def encode_state(seller_id: str, **extra: Any) -> str:
    payload = {"u": seller_id, **extra}
    return base64.b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8")).decode("ascii")


def decode_state(state: Optional[str]) -> AuthState:
    if not state:
        raise InvalidStateError("Missing OAuth state parameter")
    # A '+' that was not percent-encoded comes back from the query string as a
    # space, and browsers and proxies sometimes drop base64 padding.
    candidate = state.replace(" ", "+")
    padded = candidate + "=" * (-len(candidate) % 4)
    try:
        try:
            raw = base64.b64decode(padded, validate=True)
        except binascii.Error:
            raw = base64.b64decode(padded, altchars=b"-_", validate=True)
        obj = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise InvalidStateError("Invalid State parameter") from exc

    if not isinstance(obj, dict):
        raise InvalidStateError("Invalid State parameter: not a JSON object")
    seller_id = obj.get("u")
    if not isinstance(seller_id, str) or not seller_id.strip():
        raise InvalidStateError("Invalid State parameter: missing seller id")

    extra = {k: v for k, v in obj.items() if k != "u"}
    return AuthState(seller_id=seller_id, extra=extra)


def resolve_token_expiry(raw: Any, *, now: Optional[datetime] = None) -> Optional[datetime]:
    """Turn ``access_token_expire_in`` into an aware datetime.

    The live API sends an absolute unix timestamp; a relative number of
    seconds is accepted as well. Missing or unparsable values give ``None``.
    """
    if raw is None:
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None
    if value <= 0:
        return None
    if value > _ABSOLUTE_EXPIRY_THRESHOLD:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return now + timedelta(seconds=value)


def default_shop_name(shop_id: str) -> str:
    return f"TikTok Shop ({shop_id[:6]}...)"


class TikTokTokenService:

    def __init__(
        self,
        settings: Settings,
        repository: CredentialRepository,
        api_client: TikTokApiClient,
        *,
        marketplace: str = TIKTOK_SHOP,
    ):
        self.settings = settings
        self.repository = repository
        self.api_client = api_client
        self.marketplace = marketplace

    def _require_config(self, seller_id: str) -> MarketplaceConfig:
        config = self.repository.get_marketplace_config(seller_id, self.marketplace)
        if config is None or not config.has_credentials:
            logger.warning(
                "[token] No %s app key/secret configured for seller=%s", self.marketplace, seller_id
            )
            raise ConfigurationMissingError(
                f"{self.marketplace} App Key/Secret are not configured yet; configure credentials first",
                details={"seller_id": seller_id, "marketplace": self.marketplace},
            )
        return config

    def build_authorization_url(self, seller_id: str, **state_extra: Any) -> str:
        config = self._require_config(seller_id)
        query = {"state": encode_state(seller_id, **state_extra)}
        if config.service_id:
            query["service_id"] = config.service_id
        else:
            query["app_key"] = config.app_key
        return f"{self.settings.TIKTOK_AUTHORIZE_URL}?{urlencode(query)}"

    async def exchange_authorization_code(self, seller_id: str, authorization_code: str) -> StoreConnection:
        config = self._require_config(seller_id)
        if not authorization_code:
            raise InvalidStateError("No 'code' returned from TikTok")

        logger.info(
            "[token] Exchanging authorization code for seller=%s code=%s",
            seller_id,
            mask_secret(authorization_code),
        )
        data = await self.api_client.request_token(
            self.settings.token_url,
            {
                "app_key": config.app_key,
                "app_secret": config.app_secret,
                "auth_code": authorization_code,
                "grant_type": "authorized_code",
            },
        )

        access_token = data.get("access_token")
        shop_id = data.get("shop_cipher")
        if not access_token or not shop_id:
            raise ExternalApiError(
                "Token response is missing access_token or shop_cipher",
                details={"fields": sorted(data.keys())},
            )

        store = self.repository.upsert_store_connection(
            seller_id=seller_id,
            marketplace=self.marketplace,
            external_shop_id=str(shop_id),
            store_name=data.get("seller_name") or default_shop_name(str(shop_id)),
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            token_expiry=resolve_token_expiry(data.get("access_token_expire_in")),
        )
        logger.info(
            "[token] Store %s connected for seller=%s shop=%s",
            store.id,
            seller_id,
            mask_secret(store.external_shop_id),
        )
        return store

    async def refresh_store_token(self, store_id: str) -> StoreConnection:
        store = self.repository.get_store_connection(store_id)
        if store is None:
            raise StoreNotFoundError(f"Store {store_id} not found", details={"store_id": store_id})
        config = self._require_config(store.seller_id)
        if not store.refresh_token:
            raise ConfigurationMissingError(
                f"Store {store_id} has no refresh token; reconnect the store",
                details={"store_id": store_id},
            )

        data = await self.api_client.request_token(
            self.settings.refresh_token_url,
            {
                "app_key": config.app_key,
                "app_secret": config.app_secret,
                "refresh_token": store.refresh_token,
                "grant_type": "refresh_token",
            },
        )
        access_token = data.get("access_token")
        if not access_token:
            raise ExternalApiError("Refresh response is missing access_token", details={"store_id": store_id})

        updated = self.repository.update_store_tokens(
            store_id,
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            token_expiry=resolve_token_expiry(data.get("access_token_expire_in")),
        )
        if updated is None:
            # Deleted between read and write.
            raise StoreNotFoundError(f"Store {store_id} not found", details={"store_id": store_id})
        logger.info("[token] Refreshed token for store %s", store_id)
        return updated
