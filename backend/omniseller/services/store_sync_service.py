"""Multi-store fan-out for product and order sync.

One sync request for a seller touches every connected store of one
marketplace. Stores are independent, so each gets its own task on a bounded
pool; a store that fails (expired token, marketplace error, timeout) is
logged and left out of the result while the others still come back.

Design goals:
1. Fail open: the caller always gets a list, empty when nothing succeeded
2. One store's failure never touches another store's result
3. Cancellation of the caller cancels every in-flight store call and returns
   nothing (no partial result)
4. ``last_sync_at`` only moves for stores that actually returned data

Usage:
    products = await sync_service.sync_entity(seller_id, TIKTOK_SHOP, EntityKind.PRODUCTS)
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from omniseller.config import Settings
from omniseller.models.catalog import CanonicalOrder, CanonicalProduct, EntityKind
from omniseller.models.store import MarketplaceConfig, StoreConnection
from omniseller.services.credential_repository import CredentialRepository
from omniseller.services.errors import ConnectorError
from omniseller.services.tiktok_api_client import TikTokApiClient
from omniseller.services.tiktok_normalizer import normalize_orders, normalize_products
from omniseller.utils.logger import logger


CanonicalRecord = Union[CanonicalProduct, CanonicalOrder]


@dataclass
class StoreSyncResult:
    """Outcome of one store's call within a sync pass."""

    store_id: str
    success: bool
    records: List[CanonicalRecord] = field(default_factory=list)

    # Error info (only populated on failure)
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    request_id: Optional[str] = None

    synced_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "store_id": self.store_id,
            "success": self.success,
            "record_count": len(self.records),
            "error_code": self.error_code,
            "error_message": self.error_message,
            "request_id": self.request_id,
            "synced_at": self.synced_at.isoformat() if self.synced_at else None,
        }


class StoreSyncService:

    def __init__(
        self,
        settings: Settings,
        repository: CredentialRepository,
        api_client: TikTokApiClient,
    ):
        self.settings = settings
        self.repository = repository
        self.api_client = api_client

    def _now_utc(self) -> datetime:
        return datetime.now(timezone.utc)

    async def _fetch_raw(
        self,
        kind: EntityKind,
        config: MarketplaceConfig,
        store: StoreConnection,
    ) -> Dict[str, Any]:
        page_size = self.settings.SYNC_PAGE_SIZE
        if kind == EntityKind.PRODUCTS:
            return await self.api_client.search_products(config, store, page_size=page_size)
        return await self.api_client.search_orders(config, store, page_size=page_size)

    def _normalize(self, kind: EntityKind, data: Dict[str, Any], store: StoreConnection) -> List[CanonicalRecord]:
        if kind == EntityKind.PRODUCTS:
            return list(normalize_products(data, store.id))
        return list(normalize_orders(data, store.seller_id, store.id))

    async def _sync_one_store(
        self,
        kind: EntityKind,
        config: MarketplaceConfig,
        store: StoreConnection,
        semaphore: asyncio.Semaphore,
    ) -> StoreSyncResult:
        async with semaphore:
            try:
                data = await self._fetch_raw(kind, config, store)
                records = self._normalize(kind, data, store)
            except ConnectorError as exc:
                logger.warning(
                    "[sync] %s: skipping store=%s (%s): %s",
                    kind.value, store.id, exc.code, exc.message,
                )
                return StoreSyncResult(
                    store_id=store.id,
                    success=False,
                    error_code=exc.code,
                    error_message=exc.message,
                    request_id=exc.details.get("request_id"),
                )
            except Exception as exc:
                logger.error(
                    "[sync] %s: unexpected failure for store=%s: %s",
                    kind.value, store.id, exc,
                    exc_info=True,
                )
                return StoreSyncResult(
                    store_id=store.id,
                    success=False,
                    error_code="unexpected_error",
                    error_message=f"{type(exc).__name__}: {exc}",
                )

        if not records:
            logger.info("[sync] %s: store=%s returned no data", kind.value, store.id)
            return StoreSyncResult(store_id=store.id, success=False, error_code="no_data")

        synced_at = self._now_utc()
        try:
            self.repository.mark_synced(store.id, synced_at)
        except Exception as exc:
            # The fetched records are still valid; only the timestamp is stale.
            logger.warning("[sync] Failed to record last_sync_at for store=%s: %s", store.id, exc, exc_info=True)
        logger.info("[sync] %s: store=%s fetched=%d", kind.value, store.id, len(records))
        return StoreSyncResult(store_id=store.id, success=True, records=records, synced_at=synced_at)

    async def sync_stores(
        self,
        seller_id: str,
        marketplace: str,
        entity_kind: EntityKind,
        store_id: Optional[str] = None,
    ) -> List[StoreSyncResult]:
        """Run one sync pass and return every store's outcome, in store order."""
        config = self.repository.get_marketplace_config(seller_id, marketplace)
        if config is None:
            logger.info("[sync] %s: no %s config for seller=%s", entity_kind.value, marketplace, seller_id)
            return []

        stores = self.repository.list_store_connections(seller_id, marketplace, connected_only=True)
        if store_id is not None:
            stores = [s for s in stores if s.id == store_id]
        if not stores:
            return []

        semaphore = asyncio.Semaphore(max(1, self.settings.SYNC_CONCURRENCY))
        results = await asyncio.gather(
            *(self._sync_one_store(entity_kind, config, store, semaphore) for store in stores)
        )

        ok = sum(1 for r in results if r.success)
        logger.info(
            "[sync] %s: seller=%s marketplace=%s stores=%d succeeded=%d",
            entity_kind.value, seller_id, marketplace, len(stores), ok,
        )
        return list(results)

    async def sync_entity(
        self,
        seller_id: str,
        marketplace: str,
        entity_kind: EntityKind,
        store_id: Optional[str] = None,
    ) -> List[CanonicalRecord]:
        results = await self.sync_stores(seller_id, marketplace, entity_kind, store_id)
        merged: List[CanonicalRecord] = []
        for result in results:
            if result.success:
                merged.extend(result.records)
        return merged
