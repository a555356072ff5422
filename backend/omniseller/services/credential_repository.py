from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Protocol

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from omniseller.models.store import MarketplaceConfig, StoreConnection
from omniseller.models_sqlalchemy.models import MarketplaceConfigRecord, StoreConnectionRecord
from omniseller.utils.crypto import TokenCipher
from omniseller.utils.logger import logger


class CredentialRepository(Protocol):
    """What the connector needs from credential storage."""

    def get_marketplace_config(self, seller_id: str, marketplace: str) -> Optional[MarketplaceConfig]: ...

    def list_store_connections(
        self,
        seller_id: str,
        marketplace: Optional[str] = None,
        *,
        connected_only: bool = False,
    ) -> List[StoreConnection]: ...

    def get_store_connection(self, store_id: str) -> Optional[StoreConnection]: ...

    def upsert_store_connection(
        self,
        *,
        seller_id: str,
        marketplace: str,
        external_shop_id: str,
        store_name: str,
        access_token: str,
        refresh_token: Optional[str],
        token_expiry: Optional[datetime],
    ) -> StoreConnection: ...

    def update_store_tokens(
        self,
        store_id: str,
        *,
        access_token: str,
        refresh_token: Optional[str],
        token_expiry: Optional[datetime],
    ) -> Optional[StoreConnection]: ...

    def mark_synced(self, store_id: str, at: datetime) -> None: ...


def _to_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to timezone-aware UTC.

    Depending on the driver, timestamps come back offset-naive (SQLite) or
    offset-aware (Postgres); everything leaving the repository is aware.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class SqlAlchemyCredentialRepository:
    """CredentialRepository backed by the marketplace_configs/store_connections tables.

    Each call opens its own short session, so the repository can be shared by
    concurrent per-store sync tasks. Secrets and tokens are encrypted on write
    and decrypted on read; callers only ever see plaintext domain models.
    """

    def __init__(self, session_factory: sessionmaker, cipher: TokenCipher):
        self._session_factory = session_factory
        self._cipher = cipher

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db: Session = self._session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------
    def _config_from_row(self, row: MarketplaceConfigRecord) -> MarketplaceConfig:
        return MarketplaceConfig(
            seller_id=row.seller_id,
            marketplace=row.marketplace,
            app_key=row.app_key or "",
            app_secret=self._cipher.decrypt(row.app_secret) or "",
            service_id=row.service_id or "",
            webhook_secret=self._cipher.decrypt(row.webhook_secret) or "",
            api_base_url=row.api_base_url or "",
        )

    def _store_from_row(self, row: StoreConnectionRecord) -> StoreConnection:
        return StoreConnection(
            id=row.id,
            seller_id=row.seller_id,
            marketplace=row.marketplace,
            store_name=row.store_name,
            access_token=self._cipher.decrypt(row.access_token),
            refresh_token=self._cipher.decrypt(row.refresh_token),
            token_expiry=_to_utc(row.token_expiry),
            external_shop_id=row.external_shop_id,
            connected=bool(row.connected),
            last_sync_at=_to_utc(row.last_sync_at),
        )

    # ------------------------------------------------------------------
    # Marketplace configuration
    # ------------------------------------------------------------------
    def get_marketplace_config(self, seller_id: str, marketplace: str) -> Optional[MarketplaceConfig]:
        with self._session() as db:
            row = db.query(MarketplaceConfigRecord).filter(
                and_(
                    MarketplaceConfigRecord.seller_id == seller_id,
                    MarketplaceConfigRecord.marketplace == marketplace,
                )
            ).first()
            return self._config_from_row(row) if row else None

    def list_marketplace_configs(self, seller_id: str) -> List[MarketplaceConfig]:
        with self._session() as db:
            rows = (
                db.query(MarketplaceConfigRecord)
                .filter(MarketplaceConfigRecord.seller_id == seller_id)
                .order_by(MarketplaceConfigRecord.marketplace)
                .all()
            )
            return [self._config_from_row(r) for r in rows]

    def save_marketplace_configs(self, seller_id: str, configs: Dict[str, MarketplaceConfig]) -> None:
        """Upsert every marketplace block by (seller_id, marketplace) in one transaction."""
        with self._session() as db:
            for marketplace, config in configs.items():
                row = db.query(MarketplaceConfigRecord).filter(
                    and_(
                        MarketplaceConfigRecord.seller_id == seller_id,
                        MarketplaceConfigRecord.marketplace == marketplace,
                    )
                ).first()
                if row is None:
                    row = MarketplaceConfigRecord(seller_id=seller_id, marketplace=marketplace)
                    db.add(row)
                row.app_key = config.app_key
                row.app_secret = self._cipher.encrypt(config.app_secret)
                row.service_id = config.service_id
                row.webhook_secret = self._cipher.encrypt(config.webhook_secret)
                row.api_base_url = config.api_base_url
            db.commit()
        logger.info("[credentials] Saved %d marketplace config(s) for seller=%s", len(configs), seller_id)

    # ------------------------------------------------------------------
    # Store connections
    # ------------------------------------------------------------------
    def list_store_connections(
        self,
        seller_id: str,
        marketplace: Optional[str] = None,
        *,
        connected_only: bool = False,
    ) -> List[StoreConnection]:
        with self._session() as db:
            query = db.query(StoreConnectionRecord).filter(StoreConnectionRecord.seller_id == seller_id)
            if marketplace is not None:
                query = query.filter(StoreConnectionRecord.marketplace == marketplace)
            if connected_only:
                query = query.filter(StoreConnectionRecord.connected == True)  # noqa: E712
            query = query.order_by(StoreConnectionRecord.created_at, StoreConnectionRecord.id)
            return [self._store_from_row(r) for r in query.all()]

    def get_store_connection(self, store_id: str) -> Optional[StoreConnection]:
        with self._session() as db:
            row = db.query(StoreConnectionRecord).filter(StoreConnectionRecord.id == store_id).first()
            return self._store_from_row(row) if row else None

    def _find_store_by_shop(self, db: Session, seller_id: str, external_shop_id: str) -> Optional[StoreConnectionRecord]:
        return db.query(StoreConnectionRecord).filter(
            and_(
                StoreConnectionRecord.seller_id == seller_id,
                StoreConnectionRecord.external_shop_id == external_shop_id,
            )
        ).first()

    def _apply_tokens(
        self,
        row: StoreConnectionRecord,
        *,
        access_token: str,
        refresh_token: Optional[str],
        token_expiry: Optional[datetime],
        now: datetime,
    ) -> None:
        row.access_token = self._cipher.encrypt(access_token)
        row.refresh_token = self._cipher.encrypt(refresh_token)
        row.token_expiry = token_expiry
        row.connected = True
        row.last_sync_at = now
        row.updated_at = now

    def upsert_store_connection(
        self,
        *,
        seller_id: str,
        marketplace: str,
        external_shop_id: str,
        store_name: str,
        access_token: str,
        refresh_token: Optional[str],
        token_expiry: Optional[datetime],
    ) -> StoreConnection:
        """Create or update the store identified by (seller_id, external_shop_id).

        A concurrent callback for the same shop can insert the row between our
        lookup and our insert; the unique constraint then rejects the insert
        and the existing row is updated instead.
        """
        now = datetime.now(timezone.utc)
        tokens = {"access_token": access_token, "refresh_token": refresh_token, "token_expiry": token_expiry}
        with self._session() as db:
            existing = self._find_store_by_shop(db, seller_id, external_shop_id)

            if existing is None:
                row = StoreConnectionRecord(
                    seller_id=seller_id,
                    marketplace=marketplace,
                    store_name=store_name,
                    external_shop_id=external_shop_id,
                )
                self._apply_tokens(row, now=now, **tokens)
                db.add(row)
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    logger.info(
                        "[credentials] Store for seller=%s shop was connected concurrently; updating it",
                        seller_id,
                    )
                    existing = self._find_store_by_shop(db, seller_id, external_shop_id)
                    if existing is None:
                        raise
                else:
                    db.refresh(row)
                    logger.info(
                        "[credentials] Created store connection %s (%s) for seller=%s", row.id, store_name, seller_id
                    )
                    return self._store_from_row(row)

            self._apply_tokens(existing, now=now, **tokens)
            db.commit()
            db.refresh(existing)
            logger.info("[credentials] Updated store connection %s (seller=%s)", existing.id, seller_id)
            return self._store_from_row(existing)

    def update_store_tokens(
        self,
        store_id: str,
        *,
        access_token: str,
        refresh_token: Optional[str],
        token_expiry: Optional[datetime],
    ) -> Optional[StoreConnection]:
        with self._session() as db:
            row = db.query(StoreConnectionRecord).filter(StoreConnectionRecord.id == store_id).first()
            if row is None:
                return None
            row.access_token = self._cipher.encrypt(access_token)
            if refresh_token:
                row.refresh_token = self._cipher.encrypt(refresh_token)
            row.token_expiry = token_expiry
            row.connected = True
            row.updated_at = datetime.now(timezone.utc)
            db.commit()
            db.refresh(row)
            logger.info("[credentials] Updated tokens for store %s", store_id)
            return self._store_from_row(row)

    def mark_synced(self, store_id: str, at: datetime) -> None:
        with self._session() as db:
            row = db.query(StoreConnectionRecord).filter(StoreConnectionRecord.id == store_id).first()
            if row is None:
                logger.warning("[credentials] mark_synced: store %s not found", store_id)
                return
            row.last_sync_at = at
            db.commit()

    def create_manual_store(self, seller_id: str, marketplace: str, store_name: str) -> StoreConnection:
        """Insert a placeholder store row without credentials (store management UI)."""
        with self._session() as db:
            row = StoreConnectionRecord(
                seller_id=seller_id,
                marketplace=marketplace,
                store_name=store_name,
                connected=True,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return self._store_from_row(row)

    def delete_store_connection(self, store_id: str) -> bool:
        with self._session() as db:
            deleted = db.query(StoreConnectionRecord).filter(StoreConnectionRecord.id == store_id).delete()
            db.commit()
        if deleted:
            logger.info("[credentials] Deleted store connection %s", store_id)
        return bool(deleted)
