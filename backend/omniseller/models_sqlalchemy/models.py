from sqlalchemy import Column, String, Text, DateTime, Boolean, Index, UniqueConstraint
from datetime import datetime, timezone
import uuid

from . import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MarketplaceConfigRecord(Base):
    __tablename__ = "marketplace_configs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    seller_id = Column(String(64), nullable=False)
    marketplace = Column(String(64), nullable=False)
    app_key = Column(Text, nullable=True)
    # Stored encrypted (ENC:v1:...) by the credential repository.
    app_secret = Column(Text, nullable=True)
    service_id = Column(Text, nullable=True)
    webhook_secret = Column(Text, nullable=True)
    api_base_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("seller_id", "marketplace", name="uq_marketplace_configs_seller_marketplace"),
        Index("idx_marketplace_configs_seller_id", "seller_id"),
    )


class StoreConnectionRecord(Base):
    __tablename__ = "store_connections"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    seller_id = Column(String(64), nullable=False)
    marketplace = Column(String(64), nullable=False)
    store_name = Column(Text, nullable=False)
    # Physical columns hold encrypted blobs.
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    token_expiry = Column(DateTime(timezone=True), nullable=True)
    # shop_cipher for TikTok Shop; NULL for manually created rows.
    external_shop_id = Column(Text, nullable=True)
    connected = Column(Boolean, nullable=False, default=False)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("seller_id", "external_shop_id", name="uq_store_connections_seller_shop"),
        Index("idx_store_connections_seller_id", "seller_id"),
        Index("idx_store_connections_seller_marketplace", "seller_id", "marketplace"),
    )
