from fastapi import Request

from omniseller.services.credential_repository import SqlAlchemyCredentialRepository
from omniseller.services.store_sync_service import StoreSyncService
from omniseller.services.tiktok_token_service import TikTokTokenService


def get_repository(request: Request) -> SqlAlchemyCredentialRepository:
    return request.app.state.repository


def get_token_service(request: Request) -> TikTokTokenService:
    return request.app.state.token_service


def get_sync_service(request: Request) -> StoreSyncService:
    return request.app.state.sync_service
