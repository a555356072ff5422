import logging
import uuid
from typing import Optional

import httpx
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from sqlalchemy import text

from omniseller.config import Settings
from omniseller.models_sqlalchemy import Base, build_engine, build_session_factory
from omniseller.routers import settings as settings_router
from omniseller.routers import stores, sync, tiktok_auth
from omniseller.services.credential_repository import SqlAlchemyCredentialRepository
from omniseller.services.errors import (
    ConfigurationMissingError,
    ConnectorError,
    ExternalApiError,
    InvalidStateError,
    StoreNotConnectedError,
    StoreNotFoundError,
    TransportError,
)
from omniseller.services.store_sync_service import StoreSyncService
from omniseller.services.tiktok_api_client import TikTokApiClient
from omniseller.services.tiktok_token_service import TikTokTokenService
from omniseller.utils.crypto import TokenCipher
from omniseller.utils.logger import logger


ERROR_STATUS = {
    InvalidStateError: 400,
    ConfigurationMissingError: 400,
    StoreNotConnectedError: 409,
    StoreNotFoundError: 404,
    ExternalApiError: 502,
    TransportError: 502,
}


def _status_for(exc: ConnectorError) -> int:
    for exc_type, status_code in ERROR_STATUS.items():
        if isinstance(exc, exc_type):
            return status_code
    return 500


def create_app(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the API with its connector services wired from one Settings instance.

    ``transport`` is handed to the marketplace HTTP client (tests pass an
    ``httpx.MockTransport``).
    """
    settings = settings or Settings()

    engine = build_engine(settings.DATABASE_URL)
    Base.metadata.create_all(bind=engine)
    repository = SqlAlchemyCredentialRepository(build_session_factory(engine), TokenCipher(settings.SECRET_KEY))
    api_client = TikTokApiClient(settings, transport=transport)

    app = FastAPI(title="OmniSeller Marketplace Connector", version="1.0.0", debug=settings.DEBUG)
    app.state.settings = settings
    app.state.repository = repository
    app.state.token_service = TikTokTokenService(settings, repository, api_client)
    app.state.sync_service = StoreSyncService(settings, repository, api_client)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=3600,
    )

    # Request logging middleware with request ID
    @app.middleware("http")
    async def request_logger(request: Request, call_next):
        rid = uuid.uuid4().hex[:8]
        request.state.rid = rid
        logger.info("→ %s %s rid=%s", request.method, request.url.path, rid)
        try:
            resp = await call_next(request)
            logger.info("← %s status=%s rid=%s", request.url.path, resp.status_code, rid)
            resp.headers["X-Request-ID"] = rid
            return resp
        except Exception as e:
            logger.exception("Unhandled error rid=%s: %s", rid, str(e))
            error_resp = JSONResponse(
                {"error": {"code": "internal_error", "message": str(e), "type": type(e).__name__, "rid": rid}},
                status_code=500,
            )
            error_resp.headers["X-Request-ID"] = rid
            return error_resp

    @app.exception_handler(ConnectorError)
    async def connector_error_handler(request: Request, exc: ConnectorError):
        status_code = _status_for(exc)
        log = logger.warning if status_code < 500 else logger.error
        log("Connector error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse({"error": exc.to_dict()}, status_code=status_code)

    @app.get("/", response_class=HTMLResponse)
    async def health():
        return "<h1>OmniSeller Backend is Live!</h1><p>Your server is running correctly.</p>"

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    @app.get("/healthz/db")
    async def healthz_db():
        """Database health check endpoint"""
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            return {"status": "ok", "database": "connected"}
        except Exception as e:
            logger.exception("Database health check failed")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=f"Database unavailable: {type(e).__name__}: {str(e)}",
            )

    app.include_router(tiktok_auth.router)
    app.include_router(sync.router)
    app.include_router(stores.router)
    app.include_router(settings_router.router)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logger.info("OmniSeller API ready (database=%s)", engine.url.render_as_string(hide_password=True))
    return app
