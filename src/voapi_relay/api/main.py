import os
import secrets
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Security
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse
from fastapi.security import APIKeyHeader
from fastapi.staticfiles import StaticFiles

from voapi_relay.api.exceptions import (
    AuthorizationError,
    RelayServiceException,
    general_exception_handler,
    relay_service_exception_handler,
    validation_exception_handler,
)
from voapi_relay.api.middleware import get_client_ip, log_requests_middleware, security_headers_middleware
from voapi_relay.api.schemas import (
    HealthResponse,
    RedemptionCodeRequest,
    RedemptionCodeResponse,
    TokenRequest,
    TokenResponse,
)
from voapi_relay.clients.upstream_client import UpstreamClient
from voapi_relay.config.logging import get_logger
from voapi_relay.config.settings import Settings, get_settings
from voapi_relay.database.connection import create_engine, create_session_factory, init_db
from voapi_relay.database.repositories import PersistenceGateway
from voapi_relay.services.artifact_service import ArtifactService
from voapi_relay.services.session_manager import SessionManager

STATIC_DIR = os.path.join(os.path.dirname(__file__), "..", "static")

logger = get_logger("api")

api_key_header = APIKeyHeader(name="x-api-key", auto_error=False)


async def require_api_key(request: Request, api_key: Optional[str] = Security(api_key_header)) -> bool:
    """Check the shared secret before anything else touches the request."""
    expected = request.app.state.settings.api_key
    if not api_key or not secrets.compare_digest(api_key.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Rejected request with invalid API key",
                       path=request.url.path,
                       client_ip=get_client_ip(request),
                       key_present=bool(api_key))
        raise AuthorizationError()
    return True


def get_artifact_service(request: Request) -> ArtifactService:
    return request.app.state.artifact_service


router = APIRouter()


@router.get("/", include_in_schema=False)
async def index():
    index_file = os.path.join(STATIC_DIR, "index.html")
    if not os.path.exists(index_file):
        raise HTTPException(status_code=404, detail="Form not found")
    return FileResponse(index_file)


@router.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse()


@router.post("/api/create", response_model=RedemptionCodeResponse)
@router.post("/api/create-redemption-code", response_model=RedemptionCodeResponse)
async def create_redemption_code(
    body: RedemptionCodeRequest,
    request: Request,
    _: bool = Depends(require_api_key),
    service: ArtifactService = Depends(get_artifact_service),
):
    code_data = await service.create_redemption_code(
        username=body.username,
        name=body.name,
        quota=body.quota,
        count=body.count,
        user_ip=get_client_ip(request),
    )
    return RedemptionCodeResponse(data=code_data)


@router.post("/api/create-token", response_model=TokenResponse)
async def create_token(
    body: TokenRequest,
    request: Request,
    _: bool = Depends(require_api_key),
    service: ArtifactService = Depends(get_artifact_service),
):
    token_key = await service.create_token(
        name=body.name,
        remain_quota=body.remain_quota,
        expired_time=body.expired_time,
        unlimited_quota=body.unlimited_quota,
        model_limits_enabled=body.model_limits_enabled,
        user_ip=get_client_ip(request),
        model_limits=body.model_limits,
        allow_ips=body.allow_ips,
        group=body.group,
    )
    return TokenResponse(data=token_key)


def create_app(
    settings: Optional[Settings] = None,
    upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the application.

    The database engine, its connection pool and the artifact service are
    created in the lifespan and shared by all requests; the pool is disposed
    on shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting VoAPI credential relay", upstream=settings.upstream_root)

        engine = create_engine(settings)
        await init_db(engine)
        logger.info("Database schema ready")

        client = UpstreamClient(settings, transport=upstream_transport)
        gateway = PersistenceGateway(create_session_factory(engine))
        app.state.artifact_service = ArtifactService(
            SessionManager(client, settings), client, gateway, settings
        )

        try:
            yield
        finally:
            logger.info("Shutting down VoAPI credential relay")
            await engine.dispose()

    app = FastAPI(
        title="VoAPI Credential Relay",
        description="Creates redemption codes and tokens on an upstream VoAPI panel and records them",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_exception_handler(RelayServiceException, relay_service_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.middleware("http")(security_headers_middleware)
    app.middleware("http")(log_requests_middleware)

    if os.path.exists(STATIC_DIR):
        app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    app.include_router(router)
    return app
