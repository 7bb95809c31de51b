import json
from typing import Callable, Dict, List

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from voapi_relay.clients.upstream_client import UpstreamClient
from voapi_relay.config.settings import Settings
from voapi_relay.database.repositories import PersistenceGateway
from voapi_relay.models.artifacts import Base
from voapi_relay.services.artifact_service import ArtifactService
from voapi_relay.services.session_manager import SessionManager

BASE_URL = "https://panel.example.test"
LOGIN_COOKIES = [
    ("set-cookie", "session=MTcwMDAwMDAwMHxEdi1CQkFFQ180SUFBUkFCRUFBQV; Path=/; Expires=Sun, 01 Dec 2030 00:00:00 GMT; HttpOnly"),
    ("set-cookie", "voapi_uid=1; Path=/"),
]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        redemption_api_base_url=BASE_URL,
        admin_username="admin",
        admin_password="admin-password",
        api_key="test-api-key",
        database_url="sqlite+aiosqlite:///:memory:",
        log_dir=str(tmp_path / "logs"),
    )


@pytest.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def gateway(session_factory):
    return PersistenceGateway(session_factory)


def reply(status_code: int = 200, body=None, headers=None, text: str = None) -> dict:
    """Canned response; a fresh httpx.Response is built for every request."""
    canned = {"status_code": status_code, "headers": headers or []}
    if text is not None:
        canned["text"] = text
    else:
        canned["json"] = body if body is not None else {}
    return canned


class FakeUpstream:
    """Programmable stand-in for the admin panel behind an httpx.MockTransport."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.login_response = reply(200, {"success": True, "message": ""}, headers=LOGIN_COOKIES)
        self.redemption_response = reply(200, {"success": True, "message": "", "data": ["c0ffee-code"]})
        self.token_response = reply(200, {"success": True, "message": ""})
        self.list_response = reply(200, {"success": True, "message": "", "data": []})
        self.errors: Dict[str, Exception] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.errors:
            raise self.errors[path]
        if path == "/api/user/login":
            return httpx.Response(**self.login_response)
        if path == "/api/redemption/":
            return httpx.Response(**self.redemption_response)
        if path == "/api/token/" and request.method == "POST":
            return httpx.Response(**self.token_response)
        if path == "/api/token/" and request.method == "GET":
            return httpx.Response(**self.list_response)
        return httpx.Response(404, json={"success": False, "message": "not found"})

    def calls_to(self, path: str, method: str = None) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if r.url.path == path and (method is None or r.method == method)
        ]

    def json_body(self, request: httpx.Request) -> dict:
        return json.loads(request.content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def upstream_client(settings, upstream):
    return UpstreamClient(settings, transport=upstream.transport)


@pytest.fixture
def artifact_service(settings, upstream_client, gateway):
    return ArtifactService(SessionManager(upstream_client, settings), upstream_client, gateway, settings)


@pytest.fixture
def count_rows(session_factory) -> Callable:
    from sqlalchemy import func, select

    async def _count(model) -> int:
        async with session_factory() as session:
            result = await session.execute(select(func.count()).select_from(model))
            return result.scalar_one()

    return _count
