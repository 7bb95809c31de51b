import json
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from voapi_relay.api.exceptions import MissingTokenKey
from voapi_relay.clients.upstream_client import UpstreamClient, extract_list_items
from voapi_relay.config.settings import Settings
from voapi_relay.database.repositories import PersistenceGateway
from voapi_relay.services.session_manager import SessionManager, UpstreamSession

# Dedicated artifact workflow logger
artifact_logger = logging.getLogger("artifacts")

TOKEN_KEY_PREFIX = "sk-"
RECONCILIATION_PAGE = 0
RECONCILIATION_PAGE_SIZE = 100

T = TypeVar("T")


def token_key_of(data: Any) -> Optional[str]:
    """``key`` from a token object, also looking inside a ``data`` wrapper."""
    if not isinstance(data, dict):
        return None
    key = data.get("key")
    if not key and isinstance(data.get("data"), dict):
        key = data["data"].get("key")
    return str(key) if key else None


class ArtifactService:
    """Creates redemption codes and tokens on the upstream panel.

    Both workflows follow the same steps: log in, record the session, call the
    upstream, then persist the artifact. Any failure aborts the remaining
    steps. Nothing already done upstream is rolled back.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        client: UpstreamClient,
        gateway: PersistenceGateway,
        settings: Settings,
    ):
        self.session_manager = session_manager
        self.client = client
        self.gateway = gateway
        self.admin_identity = settings.admin_username

    async def _run_workflow(
        self,
        owner_identity: str,
        create: Callable[[UpstreamSession], Awaitable[Any]],
        finish: Callable[[UpstreamSession, Any], Awaitable[T]],
    ) -> T:
        session = await self.session_manager.acquire_session(owner_identity)
        await self.gateway.save_session(
            session.owner_identity, session.cookie_string, captured_at=session.captured_at
        )
        artifact_logger.info(f"New session cookies saved for '{owner_identity}'")

        payload = await create(session)
        return await finish(session, payload)

    async def create_redemption_code(
        self,
        username: str,
        name: str,
        quota: int,
        count: int,
        user_ip: Optional[str],
    ) -> Any:
        artifact_logger.info(f"=== REDEMPTION CODE REQUEST === name={name} quota={quota} count={count} ip={user_ip}")

        async def create(session: UpstreamSession) -> Any:
            return await self.client.create_redemption(name, quota, count, session.cookie_string)

        async def finish(session: UpstreamSession, payload: Any) -> Any:
            await self.gateway.save_redemption_code(payload, name, quota, count, user_ip)
            artifact_logger.info(f"Redemption code '{name}' created and saved")
            return payload

        # The session is recorded under the caller's username here
        return await self._run_workflow(username, create, finish)

    async def create_token(
        self,
        name: str,
        remain_quota: int,
        expired_time: int,
        unlimited_quota: bool,
        model_limits_enabled: bool,
        user_ip: Optional[str],
        model_limits: str = "",
        allow_ips: str = "",
        group: str = "",
    ) -> str:
        """Create a token upstream and return its ``sk-`` prefixed key."""
        artifact_logger.info(f"=== TOKEN REQUEST === name={name} remain_quota={remain_quota} "
                             f"expired_time={expired_time} unlimited_quota={unlimited_quota} ip={user_ip}")

        async def create(session: UpstreamSession) -> Any:
            return await self.client.create_token(
                name=name,
                remain_quota=remain_quota,
                expired_time=expired_time,
                unlimited_quota=unlimited_quota,
                model_limits_enabled=model_limits_enabled,
                cookies=session.cookie_string,
                model_limits=model_limits,
                allow_ips=allow_ips,
                group=group,
            )

        async def finish(session: UpstreamSession, token_data: Any) -> str:
            key = await self._resolve_token_key(session, token_data, name)
            token_key = f"{TOKEN_KEY_PREFIX}{key}"
            await self.gateway.save_token(
                name=name,
                raw_response=token_data,
                token_key=token_key,
                remain_quota=remain_quota,
                expired_time=expired_time,
                unlimited_quota=unlimited_quota,
                model_limits_enabled=model_limits_enabled,
                user_ip=user_ip,
                model_limits=model_limits,
                allow_ips=allow_ips,
                group=group,
            )
            artifact_logger.info(f"Token '{name}' created and saved")
            return token_key

        # Token sessions are always recorded under the admin identity
        return await self._run_workflow(self.admin_identity, create, finish)

    async def _resolve_token_key(self, session: UpstreamSession, token_data: Any, name: str) -> str:
        key = token_key_of(token_data)
        if key:
            return key

        # The creation response had no key: take the first (newest) token of the listing.
        # Nothing ties that item to this request, so a concurrent creation can win the race.
        artifact_logger.info("Creation response has no token key, falling back to the token listing")
        listing = await self.client.list_tokens(
            session.cookie_string, page=RECONCILIATION_PAGE, page_size=RECONCILIATION_PAGE_SIZE
        )
        items = extract_list_items(listing)
        if not items:
            artifact_logger.error(f"Token listing is empty, no key for '{name}'")
            raise MissingTokenKey()

        newest = items[0]
        if newest.get("name") not in (None, name):
            artifact_logger.warning(
                f"First listed token is named '{newest.get('name')}', expected '{name}'; using it anyway"
            )

        key = token_key_of(newest)
        if not key:
            artifact_logger.error(f"First listed token has no key: {json.dumps(newest)[:200]}")
            raise MissingTokenKey()
        return key
