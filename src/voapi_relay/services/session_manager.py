from dataclasses import dataclass, field
from datetime import datetime, timezone

from voapi_relay.clients.upstream_client import UpstreamClient
from voapi_relay.config.logging import get_logger
from voapi_relay.config.settings import Settings


@dataclass(frozen=True)
class UpstreamSession:
    owner_identity: str
    cookie_string: str
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SessionManager:
    """Logs in as the configured admin account on every call.

    Sessions are never cached or shared between requests.
    """

    def __init__(self, client: UpstreamClient, settings: Settings):
        self.client = client
        self.admin_username = settings.admin_username
        self.admin_password = settings.admin_password
        self.logger = get_logger("upstream.session")

    async def acquire_session(self, owner_identity: str) -> UpstreamSession:
        self.logger.info("Performing login to obtain new session cookies", owner=owner_identity)
        cookie_string = await self.client.login(self.admin_username, self.admin_password)
        return UpstreamSession(owner_identity=owner_identity, cookie_string=cookie_string)
