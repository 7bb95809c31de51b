import json
from typing import Any, Dict, List, Optional

import httpx

from voapi_relay.api.exceptions import (
    NoSessionCookies,
    UpstreamClientError,
    UpstreamError,
    UpstreamUnreachable,
)
from voapi_relay.config.logging import get_logger, mask_secret
from voapi_relay.config.settings import Settings

# The panel rejects requests that do not look like they came from its own web UI
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
ANONYMOUS_USER = "-1"
AUTHENTICATED_USER = "1"

LOGIN_PATH = "/api/user/login?turnstile="
REDEMPTION_PATH = "/api/redemption/"
TOKEN_PATH = "/api/token/"


class UpstreamStage:
    LOGIN = "login"
    CREATE_REDEMPTION = "create_redemption"
    CREATE_TOKEN = "create_token"
    LIST_TOKENS = "list_tokens"


# (label used in error messages, service name used when nothing came back)
_STAGE_LABELS = {
    UpstreamStage.LOGIN: ("Login", "login"),
    UpstreamStage.CREATE_REDEMPTION: ("", "redemption"),
    UpstreamStage.CREATE_TOKEN: ("", "token"),
    UpstreamStage.LIST_TOKENS: ("", "token listing"),
}


def extract_cookie_string(response: httpx.Response) -> str:
    """Join the name=value part of every Set-Cookie header with '; '."""
    cookies = []
    for header in response.headers.get_list("set-cookie"):
        pair = header.split(";", 1)[0].strip()
        if pair:
            cookies.append(pair)
    return "; ".join(cookies)


def _body_of(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _serialize(body: Any) -> str:
    if isinstance(body, str):
        return body
    return json.dumps(body)


def extract_list_items(payload: Any) -> List[Dict[str, Any]]:
    """Items of a token listing: either ``data`` itself or ``data.items``."""
    if not isinstance(payload, dict):
        return []
    data = payload.get("data")
    if isinstance(data, dict):
        data = data.get("items")
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    return []


class UpstreamClient:
    """Talks to the upstream admin panel.

    Every call opens its own ``httpx.AsyncClient`` so that cookies set by one
    response never leak into another request. TLS verification is disabled
    because the panel is usually served with a self-signed certificate.
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.upstream_root
        self.timeout = settings.upstream_timeout_seconds
        self._transport = transport
        self.logger = get_logger("upstream.client")

    def _headers(self, referer_path: str, cookies: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Accept": "application/json, text/plain, */*",
            "Accept-Language": "en-US,en;q=0.9",
            "Connection": "keep-alive",
            "Content-Type": "application/json",
            "Origin": self.base_url,
            "Referer": f"{self.base_url}{referer_path}",
            "User-Agent": USER_AGENT,
            "VoApi-User": AUTHENTICATED_USER if cookies is not None else ANONYMOUS_USER,
        }
        if cookies is not None:
            headers["Cookie"] = cookies
        return headers

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            verify=False,
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )

    async def _send(self, stage: str, method: str, path: str, headers: Dict[str, str], **kwargs) -> httpx.Response:
        label, service = _STAGE_LABELS[stage]
        prefix = f"{label} " if label else ""
        url = f"{self.base_url}{path}"

        self.logger.debug("Sending upstream request", stage=stage, method=method, url=url)
        try:
            async with self._http_client() as client:
                response = await client.request(method, url, headers=headers, **kwargs)
        except (httpx.UnsupportedProtocol, httpx.InvalidURL, httpx.LocalProtocolError) as e:
            self.logger.error("Could not build upstream request", stage=stage, url=url, error=str(e))
            raise UpstreamClientError(stage, str(e), message=f"{prefix}Error: {e}")
        except httpx.RequestError as e:
            self.logger.error("No response from upstream",
                              stage=stage,
                              url=url,
                              error=str(e),
                              error_type=type(e).__name__)
            raise UpstreamUnreachable(
                stage, f"{prefix}API Error: No response received from the {service} service."
            )

        self.logger.debug("Upstream response received",
                          stage=stage,
                          status_code=response.status_code,
                          response_size=len(response.content))

        if response.status_code >= 400:
            detail = _serialize(_body_of(response))
            self.logger.error("Upstream returned an error status",
                              stage=stage,
                              status_code=response.status_code,
                              response_text=detail[:500])
            raise UpstreamError(stage, detail, message=f"{prefix}API Error: {detail}")

        return response

    def _payload(self, stage: str, response: httpx.Response) -> Any:
        payload = _body_of(response)
        # The panel answers 200 with {"success": false, "message": ...} for rejected actions
        if isinstance(payload, dict) and payload.get("success") is False:
            detail = _serialize(payload)
            self.logger.error("Upstream rejected the request", stage=stage, response_text=detail[:500])
            label = _STAGE_LABELS[stage][0]
            prefix = f"{label} " if label else ""
            raise UpstreamError(stage, detail, message=f"{prefix}API Error: {detail}")
        return payload

    async def login(self, username: str, password: str) -> str:
        """Log in as the admin account and return the session cookie string."""
        self.logger.info("Logging in to upstream panel", url=f"{self.base_url}{LOGIN_PATH}", username=username)

        response = await self._send(
            UpstreamStage.LOGIN, "POST", LOGIN_PATH,
            headers=self._headers("/login"),
            json={"username": username, "password": password},
        )

        cookie_string = extract_cookie_string(response)
        if not cookie_string:
            self.logger.error("Login response carried no session cookies", status_code=response.status_code)
            raise NoSessionCookies()

        self.logger.info("Session cookies obtained from login",
                         cookie_count=cookie_string.count(";") + 1,
                         cookies=mask_secret(cookie_string))
        return cookie_string

    async def create_redemption(self, name: str, quota: int, count: int, cookies: str) -> Any:
        self.logger.info("Creating redemption code", name=name, quota=quota, count=count,
                         cookies=mask_secret(cookies))
        response = await self._send(
            UpstreamStage.CREATE_REDEMPTION, "POST", REDEMPTION_PATH,
            headers=self._headers("/redemption", cookies),
            json={"name": name, "quota": int(quota), "count": int(count)},
        )
        payload = self._payload(UpstreamStage.CREATE_REDEMPTION, response)
        self.logger.info("Redemption code generated successfully", name=name)
        return payload

    async def create_token(
        self,
        name: str,
        remain_quota: int,
        expired_time: int,
        unlimited_quota: bool,
        model_limits_enabled: bool,
        cookies: str,
        model_limits: str = "",
        allow_ips: str = "",
        group: str = "",
    ) -> Any:
        self.logger.info("Creating token",
                         name=name,
                         remain_quota=remain_quota,
                         expired_time=expired_time,
                         unlimited_quota=unlimited_quota)
        response = await self._send(
            UpstreamStage.CREATE_TOKEN, "POST", TOKEN_PATH,
            headers=self._headers("/token", cookies),
            json={
                "name": name,
                "remain_quota": int(remain_quota),
                "expired_time": int(expired_time),
                "unlimited_quota": bool(unlimited_quota),
                "model_limits_enabled": bool(model_limits_enabled),
                "model_limits": model_limits,
                "allow_ips": allow_ips,
                "group": group,
            },
        )
        payload = self._payload(UpstreamStage.CREATE_TOKEN, response)
        self.logger.info("Token created upstream", name=name)
        return payload

    async def list_tokens(self, cookies: str, page: int = 0, page_size: int = 100) -> Any:
        self.logger.debug("Listing tokens", page=page, page_size=page_size)
        response = await self._send(
            UpstreamStage.LIST_TOKENS, "GET", TOKEN_PATH,
            headers=self._headers("/token", cookies),
            params={"p": page, "size": page_size},
        )
        payload = self._payload(UpstreamStage.LIST_TOKENS, response)
        self.logger.debug("Token listing received", item_count=len(extract_list_items(payload)))
        return payload
