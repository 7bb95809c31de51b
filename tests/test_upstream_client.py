import httpx
import pytest

from conftest import BASE_URL, reply
from voapi_relay.api.exceptions import (
    NoSessionCookies,
    UpstreamClientError,
    UpstreamError,
    UpstreamUnreachable,
)
from voapi_relay.clients.upstream_client import (
    USER_AGENT,
    UpstreamClient,
    extract_cookie_string,
    extract_list_items,
)


def test_extract_cookie_string_joins_name_value_pairs():
    response = httpx.Response(200, headers=[
        ("set-cookie", "session=abc; Path=/; HttpOnly"),
        ("set-cookie", "uid=42; Max-Age=3600"),
    ])

    assert extract_cookie_string(response) == "session=abc; uid=42"


def test_extract_cookie_string_without_cookies():
    assert extract_cookie_string(httpx.Response(200)) == ""


def test_extract_list_items_accepts_plain_and_paginated_data():
    assert extract_list_items({"data": [{"key": "a"}, "junk"]}) == [{"key": "a"}]
    assert extract_list_items({"data": {"items": [{"key": "b"}], "total": 1}}) == [{"key": "b"}]
    assert extract_list_items({"data": None}) == []
    assert extract_list_items("not json") == []


@pytest.mark.asyncio
async def test_login_returns_cookie_string_and_sends_anonymous_headers(upstream_client, upstream):
    cookies = await upstream_client.login("admin", "admin-password")

    assert cookies == "session=MTcwMDAwMDAwMHxEdi1CQkFFQ180SUFBUkFCRUFBQV; voapi_uid=1"

    (request,) = upstream.calls_to("/api/user/login", "POST")
    assert request.url.params["turnstile"] == ""
    assert request.headers["VoApi-User"] == "-1"
    assert request.headers["User-Agent"] == USER_AGENT
    assert request.headers["Origin"] == BASE_URL
    assert request.headers["Referer"] == f"{BASE_URL}/login"
    assert "cookie" not in request.headers
    assert upstream.json_body(request) == {"username": "admin", "password": "admin-password"}


@pytest.mark.asyncio
async def test_login_without_set_cookie_fails(upstream_client, upstream):
    upstream.login_response = reply(200, {"success": False, "message": "bad password"})

    with pytest.raises(NoSessionCookies) as exc_info:
        await upstream_client.login("admin", "wrong")

    assert "No session cookies" in exc_info.value.message
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_login_error_body_is_passed_through(upstream_client, upstream):
    upstream.login_response = reply(403, {"success": False, "message": "blocked"})

    with pytest.raises(UpstreamError) as exc_info:
        await upstream_client.login("admin", "admin-password")

    assert exc_info.value.stage == "login"
    assert exc_info.value.message == 'Login API Error: {"success": false, "message": "blocked"}'


@pytest.mark.asyncio
async def test_login_unreachable(upstream_client, upstream):
    upstream.errors["/api/user/login"] = httpx.ConnectError("connection refused")

    with pytest.raises(UpstreamUnreachable) as exc_info:
        await upstream_client.login("admin", "admin-password")

    assert exc_info.value.message == "Login API Error: No response received from the login service."


@pytest.mark.asyncio
async def test_request_that_cannot_be_built(settings):
    client = UpstreamClient(settings.model_copy(update={"redemption_api_base_url": "ftp://panel"}))

    with pytest.raises(UpstreamClientError) as exc_info:
        await client.login("admin", "admin-password")

    assert exc_info.value.message.startswith("Login Error:")


@pytest.mark.asyncio
async def test_create_redemption_sends_session_cookie(upstream_client, upstream):
    payload = await upstream_client.create_redemption("promo", 500, 2, "session=abc; uid=1")

    assert payload == {"success": True, "message": "", "data": ["c0ffee-code"]}

    (request,) = upstream.calls_to("/api/redemption/", "POST")
    assert request.headers["Cookie"] == "session=abc; uid=1"
    assert request.headers["VoApi-User"] == "1"
    assert request.headers["Referer"] == f"{BASE_URL}/redemption"
    assert upstream.json_body(request) == {"name": "promo", "quota": 500, "count": 2}


@pytest.mark.asyncio
async def test_create_redemption_rejected_with_success_false(upstream_client, upstream):
    upstream.redemption_response = reply(200, {"success": False, "message": "quota too large"})

    with pytest.raises(UpstreamError) as exc_info:
        await upstream_client.create_redemption("promo", 500, 2, "session=abc")

    assert exc_info.value.message == 'API Error: {"success": false, "message": "quota too large"}'


@pytest.mark.asyncio
async def test_create_redemption_plain_text_error(upstream_client, upstream):
    upstream.redemption_response = reply(502, text="Bad Gateway")

    with pytest.raises(UpstreamError) as exc_info:
        await upstream_client.create_redemption("promo", 500, 2, "session=abc")

    assert exc_info.value.detail == "Bad Gateway"
    assert exc_info.value.stage == "create_redemption"


@pytest.mark.asyncio
async def test_create_redemption_timeout(upstream_client, upstream):
    upstream.errors["/api/redemption/"] = httpx.ReadTimeout("timed out")

    with pytest.raises(UpstreamUnreachable) as exc_info:
        await upstream_client.create_redemption("promo", 500, 2, "session=abc")

    assert exc_info.value.message == "API Error: No response received from the redemption service."


@pytest.mark.asyncio
async def test_create_token_payload(upstream_client, upstream):
    upstream.token_response = reply(200, {"key": "abc123"})

    payload = await upstream_client.create_token(
        name="t1",
        remain_quota=100,
        expired_time=-1,
        unlimited_quota=False,
        model_limits_enabled=True,
        cookies="session=abc",
        model_limits="gpt-4o,claude-3-5-sonnet",
        group="vip",
    )

    assert payload == {"key": "abc123"}
    (request,) = upstream.calls_to("/api/token/", "POST")
    assert request.headers["Referer"] == f"{BASE_URL}/token"
    assert upstream.json_body(request) == {
        "name": "t1",
        "remain_quota": 100,
        "expired_time": -1,
        "unlimited_quota": False,
        "model_limits_enabled": True,
        "model_limits": "gpt-4o,claude-3-5-sonnet",
        "allow_ips": "",
        "group": "vip",
    }


@pytest.mark.asyncio
async def test_list_tokens_query(upstream_client, upstream):
    upstream.list_response = reply(200, {"success": True, "data": [{"key": "zzz999"}]})

    payload = await upstream_client.list_tokens("session=abc", page=0, page_size=100)

    assert payload["data"][0]["key"] == "zzz999"
    (request,) = upstream.calls_to("/api/token/", "GET")
    assert request.url.params["p"] == "0"
    assert request.url.params["size"] == "100"
    assert request.headers["Cookie"] == "session=abc"


@pytest.mark.asyncio
async def test_no_cookie_jar_is_shared_between_calls(upstream_client, upstream):
    await upstream_client.login("admin", "admin-password")
    await upstream_client.login("admin", "admin-password")

    second_login = upstream.calls_to("/api/user/login")[1]
    assert "cookie" not in second_login.headers
