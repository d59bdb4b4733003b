"""Tests for the Google OAuth client."""
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from outreach.services import oauth_service
from outreach.services.gmail_errors import ConfigurationMissing, ExchangeFailed, RefreshRejected
from outreach.services.oauth_service import GoogleOAuthClient


@pytest.fixture
def oauth_client():
    return GoogleOAuthClient(
        "client-id", "client-secret", "http://localhost/callback", retry_base_delay=0
    )


def _fake_client(monkeypatch, responses: list, captured: list):
    class _FakeAsyncClient:
        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, url, data=None, params=None, headers=None):
            captured.append({"url": url, "data": data, "params": params})
            response = responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response

    monkeypatch.setattr(oauth_service.httpx, "AsyncClient", lambda **_kwargs: _FakeAsyncClient())


def test_auth_url_requests_offline_send_scope(oauth_client):
    url = oauth_client.get_auth_url("state-123")
    query = parse_qs(urlparse(url).query)

    assert url.startswith(oauth_service.GMAIL_AUTH_URL)
    assert query["client_id"] == ["client-id"]
    assert query["redirect_uri"] == ["http://localhost/callback"]
    assert query["response_type"] == ["code"]
    assert query["scope"] == ["https://www.googleapis.com/auth/gmail.send"]
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["state"] == ["state-123"]


def test_missing_credentials_raise_configuration_missing():
    client = GoogleOAuthClient("", "")
    with pytest.raises(ConfigurationMissing):
        client.get_auth_url("state")


@pytest.mark.asyncio
async def test_exchange_code_posts_form(monkeypatch, oauth_client):
    captured: list = []
    _fake_client(
        monkeypatch,
        [httpx.Response(200, json={"access_token": "a", "refresh_token": "r", "expires_in": 3600})],
        captured,
    )

    tokens = await oauth_client.exchange_code("abc")

    assert tokens["access_token"] == "a"
    assert captured[0]["url"] == oauth_service.GMAIL_TOKEN_URL
    assert captured[0]["data"]["code"] == "abc"
    assert captured[0]["data"]["grant_type"] == "authorization_code"


@pytest.mark.asyncio
async def test_exchange_code_retries_transient_failures(monkeypatch, oauth_client):
    request = httpx.Request("POST", oauth_service.GMAIL_TOKEN_URL)
    captured: list = []
    _fake_client(
        monkeypatch,
        [
            httpx.ConnectError("boom", request=request),
            httpx.Response(503),
            httpx.Response(200, json={"access_token": "a"}),
        ],
        captured,
    )

    tokens = await oauth_client.exchange_code("abc")

    assert tokens["access_token"] == "a"
    assert len(captured) == 3


@pytest.mark.asyncio
async def test_exchange_code_error_carries_provider_payload(monkeypatch, oauth_client):
    payload = {"error": "invalid_grant", "error_description": "Bad Request"}
    _fake_client(monkeypatch, [httpx.Response(400, json=payload)], [])

    with pytest.raises(ExchangeFailed) as exc_info:
        await oauth_client.exchange_code("abc")

    assert exc_info.value.details == payload


@pytest.mark.asyncio
async def test_exchange_code_network_failure_after_retries(monkeypatch, oauth_client):
    request = httpx.Request("POST", oauth_service.GMAIL_TOKEN_URL)
    _fake_client(
        monkeypatch,
        [httpx.ConnectError("boom", request=request) for _ in range(3)],
        [],
    )

    with pytest.raises(ExchangeFailed):
        await oauth_client.exchange_code("abc")


@pytest.mark.asyncio
async def test_refresh_returns_new_token(monkeypatch, oauth_client):
    captured: list = []
    _fake_client(monkeypatch, [httpx.Response(200, json={"access_token": "new", "expires_in": 3599})], captured)

    payload = await oauth_client.refresh_access_token("refresh-1")

    assert payload["access_token"] == "new"
    assert captured[0]["data"]["grant_type"] == "refresh_token"
    assert captured[0]["data"]["refresh_token"] == "refresh-1"


@pytest.mark.asyncio
async def test_refresh_invalid_grant_is_rejected(monkeypatch, oauth_client):
    _fake_client(monkeypatch, [httpx.Response(400, json={"error": "invalid_grant"})], [])

    with pytest.raises(RefreshRejected):
        await oauth_client.refresh_access_token("refresh-1")


@pytest.mark.asyncio
async def test_refresh_transient_failure_returns_none(monkeypatch, oauth_client):
    _fake_client(monkeypatch, [httpx.Response(500), httpx.Response(500), httpx.Response(500)], [])

    assert await oauth_client.refresh_access_token("refresh-1") is None


@pytest.mark.asyncio
async def test_revoke_token(monkeypatch, oauth_client):
    captured: list = []
    _fake_client(monkeypatch, [httpx.Response(200), httpx.Response(400)], captured)

    assert await oauth_client.revoke_token("access-1") is True
    assert captured[0]["params"] == {"token": "access-1"}
    assert await oauth_client.revoke_token("access-1") is False
