"""Tests for the Mattermost v4 client against an in-memory transport."""

from __future__ import annotations

import json

import httpx
import pytest

from peoplesync.services.directory_sync.models import ChatAccountDraft
from peoplesync.services.mattermost import (
    MattermostAPIError,
    MattermostAuthError,
    MattermostClient,
    MattermostConfigurationError,
    UsernameTakenError,
)


def _client(handler) -> MattermostClient:
    return MattermostClient("https://chat.example.com/", "tok", transport=httpx.MockTransport(handler))


def _user(uid: str, **overrides) -> dict:
    data = {
        "id": uid,
        "email": f"{uid}@example.com",
        "username": uid,
        "first_name": "",
        "last_name": "",
        "delete_at": 0,
        "is_bot": False,
    }
    data.update(overrides)
    return data


def _draft(username: str = "anna") -> ChatAccountDraft:
    return ChatAccountDraft(email="anna@example.com", username=username, password="Secret#123")


def test_missing_token_rejected():
    with pytest.raises(MattermostConfigurationError):
        MattermostClient("https://chat.example.com", "  ")


@pytest.mark.asyncio
async def test_list_active_accounts_params_and_parsing():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[_user("u1"), _user("u2", delete_at=1700000000, is_bot=True)])

    client = _client(handler)
    accounts = await client.list_active_accounts(2, 50)

    assert seen[0].url.path == "/api/v4/users"
    assert seen[0].url.params["page"] == "2"
    assert seen[0].url.params["per_page"] == "50"
    assert seen[0].url.params["active"] == "true"
    assert seen[0].headers["Authorization"] == "Bearer tok"
    assert [a.id for a in accounts] == ["u1", "u2"]
    assert accounts[0].is_alive
    assert not accounts[1].is_alive
    assert accounts[1].is_bot
    await client.aclose()


@pytest.mark.asyncio
async def test_lookups_return_none_on_404():
    client = _client(lambda request: httpx.Response(404, json={"id": "app.user.missing_account.const"}))
    assert await client.get_account("nope") is None
    assert await client.find_by_email("nobody@example.com") is None
    assert await client.find_by_username("nobody") is None
    await client.aclose()


@pytest.mark.asyncio
async def test_find_by_email_path():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=_user("u1"))

    client = _client(handler)
    account = await client.find_by_email("u1@example.com")
    assert account is not None and account.id == "u1"
    assert seen[0].url.path == "/api/v4/users/email/u1@example.com"
    await client.aclose()


@pytest.mark.asyncio
async def test_search_by_term_body():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json=[_user("u1")])

    client = _client(handler)
    results = await client.search_by_term("anna@example.com", limit=5)
    assert len(results) == 1
    assert seen[0] == {"term": "anna@example.com", "allow_inactive": False, "limit": 5}
    await client.aclose()


@pytest.mark.asyncio
async def test_create_account_success():
    posted = []

    def handler(request):
        posted.append(json.loads(request.content))
        return httpx.Response(201, json=_user("new1", email="anna@example.com", username="anna"))

    client = _client(handler)
    account = await client.create_account(_draft())
    assert account.id == "new1"
    assert posted[0]["username"] == "anna"
    assert posted[0]["email_verified"] is True
    await client.aclose()


@pytest.mark.asyncio
async def test_create_account_username_taken_by_error_id():
    def handler(request):
        return httpx.Response(
            400,
            json={"id": "app.user.save.username_exists.app_error", "message": "An account with that username already exists."},
        )

    client = _client(handler)
    with pytest.raises(UsernameTakenError) as exc_info:
        await client.create_account(_draft())
    assert exc_info.value.status_code == 400
    await client.aclose()


@pytest.mark.asyncio
async def test_create_account_other_error_is_not_collision():
    def handler(request):
        return httpx.Response(400, json={"id": "model.user.is_valid.email.app_error", "message": "Invalid email."})

    client = _client(handler)
    with pytest.raises(MattermostAPIError) as exc_info:
        await client.create_account(_draft())
    assert not isinstance(exc_info.value, UsernameTakenError)
    assert exc_info.value.error_id == "model.user.is_valid.email.app_error"
    await client.aclose()


@pytest.mark.asyncio
async def test_unauthorized_is_auth_error():
    client = _client(lambda request: httpx.Response(401, json={"message": "Invalid or expired session"}))
    with pytest.raises(MattermostAuthError):
        await client.list_active_accounts(0, 10)
    await client.aclose()


@pytest.mark.asyncio
async def test_transport_failure_is_api_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(MattermostAPIError):
        await client.get_account("u1")
    await client.aclose()



@pytest.mark.asyncio
async def test_create_account_invalid_username_is_not_collision():
    def handler(request):
        return httpx.Response(
            400,
            json={"id": "model.user.is_valid.username.app_error", "message": "Invalid username."},
        )

    client = _client(handler)
    with pytest.raises(MattermostAPIError) as exc_info:
        await client.create_account(_draft("9lives"))
    assert not isinstance(exc_info.value, UsernameTakenError)
    await client.aclose()


@pytest.mark.asyncio
async def test_create_account_username_taken_without_error_id():
    client = _client(lambda request: httpx.Response(400, json={"message": "That username already exists."}))
    with pytest.raises(UsernameTakenError):
        await client.create_account(_draft())
    await client.aclose()


@pytest.mark.asyncio
async def test_find_by_email_escapes_path():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(404, json={})

    client = _client(handler)
    assert await client.find_by_email("a+b?x#y/z@example.com") is None
    raw = seen[0].url.raw_path.decode()
    assert raw.startswith("/api/v4/users/email/")
    assert raw == "/api/v4/users/email/a%2Bb%3Fx%23y%2Fz@example.com"
    assert not seen[0].url.query
    await client.aclose()
