import json
import logging
from typing import Any, Optional, Protocol
from urllib.parse import quote

import httpx

from .directory_sync.models import ChatAccount, ChatAccountDraft
from .remote import RemoteError

logger = logging.getLogger(__name__)


class MattermostError(RemoteError):
    pass


class MattermostConfigurationError(MattermostError):
    pass


class MattermostAPIError(MattermostError):
    def __init__(self, message: str, *, status_code: int = 0, body: str = "", error_id: str = "") -> None:
        self.error_id = error_id
        super().__init__(message, status_code=status_code, body=body)


class MattermostAuthError(MattermostAPIError):
    pass


class UsernameTakenError(MattermostAPIError):
    """Account creation rejected because the username is already in use."""


_USERNAME_EXISTS_IDS = {
    "app.user.save.username_exists.app_error",
    "store.sql_user.save.username_exists.app_error",
}


def _is_username_taken(exc: MattermostAPIError) -> bool:
    if exc.error_id in _USERNAME_EXISTS_IDS:
        return True
    # Older servers omit the id; validation errors ("is_valid") are never collisions.
    if exc.status_code != 400 or "is_valid" in exc.error_id:
        return False
    message = str(exc).lower()
    return "username" in message and ("exists" in message or "taken" in message)


class ChatDirectory(Protocol):
    """What the reconciliation engine needs from the chat platform."""

    async def list_active_accounts(self, page: int, per_page: int) -> list[ChatAccount]: ...

    async def get_account(self, account_id: str) -> Optional[ChatAccount]: ...

    async def find_by_email(self, email: str) -> Optional[ChatAccount]: ...

    async def find_by_username(self, username: str) -> Optional[ChatAccount]: ...

    async def search_by_term(self, term: str, limit: int = 10) -> list[ChatAccount]: ...

    async def create_account(self, draft: ChatAccountDraft) -> ChatAccount: ...


class MattermostClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.token = (token or "").strip()
        if not base_url or not self.token:
            raise MattermostConfigurationError("MATTERMOST_URL and MATTERMOST_TOKEN must be set")

        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/api/v4",
            headers={"Authorization": f"Bearer {self.token}"},
            timeout=httpx.Timeout(timeout_s),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
        allow_not_found: bool = False,
    ) -> Any:
        try:
            response = await self._client.request(method, path, params=params, json=json_body)
        except httpx.HTTPError as exc:
            raise MattermostAPIError(f"Mattermost request failed: {exc}") from exc

        status = response.status_code
        if status == 404 and allow_not_found:
            return None

        if status < 200 or status >= 300:
            text = response.text
            error_id = ""
            detail = text
            try:
                err = response.json()
                if isinstance(err, dict):
                    error_id = str(err.get("id") or "")
                    detail = str(err.get("message") or text)
            except json.JSONDecodeError:
                pass

            message = f"Mattermost API error ({status}): {detail}"
            if status == 401:
                raise MattermostAuthError(message, status_code=status, body=text, error_id=error_id)
            raise MattermostAPIError(message, status_code=status, body=text, error_id=error_id)

        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise MattermostAPIError(
                f"Mattermost API returned invalid JSON: {exc}", status_code=status, body=response.text
            ) from exc

    async def list_active_accounts(self, page: int, per_page: int) -> list[ChatAccount]:
        data = await self._request(
            "GET",
            "/users",
            params={"page": str(page), "per_page": str(per_page), "active": "true"},
        )
        if not isinstance(data, list):
            return []
        return [ChatAccount.from_payload(u) for u in data if isinstance(u, dict)]

    async def get_account(self, account_id: str) -> Optional[ChatAccount]:
        data = await self._request("GET", f"/users/{quote(account_id, safe='')}", allow_not_found=True)
        return ChatAccount.from_payload(data) if isinstance(data, dict) else None

    async def find_by_email(self, email: str) -> Optional[ChatAccount]:
        data = await self._request("GET", f"/users/email/{quote(email, safe='@')}", allow_not_found=True)
        return ChatAccount.from_payload(data) if isinstance(data, dict) else None

    async def find_by_username(self, username: str) -> Optional[ChatAccount]:
        data = await self._request("GET", f"/users/username/{quote(username, safe='')}", allow_not_found=True)
        return ChatAccount.from_payload(data) if isinstance(data, dict) else None

    async def search_by_term(self, term: str, limit: int = 10) -> list[ChatAccount]:
        data = await self._request(
            "POST",
            "/users/search",
            json_body={"term": term, "allow_inactive": False, "limit": limit},
        )
        if not isinstance(data, list):
            return []
        return [ChatAccount.from_payload(u) for u in data if isinstance(u, dict)]

    async def create_account(self, draft: ChatAccountDraft) -> ChatAccount:
        try:
            data = await self._request("POST", "/users", json_body=draft.to_payload())
        except MattermostAPIError as exc:
            if _is_username_taken(exc):
                raise UsernameTakenError(
                    str(exc), status_code=exc.status_code, body=exc.body, error_id=exc.error_id
                ) from exc
            raise
        if not isinstance(data, dict) or not data.get("id"):
            raise MattermostAPIError("Mattermost create user returned no id", body=json.dumps(data))
        return ChatAccount.from_payload(data)
