import json
import logging
from typing import Any, Optional, Sequence

import httpx

from .directory_sync.models import EMPLOYEE_FIELDS, EmployeePatch, EmployeeRecord, Filter, HRUser
from .remote import RemoteError

logger = logging.getLogger(__name__)


class ERPNextError(RemoteError):
    pass


class ERPNextAPIError(ERPNextError):
    pass


class ERPNextAuthError(ERPNextAPIError):
    pass


class ERPNextNotFoundError(ERPNextAPIError):
    pass


class ERPNextConflictError(ERPNextAPIError):
    pass


class ERPNextConfigurationError(ERPNextError):
    pass


USER_FIELDS = ("name", "email", "first_name", "last_name", "username", "enabled", "role_profile_name")

# Full permission set attached to the default role profile on creation.
DEFAULT_PROFILE_ROLES = (
    "System Manager",
    "Administrator",
    "Employee",
    "Employee Self Service",
    "HR Manager",
    "HR User",
    "Accounts Manager",
    "Accounts User",
    "Sales Manager",
    "Sales User",
    "Purchase Manager",
    "Purchase User",
    "Stock Manager",
    "Stock User",
    "Manufacturing Manager",
    "Manufacturing User",
    "Projects Manager",
    "Projects User",
    "Website Manager",
    "Desk User",
    "All",
)


def _is_duplicate_error(exc: ERPNextAPIError) -> bool:
    if isinstance(exc, ERPNextConflictError):
        return True
    body = (exc.body or "").lower()
    return "duplicateentryerror" in body or "already exists" in body


class ERPNextClient:
    """Async client for the ERPNext (Frappe) REST resource API.

    Every non-2xx response raises ``ERPNextAPIError`` carrying the status code
    and the response body. Nothing is retried here; retry policy belongs to the
    caller.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_secret: str,
        *,
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url or not api_key or not api_secret:
            raise ERPNextConfigurationError("ERPNext URL, API key and API secret are required")

        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"token {api_key}:{api_secret}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
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
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, params=params, json=json_body)
        except httpx.HTTPError as exc:
            raise ERPNextAPIError(f"ERPNext request failed: {exc}") from exc

        status = response.status_code
        if status < 200 or status >= 300:
            text = response.text
            message = f"ERPNext API returned status code {status}: {text}"
            if status in (401, 403):
                raise ERPNextAuthError(message, status_code=status, body=text)
            if status == 404:
                raise ERPNextNotFoundError(message, status_code=status, body=text)
            if status == 409:
                raise ERPNextConflictError(message, status_code=status, body=text)
            raise ERPNextAPIError(message, status_code=status, body=text)

        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise ERPNextAPIError(
                f"ERPNext returned invalid JSON: {exc}", status_code=status, body=response.text
            ) from exc
        if not isinstance(data, dict):
            raise ERPNextAPIError("ERPNext returned a non-object document", status_code=status, body=response.text)
        return data

    async def _list(
        self,
        doctype: str,
        *,
        filters: Filter | None = None,
        fields: Sequence[str] | None = None,
        limit_start: int | None = None,
        limit_page_length: int | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {}
        if filters:
            params["filters"] = json.dumps([list(f) for f in filters])
        if fields:
            params["fields"] = json.dumps(list(fields))
        if limit_start is not None:
            params["limit_start"] = str(limit_start)
        if limit_page_length is not None:
            params["limit_page_length"] = str(limit_page_length)

        data = await self._request("GET", f"/api/resource/{doctype}", params=params)
        rows = data.get("data")
        if not isinstance(rows, list):
            return []
        return [r for r in rows if isinstance(r, dict)]

    # ------------------------------------------------------------------
    # Employees
    # ------------------------------------------------------------------

    async def list_employees(
        self,
        filters: Filter | None = None,
        *,
        page_size: int = 200,
        max_pages: int = 20,
    ) -> list[EmployeeRecord]:
        """Fetch every employee matching ``filters`` using offset pagination.

        A page shorter than ``page_size`` ends the walk. After ``max_pages``
        pages the result is truncated (logged, not raised).
        """
        employees: list[EmployeeRecord] = []
        start = 0
        for page in range(max_pages):
            rows = await self._list(
                "Employee",
                filters=filters,
                fields=EMPLOYEE_FIELDS,
                limit_start=start,
                limit_page_length=page_size,
            )
            employees.extend(EmployeeRecord.from_payload(r) for r in rows)
            logger.info(
                "ERPNext employees page %d: fetched %d (total so far: %d)",
                page + 1,
                len(rows),
                len(employees),
            )
            if len(rows) < page_size:
                return employees
            start += page_size

        logger.warning(
            "ERPNext employee listing hit the %d page ceiling; result truncated at %d records",
            max_pages,
            len(employees),
        )
        return employees

    async def count_employees(self, filters: Filter | None = None) -> int:
        data = await self._request(
            "GET",
            "/api/method/frappe.client.get_count",
            params={
                "doctype": "Employee",
                "filters": json.dumps([list(f) for f in filters or []]),
            },
        )
        try:
            return int(data.get("message") or 0)
        except (TypeError, ValueError) as exc:
            raise ERPNextAPIError(f"ERPNext returned a non-numeric count: {data!r}") from exc

    async def find_employee_by_email(self, email: str) -> Optional[EmployeeRecord]:
        rows = await self._list(
            "Employee",
            filters=[["company_email", "=", email]],
            fields=EMPLOYEE_FIELDS,
        )
        if not rows:
            return None
        if len(rows) > 1:
            logger.warning("ERPNext has %d employees with email %s; using the first", len(rows), email)
        return EmployeeRecord.from_payload(rows[0])

    async def create_employee(self, record: EmployeeRecord) -> str:
        payload = {"doctype": "Employee", **record.to_payload()}
        payload.pop("name", None)
        data = await self._request("POST", "/api/resource/Employee", json_body=payload)
        name = str((data.get("data") or {}).get("name") or "").strip()
        if not name:
            raise ERPNextAPIError("ERPNext create employee returned no name", body=json.dumps(data))
        return name

    async def update_employee(self, patch: EmployeePatch) -> None:
        changes = patch.changes()
        if not changes:
            return
        await self._request("PUT", f"/api/resource/Employee/{patch.name}", json_body=changes)

    # ------------------------------------------------------------------
    # Schema bootstrap
    # ------------------------------------------------------------------

    async def custom_field_exists(self, fieldname: str, doctype: str) -> bool:
        rows = await self._list(
            "Custom Field",
            filters=[["fieldname", "=", fieldname], ["dt", "=", doctype]],
        )
        return len(rows) > 0

    async def ensure_custom_field(
        self,
        fieldname: str,
        label: str,
        *,
        doctype: str = "Employee",
        fieldtype: str = "Data",
        required: bool = False,
    ) -> bool:
        """Create the custom field unless it exists. Returns True if created."""
        if await self.custom_field_exists(fieldname, doctype):
            logger.info("Custom field %s already exists on %s", fieldname, doctype)
            return False

        payload = {
            "doctype": "Custom Field",
            "dt": doctype,
            "fieldname": fieldname,
            "label": label,
            "fieldtype": fieldtype,
            "insert_after": "employee_name",
            "reqd": 1 if required else 0,
            "in_list_view": 0,
            "in_standard_filter": 1,
            "in_global_search": 1,
            "allow_in_quick_entry": 1,
            "translatable": 0,
            "unique": 0,
            "no_copy": 0,
            "read_only": 0,
            "hide_display": 0,
        }
        try:
            await self._request("POST", "/api/resource/Custom Field", json_body=payload)
        except ERPNextAPIError as exc:
            if _is_duplicate_error(exc):
                logger.info("Custom field %s was created concurrently", fieldname)
                return False
            raise
        logger.info("Created custom field %s on %s", fieldname, doctype)
        return True

    async def role_profile_exists(self, name: str) -> bool:
        rows = await self._list("Role Profile", filters=[["role_profile", "=", name]])
        return len(rows) > 0

    async def ensure_role_profile(self, name: str) -> bool:
        if await self.role_profile_exists(name):
            logger.info("Role profile %r already exists", name)
            return False

        payload = {
            "doctype": "Role Profile",
            "role_profile": name,
            "roles": [{"role": role} for role in DEFAULT_PROFILE_ROLES],
        }
        try:
            await self._request("POST", "/api/resource/Role Profile", json_body=payload)
        except ERPNextAPIError as exc:
            if _is_duplicate_error(exc):
                logger.info("Role profile %r was created concurrently", name)
                return False
            raise
        logger.info("Created role profile %r", name)
        return True

    # ------------------------------------------------------------------
    # Login users
    # ------------------------------------------------------------------

    async def find_user_by_email(self, email: str) -> Optional[HRUser]:
        rows = await self._list("User", filters=[["email", "=", email]], fields=USER_FIELDS)
        if not rows:
            return None
        return HRUser.from_payload(rows[0])

    async def create_user(self, user: HRUser) -> str:
        data = await self._request("POST", "/api/resource/User", json_body=user.to_payload())
        name = str((data.get("data") or {}).get("name") or "").strip()
        if not name:
            raise ERPNextAPIError("ERPNext create user returned no name", body=json.dumps(data))
        return name
