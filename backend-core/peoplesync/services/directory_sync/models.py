"""Record types and run results for HR <-> chat directory reconciliation.

Records are typed with explicit optional fields instead of raw JSON dicts so
that partial updates (``EmployeePatch``) can only ever carry the fields that
actually changed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence

# Frappe filter expression: a list of [field, operator, value] triples.
Filter = Sequence[Sequence[Any]]


class EmployeeStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    SUSPENDED = "Suspended"
    LEFT = "Left"


class SyncDirection(str, Enum):
    HR_TO_CHAT = "hr_to_chat"
    CHAT_TO_HR = "chat_to_hr"


class SyncOutcome(str, Enum):
    ALREADY_LINKED = "already_linked"
    LINKED = "linked"
    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


def normalize_email(email: Optional[str]) -> Optional[str]:
    return email.strip().lower() if email and email.strip() else None


def emails_match(left: Optional[str], right: Optional[str]) -> bool:
    a = normalize_email(left)
    return a is not None and a == normalize_email(right)


# ---------------------------------------------------------------------------
# HR side (ERPNext)
# ---------------------------------------------------------------------------

EMPLOYEE_FIELDS = (
    "name",
    "company_email",
    "first_name",
    "last_name",
    "gender",
    "date_of_birth",
    "date_of_joining",
    "status",
    "custom_chat_id",
)


@dataclass(frozen=True)
class EmployeeRecord:
    name: Optional[str] = None
    company_email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    gender: Optional[str] = None
    date_of_birth: Optional[str] = None
    date_of_joining: Optional[str] = None
    status: Optional[str] = None
    custom_chat_id: str = ""

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "EmployeeRecord":
        def _opt(key: str) -> Optional[str]:
            value = data.get(key)
            return str(value) if value not in (None, "") else None

        return cls(
            name=_opt("name"),
            company_email=_opt("company_email"),
            first_name=_opt("first_name"),
            last_name=_opt("last_name"),
            gender=_opt("gender"),
            date_of_birth=_opt("date_of_birth"),
            date_of_joining=_opt("date_of_joining"),
            status=_opt("status"),
            custom_chat_id=str(data.get("custom_chat_id") or ""),
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for key in EMPLOYEE_FIELDS:
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload

    @property
    def is_active(self) -> bool:
        return self.status == EmployeeStatus.ACTIVE.value

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p) or (self.name or "unknown")


@dataclass(frozen=True)
class EmployeePatch:
    """Partial update for one employee; only set fields are sent."""

    name: str
    custom_chat_id: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        updates: dict[str, Any] = {}
        if self.custom_chat_id is not None:
            updates["custom_chat_id"] = self.custom_chat_id
        return updates


@dataclass(frozen=True)
class HRUser:
    """ERPNext login user (distinct from the Employee record)."""

    email: str
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    enabled: bool = True
    role_profile_name: Optional[str] = None
    send_welcome_email: bool = False

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "HRUser":
        return cls(
            email=str(data.get("email") or ""),
            name=data.get("name") or None,
            first_name=data.get("first_name") or None,
            last_name=data.get("last_name") or None,
            username=data.get("username") or None,
            enabled=bool(data.get("enabled", 1)),
            role_profile_name=data.get("role_profile_name") or None,
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "doctype": "User",
            "email": self.email,
            "first_name": self.first_name or "",
            "last_name": self.last_name or "",
            "enabled": 1 if self.enabled else 0,
            "send_welcome_email": 1 if self.send_welcome_email else 0,
        }
        if self.username:
            payload["username"] = self.username
        if self.role_profile_name:
            payload["role_profile_name"] = self.role_profile_name
        return payload


# ---------------------------------------------------------------------------
# Chat side (Mattermost)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChatAccount:
    id: str
    email: str = ""
    username: str = ""
    first_name: str = ""
    last_name: str = ""
    enabled: bool = True
    is_bot: bool = False
    delete_at: int = 0

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "ChatAccount":
        delete_at = int(data.get("delete_at") or 0)
        return cls(
            id=str(data.get("id") or ""),
            email=str(data.get("email") or ""),
            username=str(data.get("username") or ""),
            first_name=str(data.get("first_name") or ""),
            last_name=str(data.get("last_name") or ""),
            enabled=delete_at == 0,
            is_bot=bool(data.get("is_bot", False)),
            delete_at=delete_at,
        )

    @property
    def is_alive(self) -> bool:
        return self.delete_at == 0 and self.enabled


@dataclass(frozen=True)
class ChatAccountDraft:
    email: str
    username: str
    password: str
    first_name: str = ""
    last_name: str = ""
    email_verified: bool = True

    def to_payload(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "username": self.username,
            "password": self.password,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email_verified": self.email_verified,
        }


# ---------------------------------------------------------------------------
# Run configuration and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SyncConfig:
    """Immutable per-run settings, snapshotted before the run starts."""

    page_size: int = 200
    max_pages: int = 20
    max_duration_seconds: float = 20 * 60.0
    custom_field: str = "custom_chat_id"
    custom_field_label: str = "Workdone User ID"
    default_role_profile: str = "Mặc định"
    provision_hr_users: bool = True
    send_credentials: bool = True
    password_length: int = 12
    # Fixed placeholder values for employees created from chat accounts.
    default_gender: str = "Male"
    default_date_of_birth: str = "2000-01-01"
    default_date_of_joining: str = "2000-01-01"


@dataclass(frozen=True)
class RecordResult:
    outcome: SyncOutcome
    label: str
    line: str
    reason: Optional[str] = None


@dataclass(frozen=True)
class IssuedCredential:
    """Temporary login that could not be mailed; returned only to the caller."""

    email: str
    username: str
    password: str


@dataclass(frozen=True)
class SyncResult:
    direction: SyncDirection
    counts: dict[str, int]
    results: tuple[str, ...]
    timed_out: bool
    total_processed: int
    elapsed_seconds: float
    hr_users_created: int = 0
    hr_users_existing: int = 0
    credentials_delivered: int = 0
    credentials_failed: int = 0
    undelivered_credentials: tuple[IssuedCredential, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "direction": self.direction.value,
            "counts": dict(self.counts),
            "results": list(self.results),
            "timed_out": self.timed_out,
            "total_processed": self.total_processed,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "hr_users_created": self.hr_users_created,
            "hr_users_existing": self.hr_users_existing,
            "credentials_delivered": self.credentials_delivered,
            "credentials_failed": self.credentials_failed,
            "undelivered_credentials": [
                {"email": c.email, "username": c.username, "password": c.password}
                for c in self.undelivered_credentials
            ],
        }


@dataclass
class SyncResultBuilder:
    """Append-only accumulator owned by a single run."""

    direction: SyncDirection
    counts: dict[str, int] = field(default_factory=lambda: {o.value: 0 for o in SyncOutcome})
    lines: list[str] = field(default_factory=list)
    timed_out: bool = False
    processed: int = 0
    hr_users_created: int = 0
    hr_users_existing: int = 0
    credentials_delivered: int = 0
    credentials_failed: int = 0
    undelivered: list[IssuedCredential] = field(default_factory=list)

    def record(self, result: RecordResult) -> None:
        self.counts[result.outcome.value] += 1
        self.lines.append(result.line)
        self.processed += 1

    def mark_timed_out(self, processed: int) -> None:
        self.timed_out = True
        self.lines.append(f"TIMEOUT: sync stopped after processing {processed} records")

    def build(self, elapsed_seconds: float) -> SyncResult:
        return SyncResult(
            direction=self.direction,
            counts=dict(self.counts),
            results=tuple(self.lines),
            timed_out=self.timed_out,
            total_processed=self.processed,
            elapsed_seconds=elapsed_seconds,
            hr_users_created=self.hr_users_created,
            hr_users_existing=self.hr_users_existing,
            credentials_delivered=self.credentials_delivered,
            credentials_failed=self.credentials_failed,
            undelivered_credentials=tuple(self.undelivered),
        )
