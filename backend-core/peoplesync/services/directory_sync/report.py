"""Read-only view of which chat accounts have an HR employee behind them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from ..mattermost import ChatDirectory
from ..remote import RemoteError
from .engine import HRDirectory, SourceEnumerationError, collect_chat_accounts
from .models import EmployeeStatus, SyncConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MappingRow:
    username: str
    email: str
    chat_id: str
    employee_id: Optional[str]
    linked: bool


@dataclass
class MappingReport:
    rows: list[MappingRow] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "matched": [
                {
                    "username": r.username,
                    "email": r.email,
                    "chat_id": r.chat_id,
                    "employee_id": r.employee_id,
                    "linked": r.linked,
                }
                for r in self.rows
            ],
            "unmatched": list(self.unmatched),
            "skipped": self.skipped,
            "errors": list(self.errors),
            "summary": {
                "matched": len(self.rows),
                "linked": sum(1 for r in self.rows if r.linked),
                "unmatched": len(self.unmatched),
            },
        }


async def build_mapping_report(hr: HRDirectory, chat: ChatDirectory, config: SyncConfig) -> MappingReport:
    """Match live chat accounts to employees by email without writing anything.

    ``linked`` is True only when the employee already carries the account id.
    """
    report = MappingReport()
    try:
        accounts = await collect_chat_accounts(chat, config)
    except RemoteError as exc:
        raise SourceEnumerationError(f"Failed to fetch chat users: {exc}") from exc

    for account in accounts:
        if not account.email or account.is_bot or not account.is_alive:
            report.skipped += 1
            continue
        try:
            employee = await hr.find_employee_by_email(account.email)
        except RemoteError as exc:
            logger.warning("Employee lookup failed for %s: %s", account.email, exc)
            report.errors.append(f"{account.email}: {exc}")
            continue
        if employee is None:
            report.unmatched.append(account.email)
            continue
        report.rows.append(
            MappingRow(
                username=account.username,
                email=account.email,
                chat_id=account.id,
                employee_id=employee.name,
                linked=employee.custom_chat_id == account.id,
            )
        )

    logger.info(
        "Mapping report: %d matched, %d unmatched, %d skipped",
        len(report.rows),
        len(report.unmatched),
        report.skipped,
    )
    return report


async def count_active_employees(hr: Any) -> int:
    return await hr.count_employees([["status", "=", EmployeeStatus.ACTIVE.value]])
