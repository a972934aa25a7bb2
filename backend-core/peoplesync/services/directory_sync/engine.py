"""Deadline-bounded reconciliation between the HR and chat directories.

One run walks a single source directory in one direction:

* ``hr_to_chat``: every active ERPNext employee ends up linked to a live
  Mattermost account, creating the account when none matches by email.
* ``chat_to_hr``: every live Mattermost account ends up linked from an
  ERPNext employee, creating the employee when none matches by email.

The link lives in the employee's ``custom_chat_id`` field; the engine keeps
no state of its own between runs. Records are processed one at a time and a
failure on one record never stops the run. Only schema bootstrap and source
enumeration failures abort.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable, Optional, Protocol

from ..mattermost import ChatDirectory, UsernameTakenError
from ..remote import RemoteError
from .credentials import CredentialNotifier
from .identity import generate_password, slugify_username, with_collision_suffix
from .models import (
    ChatAccount,
    ChatAccountDraft,
    EmployeePatch,
    EmployeeRecord,
    EmployeeStatus,
    Filter,
    HRUser,
    IssuedCredential,
    RecordResult,
    SyncConfig,
    SyncDirection,
    SyncOutcome,
    SyncResult,
    SyncResultBuilder,
    emails_match,
)

logger = logging.getLogger(__name__)

_HR_PROGRESS_EVERY = 25
_CHAT_PROGRESS_EVERY = 50
_SEARCH_LIMIT = 10


class SyncError(Exception):
    pass


class SchemaBootstrapError(SyncError):
    """Required custom field or role profile could not be ensured."""


class SourceEnumerationError(SyncError):
    """The source directory could not be listed."""


class HRDirectory(Protocol):
    async def list_employees(
        self, filters: Filter | None = None, *, page_size: int = 200, max_pages: int = 20
    ) -> list[EmployeeRecord]: ...

    async def find_employee_by_email(self, email: str) -> Optional[EmployeeRecord]: ...

    async def create_employee(self, record: EmployeeRecord) -> str: ...

    async def update_employee(self, patch: EmployeePatch) -> None: ...

    async def ensure_custom_field(
        self, fieldname: str, label: str, *, doctype: str = "Employee", fieldtype: str = "Data", required: bool = False
    ) -> bool: ...

    async def ensure_role_profile(self, name: str) -> bool: ...

    async def find_user_by_email(self, email: str) -> Optional[HRUser]: ...

    async def create_user(self, user: HRUser) -> str: ...


def _result(outcome: SyncOutcome, label: str, detail: str, reason: str | None = None) -> RecordResult:
    return RecordResult(outcome=outcome, label=label, line=f"{label} - {detail}", reason=reason)


def _employee_label(employee: EmployeeRecord) -> str:
    return f"{employee.display_name} ({employee.company_email or employee.name or 'no id'})"


def _account_label(account: ChatAccount) -> str:
    return f"{account.username or account.id} ({account.email})"


def _hr_username(account: ChatAccount) -> str:
    local = account.email.split("@", 1)[0]
    return local or f"user_{account.id[:8]}"


async def collect_chat_accounts(chat: ChatDirectory, config: SyncConfig) -> list[ChatAccount]:
    """Walk active chat accounts page by page.

    A short page ends the walk. After ``config.max_pages`` pages the result is
    truncated with a warning. Remote errors propagate.
    """
    accounts: list[ChatAccount] = []
    page_size = config.page_size
    for page in range(config.max_pages):
        batch = await chat.list_active_accounts(page, page_size)
        accounts.extend(batch)
        logger.info("Fetched chat page %d: %d users (total so far: %d)", page + 1, len(batch), len(accounts))
        if len(batch) < page_size:
            return accounts

    logger.warning(
        "Reached maximum page limit (%d) listing chat users; result truncated at %d",
        config.max_pages,
        len(accounts),
    )
    return accounts


class DirectorySyncEngine:
    def __init__(
        self,
        hr: HRDirectory,
        chat: ChatDirectory,
        config: SyncConfig,
        *,
        notifier: CredentialNotifier | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.hr = hr
        self.chat = chat
        self.config = config
        self.notifier = notifier
        self.clock = clock

    # ------------------------------------------------------------------
    # Bootstrap and enumeration
    # ------------------------------------------------------------------

    async def ensure_schema(self, direction: SyncDirection) -> None:
        try:
            await self.hr.ensure_custom_field(self.config.custom_field, self.config.custom_field_label)
            if direction == SyncDirection.CHAT_TO_HR:
                await self.hr.ensure_role_profile(self.config.default_role_profile)
        except RemoteError as exc:
            logger.error("Schema bootstrap failed: %s", exc)
            raise SchemaBootstrapError(f"Schema bootstrap failed: {exc}") from exc

    async def collect_chat_accounts(self) -> list[ChatAccount]:
        return await collect_chat_accounts(self.chat, self.config)

    def _deadline_passed(self, started: float) -> bool:
        return self.clock() - started > self.config.max_duration_seconds

    # ------------------------------------------------------------------
    # HR -> chat
    # ------------------------------------------------------------------

    async def run_hr_to_chat(self) -> SyncResult:
        started = self.clock()
        builder = SyncResultBuilder(direction=SyncDirection.HR_TO_CHAT)

        await self.ensure_schema(SyncDirection.HR_TO_CHAT)
        try:
            employees = await self.hr.list_employees(
                page_size=self.config.page_size, max_pages=self.config.max_pages
            )
        except RemoteError as exc:
            raise SourceEnumerationError(f"Failed to fetch employees: {exc}") from exc
        logger.info("Fetched %d employees from ERPNext", len(employees))

        for index, employee in enumerate(employees):
            if self._deadline_passed(started):
                logger.warning("Employee sync reached maximum duration, stopping after %d records", index)
                builder.mark_timed_out(index)
                break
            if index and index % _HR_PROGRESS_EVERY == 0:
                logger.info(
                    "Employee sync progress: %d/%d (%.1f%%) in %.1fs",
                    index,
                    len(employees),
                    index / len(employees) * 100,
                    self.clock() - started,
                )

            try:
                result = await self._sync_employee(employee, builder)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Unexpected error syncing employee %s", employee.name)
                result = _result(SyncOutcome.FAILED, _employee_label(employee), f"Error: {exc}", "error")
            builder.record(result)

        return self._finish(builder, started)

    async def _sync_employee(self, employee: EmployeeRecord, builder: SyncResultBuilder) -> RecordResult:
        label = _employee_label(employee)
        email = employee.company_email

        if not email:
            return _result(SyncOutcome.SKIPPED, label, "Skipped (No Email)", "no_email")
        if not employee.is_active:
            status = employee.status or "unknown"
            return _result(SyncOutcome.SKIPPED, label, f"Skipped (Inactive: {status})", "inactive")

        if employee.custom_chat_id:
            linked = await self._resolve_linked_account(employee.custom_chat_id)
            if linked is not None and linked.is_alive and emails_match(linked.email, email):
                return _result(SyncOutcome.ALREADY_LINKED, label, "Already Mapped")
            logger.debug(
                "Mapped chat user %s no longer valid for %s; re-discovering",
                employee.custom_chat_id,
                email,
            )

        match = await self._discover_chat_account(email)
        if match is not None:
            if match.is_bot:
                return _result(SyncOutcome.SKIPPED, label, "Skipped (Matching chat account is a bot)", "bot")
            if not match.is_alive:
                return _result(
                    SyncOutcome.SKIPPED, label, "Skipped (Matching chat account is deactivated)", "deleted"
                )
            if match.id == employee.custom_chat_id:
                return _result(SyncOutcome.ALREADY_LINKED, label, "Already Mapped")
            try:
                await self.hr.update_employee(EmployeePatch(name=employee.name or "", custom_chat_id=match.id))
            except RemoteError as exc:
                logger.error("Failed to update %s for employee %s: %s", self.config.custom_field, employee.name, exc)
                return _result(SyncOutcome.FAILED, label, f"Update Failed: {exc}", "link_failed")
            return _result(SyncOutcome.LINKED, label, f"Mapped to existing user {match.username}")

        return await self._create_chat_account(employee, builder)

    async def _resolve_linked_account(self, account_id: str) -> Optional[ChatAccount]:
        try:
            return await self.chat.get_account(account_id)
        except RemoteError as exc:
            logger.warning("Could not resolve linked chat user %s: %s", account_id, exc)
            return None

    async def _discover_chat_account(self, email: str) -> Optional[ChatAccount]:
        """Exact email lookup, then one term-search fallback.

        The fallback only accepts a live, non-bot account whose email matches
        case-insensitively. If several do, the first one wins.
        """
        try:
            account = await self.chat.find_by_email(email)
        except RemoteError as exc:
            logger.debug("Direct email lookup failed for %s, trying search: %s", email, exc)
            account = None
        if account is not None:
            return account

        candidates = [
            a for a in await self.chat.search_by_term(email, limit=_SEARCH_LIMIT)
            if emails_match(a.email, email) and a.is_alive and not a.is_bot
        ]
        if len(candidates) > 1:
            logger.warning(
                "Search found %d live chat users for %s; using %s",
                len(candidates),
                email,
                candidates[0].id,
            )
        if candidates:
            logger.info("Found chat user by search: %s (%s)", candidates[0].id, candidates[0].email)
            return candidates[0]
        return None

    async def _create_chat_account(self, employee: EmployeeRecord, builder: SyncResultBuilder) -> RecordResult:
        label = _employee_label(employee)
        email = employee.company_email or ""

        username = slugify_username(employee.first_name, employee.last_name)
        if await self.chat.find_by_username(username) is not None:
            username = with_collision_suffix(username)

        draft = ChatAccountDraft(
            email=email,
            username=username,
            password=generate_password(self.config.password_length),
            first_name=employee.first_name or "",
            last_name=employee.last_name or "",
        )
        logger.info("Creating chat user %s for employee %s", username, employee.name)

        try:
            account = await self.chat.create_account(draft)
        except UsernameTakenError:
            draft = replace(draft, username=with_collision_suffix(username))
            logger.info("Username %s taken, retrying once as %s", username, draft.username)
            try:
                account = await self.chat.create_account(draft)
            except RemoteError as exc:
                return _result(SyncOutcome.FAILED, label, f"User Creation Failed (retry): {exc}", "create_failed")
        except RemoteError as exc:
            return _result(SyncOutcome.FAILED, label, f"User Creation Failed: {exc}", "create_failed")

        try:
            await self.hr.update_employee(EmployeePatch(name=employee.name or "", custom_chat_id=account.id))
        except RemoteError as exc:
            logger.error(
                "Created chat user %s but failed to link employee %s: %s", account.id, employee.name, exc
            )
            return _result(SyncOutcome.FAILED, label, f"User Created but Update Failed: {exc}", "link_failed")

        delivery = await self._deliver_credentials(email, account, draft.password, builder)
        return _result(SyncOutcome.CREATED, label, f"New User Created{delivery}, Username: {account.username}")

    async def _deliver_credentials(
        self, recipient: str, account: ChatAccount, password: str, builder: SyncResultBuilder
    ) -> str:
        """Email the temporary login; anything not mailed goes back to the caller."""
        if self.config.send_credentials and self.notifier is not None:
            try:
                await self.notifier.deliver(recipient, account.username, password)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Credential email to %s failed: %s", recipient, exc)
                builder.credentials_failed += 1
                status = " (Credential email failed, returned to caller)"
            else:
                builder.credentials_delivered += 1
                return " (Credentials emailed)"
        else:
            status = " (Credentials returned to caller)"
        builder.undelivered.append(IssuedCredential(email=recipient, username=account.username, password=password))
        return status

    # ------------------------------------------------------------------
    # chat -> HR
    # ------------------------------------------------------------------

    async def run_chat_to_hr(self) -> SyncResult:
        started = self.clock()
        builder = SyncResultBuilder(direction=SyncDirection.CHAT_TO_HR)

        await self.ensure_schema(SyncDirection.CHAT_TO_HR)
        try:
            accounts = await self.collect_chat_accounts()
        except RemoteError as exc:
            raise SourceEnumerationError(f"Failed to fetch chat users: {exc}") from exc

        for index, account in enumerate(accounts):
            if self._deadline_passed(started):
                logger.warning("User sync reached maximum duration, stopping after %d records", index)
                builder.mark_timed_out(index)
                break
            if index and index % _CHAT_PROGRESS_EVERY == 0:
                logger.info("User sync progress: %d/%d (%.1f%%)", index, len(accounts), index / len(accounts) * 100)

            try:
                result = await self._sync_account(account, builder)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Unexpected error syncing chat user %s", account.id)
                result = _result(SyncOutcome.FAILED, _account_label(account), f"Error: {exc}", "error")
            builder.record(result)

        return self._finish(builder, started)

    async def _sync_account(self, account: ChatAccount, builder: SyncResultBuilder) -> RecordResult:
        label = _account_label(account)

        if not account.email:
            return _result(SyncOutcome.SKIPPED, label, "Skipped (No Email)", "no_email")
        if account.is_bot:
            return _result(SyncOutcome.SKIPPED, label, "Skipped (Bot)", "bot")
        if not account.is_alive:
            return _result(SyncOutcome.SKIPPED, label, "Skipped (Deleted)", "deleted")

        try:
            employee = await self.hr.find_employee_by_email(account.email)
        except RemoteError as exc:
            logger.error("Error finding employee by email %s: %s", account.email, exc)
            return _result(SyncOutcome.FAILED, label, f"Error: {exc}", "lookup_failed")

        if employee is not None:
            result = await self._link_employee(employee, account, label)
        else:
            result = await self._create_employee(account, label)

        if result.outcome in (SyncOutcome.FAILED, SyncOutcome.SKIPPED) or not self.config.provision_hr_users:
            return result
        suffix = await self._ensure_hr_user(account, builder)
        return replace(result, line=result.line + suffix)

    async def _link_employee(self, employee: EmployeeRecord, account: ChatAccount, label: str) -> RecordResult:
        if employee.custom_chat_id == account.id:
            return _result(SyncOutcome.ALREADY_LINKED, label, "Already Mapped")

        if employee.custom_chat_id:
            current = await self._resolve_linked_account(employee.custom_chat_id)
            if current is not None and current.is_alive and emails_match(current.email, employee.company_email):
                return _result(
                    SyncOutcome.SKIPPED,
                    label,
                    f"Skipped (Employee {employee.name} already linked to {current.username})",
                    "linked_elsewhere",
                )

        logger.info("Updating %s for employee %s -> %s", self.config.custom_field, employee.name, account.id)
        try:
            await self.hr.update_employee(EmployeePatch(name=employee.name or "", custom_chat_id=account.id))
        except RemoteError as exc:
            logger.error("Failed to update employee %s: %s", employee.name, exc)
            return _result(SyncOutcome.FAILED, label, f"Update Failed: {exc}", "link_failed")
        return _result(SyncOutcome.LINKED, label, f"Employee {employee.name} Updated")

    async def _create_employee(self, account: ChatAccount, label: str) -> RecordResult:
        record = EmployeeRecord(
            company_email=account.email,
            first_name=account.first_name or account.username,
            last_name=account.last_name or None,
            gender=self.config.default_gender,
            date_of_birth=self.config.default_date_of_birth,
            date_of_joining=self.config.default_date_of_joining,
            status=EmployeeStatus.ACTIVE.value,
            custom_chat_id=account.id,
        )
        logger.info("Creating employee for chat user %s (%s)", account.username, account.email)
        try:
            name = await self.hr.create_employee(record)
        except RemoteError as exc:
            logger.error("Failed to create employee for %s: %s", account.email, exc)
            return _result(SyncOutcome.FAILED, label, f"Creation Failed: {exc}", "create_failed")
        return _result(SyncOutcome.CREATED, label, f"Employee {name} Created")

    async def _ensure_hr_user(self, account: ChatAccount, builder: SyncResultBuilder) -> str:
        try:
            existing = await self.hr.find_user_by_email(account.email)
            if existing is not None:
                builder.hr_users_existing += 1
                return ", ERPNext User Exists"
            await self.hr.create_user(
                HRUser(
                    email=account.email,
                    first_name=account.first_name or account.username,
                    last_name=account.last_name or None,
                    username=_hr_username(account),
                    enabled=True,
                    role_profile_name=self.config.default_role_profile,
                    send_welcome_email=False,
                )
            )
        except RemoteError as exc:
            logger.error("ERPNext user provisioning failed for %s: %s", account.email, exc)
            return f", ERPNext User Creation Failed: {exc}"
        builder.hr_users_created += 1
        return ", ERPNext User Created"

    # ------------------------------------------------------------------

    def _finish(self, builder: SyncResultBuilder, started: float) -> SyncResult:
        result = builder.build(self.clock() - started)
        logger.info(
            "%s sync finished in %.1fs. Processed: %d, counts: %s, timed out: %s",
            result.direction.value,
            result.elapsed_seconds,
            result.total_processed,
            result.counts,
            result.timed_out,
        )
        return result
