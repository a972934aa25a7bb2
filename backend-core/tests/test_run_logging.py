"""Tests for best-effort persistence of run summaries and route errors."""

from unittest.mock import MagicMock, patch

import pytest

from peoplesync.error_logging import AppErrorLogger
from peoplesync.run_logging import SyncRunLogger
from peoplesync.services.directory_sync.models import IssuedCredential, SyncDirection, SyncResult


def _result():
    return SyncResult(
        direction=SyncDirection.CHAT_TO_HR,
        counts={"already_linked": 3, "linked": 1, "created": 0, "skipped": 0, "failed": 0},
        results=("a - Already Mapped",),
        timed_out=True,
        total_processed=4,
        elapsed_seconds=2.5,
        hr_users_created=1,
    )


@pytest.fixture
def enabled_settings():
    with patch("peoplesync.run_logging.settings") as run_settings, patch(
        "peoplesync.error_logging.settings"
    ) as err_settings:
        for mock in (run_settings, err_settings):
            mock.usage_logging_enabled = True
            mock.supabase_url = "http://localhost:54321"
            mock.supabase_service_role = "service_role_token"
            mock.app_version = "test"
        yield run_settings, err_settings


def test_disabled_logging_never_creates_client():
    with patch("peoplesync.run_logging.settings") as mock_settings, patch(
        "peoplesync.run_logging.create_client"
    ) as mock_create:
        mock_settings.usage_logging_enabled = False
        SyncRunLogger().log_run(_result())
    mock_create.assert_not_called()


def test_run_row_keeps_counts_in_meta(enabled_settings):
    supabase = MagicMock()
    with patch("peoplesync.run_logging.create_client", return_value=supabase):
        SyncRunLogger().log_run(_result(), {"sub": "admin-1", "email": "admin@example.com"})

    supabase.table.assert_called_with("sync_runs")
    row = supabase.table.return_value.insert.call_args[0][0]
    assert row["direction"] == "chat_to_hr"
    assert row["timed_out"] is True
    assert row["duration_ms"] == 2500
    assert row["user_id"] == "admin-1"
    assert row["meta"]["counts"]["already_linked"] == 3
    assert row["meta"]["hr_users_created"] == 1
    assert "results" not in row and "results" not in row["meta"]


def test_missing_meta_column_retries_without_it(enabled_settings):
    supabase = MagicMock()
    insert = supabase.table.return_value.insert
    insert.return_value.execute.side_effect = [Exception('column "meta" does not exist'), MagicMock()]

    run_logger = SyncRunLogger()
    with patch("peoplesync.run_logging.create_client", return_value=supabase):
        run_logger.log_run(_result())

    assert insert.call_count == 2
    assert "meta" not in insert.call_args_list[1][0][0]


def test_insert_failure_is_swallowed(enabled_settings):
    supabase = MagicMock()
    supabase.table.return_value.insert.return_value.execute.side_effect = Exception("network down")

    with patch("peoplesync.run_logging.create_client", return_value=supabase):
        SyncRunLogger().log_run(_result())


def test_route_error_row(enabled_settings):
    supabase = MagicMock()
    with patch("peoplesync.error_logging.create_client", return_value=supabase):
        AppErrorLogger().log_route_error(
            "/sync/hr-to-chat", RuntimeError("boom"), user={"sub": "admin-1"}, direction="hr_to_chat"
        )

    supabase.table.assert_called_with("app_error_events")
    row = supabase.table.return_value.insert.call_args[0][0]
    assert row["route"] == "/sync/hr-to-chat"
    assert row["message"] == "boom"
    assert row["status_code"] == 500
    assert row["tool"] == "peoplesync"
    assert row["meta"] == {"error_type": "RuntimeError", "direction": "hr_to_chat"}


def test_run_row_never_carries_passwords(enabled_settings):
    result = SyncResult(
        direction=SyncDirection.HR_TO_CHAT,
        counts={"already_linked": 0, "linked": 0, "created": 1, "skipped": 0, "failed": 0},
        results=("b - New User Created (Credentials returned to caller), Username: b",),
        timed_out=False,
        total_processed=1,
        elapsed_seconds=0.1,
        undelivered_credentials=(IssuedCredential(email="b@example.com", username="b", password="Tmp#pass123"),),
    )
    supabase = MagicMock()
    with patch("peoplesync.run_logging.create_client", return_value=supabase):
        SyncRunLogger().log_run(result)

    row = supabase.table.return_value.insert.call_args[0][0]
    assert "Tmp#pass123" not in repr(row)
    assert "undelivered_credentials" not in row["meta"]
