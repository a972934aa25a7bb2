from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from supabase import Client, create_client

from .config import settings
from .services.directory_sync.models import SyncResult

logger = logging.getLogger(__name__)


class SyncRunLogger:
    """Best-effort Supabase inserts into `sync_runs`, one row per finished run."""

    def __init__(self) -> None:
        self._client: Optional[Client] = None
        self._supports_meta: Optional[bool] = None

    def _get_client(self) -> Optional[Client]:
        if not settings.usage_logging_enabled:
            return None
        if not settings.supabase_url or not settings.supabase_service_role:
            logger.warning("Run logging enabled but Supabase service role credentials missing.")
            return None
        if not self._client:
            self._client = create_client(settings.supabase_url, settings.supabase_service_role)
        return self._client

    def log_run(self, result: SyncResult, user: Optional[Dict[str, Any]] = None) -> None:
        user = user or {}
        self.log(
            {
                "occurred_at": datetime.now(timezone.utc).isoformat(),
                "direction": result.direction.value,
                "user_id": user.get("sub"),
                "user_email": user.get("email"),
                "total_processed": result.total_processed,
                "timed_out": result.timed_out,
                "duration_ms": int(result.elapsed_seconds * 1000),
                "app_version": settings.app_version,
                # Result lines stay out of the row; they can be large and carry usernames.
                "counts": result.counts,
                "hr_users_created": result.hr_users_created,
                "credentials_delivered": result.credentials_delivered,
                "credentials_failed": result.credentials_failed,
            }
        )

    def log(self, payload: Dict[str, Any]) -> None:
        client = self._get_client()
        if not client:
            return
        try:
            allowed = {
                "occurred_at",
                "direction",
                "user_id",
                "user_email",
                "total_processed",
                "timed_out",
                "duration_ms",
                "app_version",
                "meta",
            }

            base_row = {k: v for k, v in payload.items() if k in allowed and v is not None}
            extra = {k: v for k, v in payload.items() if k not in allowed and v is not None}
            if extra:
                meta = base_row.get("meta") if isinstance(base_row.get("meta"), dict) else {}
                base_row["meta"] = {**meta, **extra}

            if self._supports_meta is False:
                base_row.pop("meta", None)

            try:
                client.table("sync_runs").insert(base_row).execute()
            except Exception as exc:  # noqa: BLE001
                msg = str(exc).lower()
                if self._supports_meta is None and ("meta" in msg and "column" in msg):
                    self._supports_meta = False
                    base_row.pop("meta", None)

                client.table("sync_runs").insert(base_row).execute()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to record sync run: %s", exc)


run_logger = SyncRunLogger()
