import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..auth import require_admin_user
from ..config import settings
from ..error_logging import error_logger
from ..run_logging import run_logger
from ..services.directory_sync.credentials import EmailCredentialNotifier
from ..services.directory_sync.engine import (
    DirectorySyncEngine,
    SchemaBootstrapError,
    SourceEnumerationError,
)
from ..services.directory_sync.models import SyncDirection
from ..services.directory_sync.report import build_mapping_report, count_active_employees
from ..services.erpnext import ERPNextClient, ERPNextConfigurationError
from ..services.mattermost import MattermostClient, MattermostConfigurationError
from ..services.remote import RemoteError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


def _require_configured(*, chat: bool = True) -> None:
    if not settings.erp_configured:
        raise HTTPException(status_code=500, detail="ERPNext not configured")
    if chat and not settings.mattermost_configured:
        raise HTTPException(status_code=500, detail="Mattermost not configured")


def _get_erpnext() -> ERPNextClient:
    try:
        return ERPNextClient(
            settings.erp_url,
            settings.erp_api_key,
            settings.erp_api_secret,
            timeout_s=settings.erp_timeout_seconds,
        )
    except ERPNextConfigurationError as e:
        raise HTTPException(status_code=500, detail=f"ERPNext not configured: {e}")


def _get_mattermost() -> MattermostClient:
    try:
        return MattermostClient(
            settings.mattermost_url,
            settings.mattermost_token,
            timeout_s=settings.mattermost_timeout_seconds,
        )
    except MattermostConfigurationError as e:
        raise HTTPException(status_code=500, detail=f"Mattermost not configured: {e}")


def _get_notifier() -> Optional[EmailCredentialNotifier]:
    if not settings.smtp_configured:
        logger.info("SMTP not configured; new credentials are returned to the caller only")
        return None
    return EmailCredentialNotifier(
        settings.smtp_host,
        settings.smtp_port,
        settings.smtp_sender,
        site_url=settings.site_url,
        username=settings.smtp_username,
        password=settings.smtp_password,
        starttls=settings.smtp_starttls,
    )


async def _close(*clients) -> None:
    for c in clients:
        if c is not None:
            await c.aclose()


async def _run_sync(direction: SyncDirection, route: str, user):
    _require_configured()
    hr = chat = None
    try:
        hr = _get_erpnext()
        chat = _get_mattermost()
        engine = DirectorySyncEngine(
            hr,
            chat,
            settings.sync_config(direction.value),
            notifier=_get_notifier(),
        )
        if direction == SyncDirection.HR_TO_CHAT:
            result = await engine.run_hr_to_chat()
        else:
            result = await engine.run_chat_to_hr()
    except HTTPException:
        raise
    except SchemaBootstrapError as e:
        error_logger.log_route_error(route, e, user=user, direction=direction.value)
        raise HTTPException(status_code=500, detail=str(e))
    except SourceEnumerationError as e:
        error_logger.log_route_error(route, e, status_code=502, user=user, direction=direction.value)
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.exception("%s sync failed", direction.value)
        error_logger.log_route_error(route, e, user=user, direction=direction.value)
        raise HTTPException(status_code=500, detail=f"Sync failed: {str(e)}")
    finally:
        await _close(hr, chat)

    run_logger.log_run(result, user)
    return result.to_dict()


@router.post("/hr-to-chat")
async def sync_hr_to_chat(user=Depends(require_admin_user)):
    """
    Link every active ERPNext employee to a Mattermost account, creating missing accounts.

    Temporary passwords are e-mailed to the employee's company address. Any that
    could not be mailed come back in ``undelivered_credentials`` for the admin.
    """
    return await _run_sync(SyncDirection.HR_TO_CHAT, "/sync/hr-to-chat", user)


@router.post("/chat-to-hr")
async def sync_chat_to_hr(user=Depends(require_admin_user)):
    """
    Link every live Mattermost account to an ERPNext employee, creating missing employees.
    """
    return await _run_sync(SyncDirection.CHAT_TO_HR, "/sync/chat-to-hr", user)


@router.get("/mapping-report")
async def mapping_report(user=Depends(require_admin_user)):
    _require_configured()
    hr = chat = None
    try:
        hr = _get_erpnext()
        chat = _get_mattermost()
        report = await build_mapping_report(hr, chat, settings.sync_config(SyncDirection.CHAT_TO_HR.value))
    except SourceEnumerationError as e:
        raise HTTPException(status_code=502, detail=str(e))
    finally:
        await _close(hr, chat)
    return report.to_dict()


@router.get("/employees/count")
async def employee_count(user=Depends(require_admin_user)):
    _require_configured(chat=False)
    hr = _get_erpnext()
    try:
        count = await count_active_employees(hr)
    except RemoteError as e:
        raise HTTPException(status_code=502, detail=f"Failed to count employees: {e}")
    finally:
        await hr.aclose()
    return {"count": count}
