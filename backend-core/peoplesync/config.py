import os
from functools import lru_cache
from typing import List

from .services.directory_sync.models import SyncConfig


def _env_int(name: str, default: int) -> int:
  raw = os.getenv(name)
  if raw is None or not raw.strip():
    return default
  try:
    return int(raw)
  except ValueError:
    return default


def _env_float(name: str, default: float) -> float:
  raw = os.getenv(name)
  if raw is None or not raw.strip():
    return default
  try:
    return float(raw)
  except ValueError:
    return default


def _env_flag(name: str, default: bool) -> bool:
  raw = os.getenv(name)
  if raw is None or not raw.strip():
    return default
  return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
  """Centralized configuration pulled from environment variables."""

  app_name: str = "PeopleSync Backend"
  app_version: str = os.getenv("APP_VERSION", "0.0.1")

  supabase_jwt_secret: str
  supabase_jwt_audience: str
  supabase_issuer: str

  supabase_url: str | None
  supabase_service_role: str | None

  erp_url: str | None
  erp_api_key: str | None
  erp_api_secret: str | None
  erp_timeout_seconds: float

  mattermost_url: str | None
  mattermost_token: str | None
  mattermost_timeout_seconds: float
  site_url: str | None

  smtp_host: str | None
  smtp_port: int
  smtp_username: str | None
  smtp_password: str | None
  smtp_sender: str | None
  smtp_starttls: bool

  sync_page_size: int
  sync_max_pages: int
  hr_to_chat_max_minutes: float
  chat_to_hr_max_minutes: float
  default_role_profile: str
  provision_hr_users: bool
  send_credentials: bool

  allowed_origins: List[str]
  usage_logging_enabled: bool

  def __init__(self) -> None:
    self.supabase_jwt_secret = os.getenv("SUPABASE_JWT_SECRET", "")
    self.supabase_jwt_audience = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")
    self.supabase_issuer = os.getenv("SUPABASE_ISSUER", "")

    self.supabase_url = os.getenv("SUPABASE_URL")
    self.supabase_service_role = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv(
        "SUPABASE_SERVICE_ROLE"
    )

    # ERPNext credentials: "token <key>:<secret>"
    self.erp_url = (os.getenv("ERP_URL") or "").rstrip("/") or None
    self.erp_api_key = os.getenv("ERP_API_KEY")
    self.erp_api_secret = os.getenv("ERP_API_SECRET")
    self.erp_timeout_seconds = _env_float("ERP_TIMEOUT_SECONDS", 30.0)

    self.mattermost_url = (os.getenv("MATTERMOST_URL") or "").rstrip("/") or None
    self.mattermost_token = os.getenv("MATTERMOST_TOKEN")
    self.mattermost_timeout_seconds = _env_float("MATTERMOST_TIMEOUT_SECONDS", 30.0)
    self.site_url = os.getenv("SITE_URL") or self.mattermost_url

    # Credential e-mails for newly created chat accounts
    self.smtp_host = os.getenv("SMTP_HOST") or None
    self.smtp_port = _env_int("SMTP_PORT", 587)
    self.smtp_username = os.getenv("SMTP_USERNAME") or None
    self.smtp_password = os.getenv("SMTP_PASSWORD") or None
    self.smtp_sender = os.getenv("SMTP_FROM") or self.smtp_username
    self.smtp_starttls = _env_flag("SMTP_STARTTLS", True)

    self.sync_page_size = _env_int("SYNC_PAGE_SIZE", 200)
    self.sync_max_pages = _env_int("SYNC_MAX_PAGES", 20)
    self.hr_to_chat_max_minutes = _env_float("SYNC_HR_TO_CHAT_MAX_MINUTES", 20.0)
    self.chat_to_hr_max_minutes = _env_float("SYNC_CHAT_TO_HR_MAX_MINUTES", 15.0)
    self.default_role_profile = os.getenv("SYNC_DEFAULT_ROLE_PROFILE", "Mặc định")
    self.provision_hr_users = _env_flag("SYNC_PROVISION_HR_USERS", True)
    self.send_credentials = _env_flag("SYNC_SEND_CREDENTIALS", True)

    default_allowed = [
        "http://localhost:3000",
    ]
    allowed = os.getenv("BACKEND_ALLOWED_ORIGINS")
    if allowed:
      self.allowed_origins = [origin.strip() for origin in allowed.split(",") if origin.strip()]
    else:
      self.allowed_origins = default_allowed

    self.usage_logging_enabled = os.getenv("ENABLE_USAGE_LOGGING", "0") == "1"

  @property
  def erp_configured(self) -> bool:
    return bool(self.erp_url and self.erp_api_key and self.erp_api_secret)

  @property
  def mattermost_configured(self) -> bool:
    return bool(self.mattermost_url and self.mattermost_token)

  @property
  def smtp_configured(self) -> bool:
    return bool(self.smtp_host and self.smtp_sender)

  def sync_config(self, direction: str) -> SyncConfig:
    """Snapshot the sync knobs for one run; the run never sees later edits."""
    minutes = self.hr_to_chat_max_minutes if direction == "hr_to_chat" else self.chat_to_hr_max_minutes
    return SyncConfig(
        page_size=self.sync_page_size,
        max_pages=self.sync_max_pages,
        max_duration_seconds=minutes * 60.0,
        default_role_profile=self.default_role_profile,
        provision_hr_users=self.provision_hr_users,
        send_credentials=self.send_credentials,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  return Settings()


settings = get_settings()
