"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from fanout.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the fan-out service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None
  fcm_enabled: bool
  fcm_dry_run: bool
  web_push_enabled: bool
  push_vapid_public_key: str | None
  push_vapid_private_key: str | None
  push_vapid_sub: str | None
  push_timeout_seconds: float
  push_ttl_seconds: int
  push_default_icon: str
  push_default_badge: str
  public_base_url: str | None
  max_concurrent_sends: int
  dispatch_queue_size: int
  dispatch_workers: int
  delivery_log_enabled: bool
  task_secret: str | None
  service_url: str | None


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity only."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("FANOUT_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("FANOUT_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("FANOUT_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None or raw.strip() == "":
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("FANOUT_ENV", "development").lower()
  debug = _parse_bool(os.getenv("FANOUT_DEBUG"))

  log_max_bytes = _positive_int("FANOUT_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("FANOUT_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("FANOUT_LOG_BACKUP_COUNT must be zero or a positive integer.")

  fcm_enabled = _parse_bool(os.getenv("FANOUT_FCM_ENABLED"), default=True)
  web_push_enabled = _parse_bool(os.getenv("FANOUT_WEB_PUSH_ENABLED"))
  push_vapid_public_key = _optional_str(os.getenv("FANOUT_PUSH_VAPID_PUBLIC_KEY"))
  push_vapid_private_key = _optional_str(os.getenv("FANOUT_PUSH_VAPID_PRIVATE_KEY"))
  push_vapid_sub = _optional_str(os.getenv("FANOUT_PUSH_VAPID_SUB"))

  # Validate VAPID configuration only when native Web Push is enabled.
  if web_push_enabled:
    if not push_vapid_public_key:
      raise ValueError("FANOUT_PUSH_VAPID_PUBLIC_KEY must be set when web push is enabled.")

    if not push_vapid_private_key:
      raise ValueError("FANOUT_PUSH_VAPID_PRIVATE_KEY must be set when web push is enabled.")

    if not push_vapid_sub:
      raise ValueError("FANOUT_PUSH_VAPID_SUB must be set when web push is enabled.")

    if not (push_vapid_sub.startswith("mailto:") or push_vapid_sub.startswith("https://")):
      raise ValueError("FANOUT_PUSH_VAPID_SUB must start with 'mailto:' or 'https://'.")

  push_timeout_seconds = float(os.getenv("FANOUT_PUSH_TIMEOUT_SECONDS", "10"))
  if push_timeout_seconds <= 0:
    raise ValueError("FANOUT_PUSH_TIMEOUT_SECONDS must be positive.")

  public_base_url = _optional_str(os.getenv("FANOUT_PUBLIC_BASE_URL"))
  service_url = _optional_str(os.getenv("FANOUT_SERVICE_URL"))
  if public_base_url and not public_base_url.startswith("https://"):
    raise ValueError("FANOUT_PUBLIC_BASE_URL must use https.")

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("FANOUT_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("FANOUT_LOG_HTTP_4XX")),
    pg_dsn=os.getenv("FANOUT_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("FANOUT_PG_CONNECT_TIMEOUT", "5"),
    firebase_project_id=_optional_str(os.getenv("FIREBASE_PROJECT_ID")),
    firebase_service_account_json_path=_optional_str(os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
    fcm_enabled=fcm_enabled,
    fcm_dry_run=_parse_bool(os.getenv("FANOUT_FCM_DRY_RUN")),
    web_push_enabled=web_push_enabled,
    push_vapid_public_key=push_vapid_public_key,
    push_vapid_private_key=push_vapid_private_key,
    push_vapid_sub=push_vapid_sub,
    push_timeout_seconds=push_timeout_seconds,
    push_ttl_seconds=_positive_int("FANOUT_PUSH_TTL_SECONDS", "86400"),
    push_default_icon=(os.getenv("FANOUT_PUSH_DEFAULT_ICON") or "/icon-192x192.png").strip(),
    push_default_badge=(os.getenv("FANOUT_PUSH_DEFAULT_BADGE") or "/badge-72x72.png").strip(),
    public_base_url=public_base_url.rstrip("/") if public_base_url else None,
    max_concurrent_sends=_positive_int("FANOUT_MAX_CONCURRENT_SENDS", "100"),
    dispatch_queue_size=_positive_int("FANOUT_DISPATCH_QUEUE_SIZE", "1000"),
    dispatch_workers=_positive_int("FANOUT_DISPATCH_WORKERS", "4"),
    delivery_log_enabled=_parse_bool(os.getenv("FANOUT_DELIVERY_LOG_ENABLED"), default=True),
    task_secret=_optional_str(os.getenv("FANOUT_TASK_SECRET")),
    service_url=service_url.rstrip("/") if service_url else None,
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  # Migrations and offline scripts must not depend on unrelated env vars.
  debug = _parse_bool(os.getenv("FANOUT_DEBUG"))
  pg_connect_timeout = _positive_int("FANOUT_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = os.getenv("FANOUT_PG_DSN") or os.getenv("DATABASE_URL")

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
