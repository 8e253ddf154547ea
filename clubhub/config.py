"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from clubhub.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the clubhub notification service."""

  environment: str
  debug: bool
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None
  push_notifications_enabled: bool
  trigger_secret: str | None
  fanout_concurrency: int
  idempotent_notifications: bool
  push_body_max_chars: int


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None or raw.strip() == "":
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  return value or None


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("CLUBHUB_ENV", "development").lower()
  debug = _parse_bool(os.getenv("CLUBHUB_DEBUG"))
  log_dir = (os.getenv("CLUBHUB_LOG_DIR") or "logs").strip()

  log_max_bytes = _positive_int("CLUBHUB_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("CLUBHUB_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("CLUBHUB_LOG_BACKUP_COUNT must be zero or a positive integer.")

  firebase_project_id = _optional_str(os.getenv("CLUBHUB_FIREBASE_PROJECT_ID"))
  firebase_service_account_json_path = _optional_str(os.getenv("CLUBHUB_FIREBASE_SERVICE_ACCOUNT_JSON_PATH"))
  push_notifications_enabled = _parse_bool(os.getenv("CLUBHUB_PUSH_NOTIFICATIONS_ENABLED"), default=True)

  # The trigger endpoint refuses every request until a secret is configured.
  trigger_secret = _optional_str(os.getenv("CLUBHUB_TRIGGER_SECRET"))

  fanout_concurrency = _positive_int("CLUBHUB_FANOUT_CONCURRENCY", "16")
  idempotent_notifications = _parse_bool(os.getenv("CLUBHUB_IDEMPOTENT_NOTIFICATIONS"), default=True)
  push_body_max_chars = _positive_int("CLUBHUB_PUSH_BODY_MAX_CHARS", "100")

  if environment in {"production", "prod"} and not firebase_project_id:
    raise ValueError("CLUBHUB_FIREBASE_PROJECT_ID must be set in production.")

  return Settings(
    environment=environment,
    debug=debug,
    log_dir=log_dir,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    firebase_project_id=firebase_project_id,
    firebase_service_account_json_path=firebase_service_account_json_path,
    push_notifications_enabled=push_notifications_enabled,
    trigger_secret=trigger_secret,
    fanout_concurrency=fanout_concurrency,
    idempotent_notifications=idempotent_notifications,
    push_body_max_chars=push_body_max_chars,
  )
