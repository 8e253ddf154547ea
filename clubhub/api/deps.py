"""Shared FastAPI dependencies for trigger authentication and service wiring."""

from __future__ import annotations

import logging
import secrets
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from clubhub.config import Settings, get_settings
from clubhub.notifications.factory import build_message_notification_service
from clubhub.notifications.service import MessageNotificationService

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_notification_service() -> MessageNotificationService:
  """Build the fan-out service once per process."""
  return build_message_notification_service(get_settings())


def verify_trigger_secret(
  settings: Annotated[Settings, Depends(get_settings)], authorization: str | None = Header(default=None), x_clubhub_trigger_secret: str | None = Header(default=None)
) -> None:
  """Reject event deliveries that do not carry the shared trigger secret."""
  # Secure-by-default: without a configured secret nothing may trigger a fan-out.
  if not settings.trigger_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Trigger authentication is not configured.")

  header_valid = secrets.compare_digest(x_clubhub_trigger_secret or "", settings.trigger_secret)
  bearer_valid = secrets.compare_digest(authorization or "", f"Bearer {settings.trigger_secret}")
  if not header_valid and not bearer_valid:
    logger.warning("Unauthorized trigger delivery rejected")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid trigger secret.")
