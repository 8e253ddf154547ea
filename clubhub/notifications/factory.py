"""Factory helpers for notification services."""

from __future__ import annotations

from clubhub.config import Settings
from clubhub.core.firebase import get_firestore_client, initialize_firebase
from clubhub.notifications.contracts import PushGateway
from clubhub.notifications.firestore_store import FirestoreCommunityStore
from clubhub.notifications.push_sender import FcmPushGateway, NullPushGateway
from clubhub.notifications.service import MessageNotificationService


def build_message_notification_service(settings: Settings) -> MessageNotificationService:
  """Construct the fan-out service from environment configuration."""
  initialize_firebase(settings)
  client = get_firestore_client()
  if client is None:
    raise RuntimeError("Firestore is not available; set CLUBHUB_FIREBASE_PROJECT_ID and credentials.")

  # Push can be switched off independently, e.g. in staging, while notifications are still persisted.
  push_gateway: PushGateway = FcmPushGateway() if settings.push_notifications_enabled else NullPushGateway()

  return MessageNotificationService(
    store=FirestoreCommunityStore(client),
    push_gateway=push_gateway,
    concurrency=settings.fanout_concurrency,
    idempotent_notifications=settings.idempotent_notifications,
    push_body_max_chars=settings.push_body_max_chars,
  )
