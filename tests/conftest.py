"""Shared fixtures: in-memory store and recording push gateway."""

from __future__ import annotations

import pytest

from clubhub.config import Settings
from clubhub.notifications.contracts import MulticastReport, PushMulticast
from clubhub.notifications.service import MessageNotificationService
from clubhub.schema.records import CommunityType, DeliveryToken, Notification


class InMemoryCommunityStore:
  """Dict-backed stand-in for the Firestore store."""

  def __init__(self, *, members: dict[str, list[str]] | None = None, tokens: dict[str, str] | None = None) -> None:
    self.members = members or {}
    self.tokens = tokens or {}
    self.notifications: dict[str, Notification] = {}
    self.failing_writes: set[str] = set()
    self.failing_token_lookups: set[str] = set()
    self.token_lookups: list[str] = []
    self.member_queries: list[tuple[str, CommunityType]] = []
    self._next_id = 0

  async def list_member_ids(self, community_id: str, community_type: CommunityType) -> list[str]:
    self.member_queries.append((community_id, community_type))
    return list(self.members.get(community_id, []))

  async def get_delivery_token(self, user_id: str) -> DeliveryToken | None:
    self.token_lookups.append(user_id)
    if user_id in self.failing_token_lookups:
      raise RuntimeError("firestore unavailable")
    token = self.tokens.get(user_id)
    return DeliveryToken(user_id=user_id, token=token) if token else None

  async def create_notification(self, notification: Notification, *, notification_id: str | None = None) -> bool:
    if notification.user_id in self.failing_writes:
      raise RuntimeError("quota exceeded")
    if notification_id is None:
      self._next_id += 1
      notification_id = f"auto-{self._next_id}"
    elif notification_id in self.notifications:
      return False
    self.notifications[notification_id] = notification
    return True

  def notified_user_ids(self) -> list[str]:
    return sorted(notification.user_id for notification in self.notifications.values())


class RecordingPushGateway:
  """Push gateway that records every multicast request."""

  def __init__(self, *, error: Exception | None = None) -> None:
    self.calls: list[PushMulticast] = []
    self.error = error

  def send_multicast(self, push: PushMulticast) -> MulticastReport:
    self.calls.append(push)
    if self.error is not None:
      raise self.error
    return MulticastReport(success_count=len(push.tokens), failure_count=0)


def make_settings(**overrides) -> Settings:
  values = {
    "environment": "test",
    "debug": False,
    "log_dir": "logs",
    "log_max_bytes": 1024,
    "log_backup_count": 1,
    "firebase_project_id": None,
    "firebase_service_account_json_path": None,
    "push_notifications_enabled": True,
    "trigger_secret": "s3cret",
    "fanout_concurrency": 4,
    "idempotent_notifications": True,
    "push_body_max_chars": 100,
  }
  values.update(overrides)
  return Settings(**values)


@pytest.fixture
def store():
  return InMemoryCommunityStore()


@pytest.fixture
def push_gateway():
  return RecordingPushGateway()


@pytest.fixture
def service(store, push_gateway):
  return MessageNotificationService(store=store, push_gateway=push_gateway, concurrency=4)


@pytest.fixture
def settings_factory():
  return make_settings


@pytest.fixture
def anyio_backend():
  return "asyncio"
