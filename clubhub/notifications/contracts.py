"""Contracts for the community message notification pipeline."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from clubhub.schema.records import CommunityType, DeliveryToken, Notification


@dataclass(frozen=True)
class PushMulticast:
  """Represents one multicast push request."""

  tokens: tuple[str, ...]
  title: str
  body: str
  data: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MulticastReport:
  """Delivery breakdown returned by the push gateway."""

  success_count: int
  failure_count: int
  invalid_tokens: tuple[str, ...] = ()


class FanoutStage(str, Enum):
  """Pipeline stages, used to tag failures and logs."""

  RESOLVE_MEMBERS = "resolve_members"
  RESOLVE_TOKENS = "resolve_tokens"
  WRITE_NOTIFICATIONS = "write_notifications"
  DISPATCH_PUSH = "dispatch_push"


class FanoutOutcome(str, Enum):
  """Terminal states of one message fan-out."""

  SKIPPED_NO_MEMBERS = "skipped_no_members"
  NOTIFICATIONS_WRITTEN = "notifications_written"
  PUSH_DISPATCHED = "push_dispatched"


@dataclass(frozen=True)
class RecipientFailure:
  """A single recipient whose stage operation raised."""

  user_id: str
  error: str


class NotificationError(Exception):
  """Base class for all notification pipeline failures."""


class MalformedEventError(NotificationError):
  """Exception raised when a message event lacks the fields needed to fan out."""


class NotificationProviderError(NotificationError):
  """Exception raised when the document store or push gateway returns an error."""


class PushGatewayError(NotificationProviderError):
  """Exception raised when a multicast send fails as a whole."""


class FanoutError(NotificationError):
  """Exception raised when one invocation of the fan-out did not complete cleanly."""

  def __init__(self, message: str, *, stage: FanoutStage, message_id: str | None, community_id: str, failures: Sequence[RecipientFailure] = ()) -> None:
    super().__init__(message)
    self.stage = stage
    self.message_id = message_id
    self.community_id = community_id
    self.failures = tuple(failures)


class CommunityStore(Protocol):
  """Document store operations used by the pipeline."""

  async def list_member_ids(self, community_id: str, community_type: CommunityType) -> list[str]:
    """Return the user ids of every member of a community."""

  async def get_delivery_token(self, user_id: str) -> DeliveryToken | None:
    """Point-lookup the push token registered for a user."""

  async def create_notification(self, notification: Notification, *, notification_id: str | None = None) -> bool:
    """Create a notification record; return False when `notification_id` already exists."""


class PushGateway(Protocol):
  """Delivery contract for multicast push messages."""

  def send_multicast(self, push: PushMulticast) -> MulticastReport:
    """Send one multicast push synchronously."""
