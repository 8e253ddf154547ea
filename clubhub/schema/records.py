"""Typed records for community messages, memberships, tokens and notifications."""

from __future__ import annotations

import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

NEW_MESSAGE_NOTIFICATION_TYPE = "new_message"
DEFAULT_COMMUNITY_TYPE = "community"
ACTIVE_MEMBER_STATUSES = frozenset({"active", "approved"})


class CommunityType(str, Enum):
  """Kinds of community a chat message can be posted to."""

  CLUB = "club"
  TEAM = "team"
  EVENT = "event"
  COMMUNITY = "community"


def _first_present(data: dict[str, Any], *keys: str) -> Any:
  for key in keys:
    value = data.get(key)
    if value not in (None, ""):
      return value
  return None


class Message(BaseModel):
  """A community chat message as written by the client."""

  message_id: str | None = Field(default=None, alias="messageId")
  community_id: str = Field(alias="communityId", min_length=1)
  sender_id: str = Field(alias="senderId", min_length=1)
  text: str = ""
  community_type: CommunityType = Field(default=CommunityType.COMMUNITY, alias="type")
  created_at: datetime.datetime | None = Field(default=None, alias="createdAt")
  model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

  @field_validator("community_id", "sender_id")
  @classmethod
  def strip_identifier(cls, value: str) -> str:
    normalized = value.strip()
    if not normalized:
      raise ValueError("identifier must not be blank")
    return normalized

  @field_validator("text", mode="before")
  @classmethod
  def coerce_text(cls, value: Any) -> str:
    return "" if value is None else str(value)

  @field_validator("created_at", mode="before")
  @classmethod
  def coerce_created_at(cls, value: Any) -> datetime.datetime | None:
    # Server timestamps arrive in several encodings; the pipeline never depends on this field.
    if isinstance(value, datetime.datetime):
      return value
    if isinstance(value, str):
      try:
        return datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
      except ValueError:
        return None
    return None

  @field_validator("community_type", mode="before")
  @classmethod
  def coerce_community_type(cls, value: Any) -> Any:
    # Unknown or missing kinds fall back to the generic membership collection.
    if isinstance(value, CommunityType):
      return value
    if isinstance(value, str) and value in {member.value for member in CommunityType}:
      return value
    return CommunityType.COMMUNITY


class Membership(BaseModel):
  """A user's membership in a community."""

  community_id: str = Field(min_length=1)
  user_id: str = Field(min_length=1)
  status: str | None = None
  model_config = ConfigDict(frozen=True)

  @classmethod
  def from_document(cls, community_id: str, data: dict[str, Any]) -> Membership:
    """Build a membership from a stored document that may use either key casing."""
    return cls(community_id=community_id, user_id=_first_present(data, "userId", "user_id") or "", status=data.get("status"))

  @property
  def is_active(self) -> bool:
    return self.status in ACTIVE_MEMBER_STATUSES


class DeliveryToken(BaseModel):
  """A device's push registration for a user."""

  user_id: str = Field(min_length=1)
  token: str = Field(min_length=1)
  model_config = ConfigDict(frozen=True)


class Notification(BaseModel):
  """A per-recipient in-app notification record."""

  user_id: str = Field(min_length=1)
  type: str = NEW_MESSAGE_NOTIFICATION_TYPE
  message: str
  reference_id: str = Field(min_length=1)
  is_read: bool = False
  community_type: str = DEFAULT_COMMUNITY_TYPE
  model_config = ConfigDict(frozen=True)

  def to_document(self) -> dict[str, Any]:
    """Return stored field names; the store adds the creation timestamp."""
    return self.model_dump()
