"""Firestore-backed store for memberships, delivery tokens and notifications."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from google.api_core.exceptions import AlreadyExists
from google.cloud.firestore import SERVER_TIMESTAMP
from google.cloud.firestore import Client as FirestoreClient
from google.cloud.firestore_v1.base_query import FieldFilter
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from clubhub.schema.records import CommunityType, DeliveryToken, Membership, Notification

logger = logging.getLogger(__name__)

TEAMS_COLLECTION = "teams"
TEAM_MEMBERS_COLLECTION = "team_members"
CLUBS_COLLECTION = "clubs"
CLUB_MEMBERS_SUBCOLLECTION = "members"
CLUB_MEMBERS_COLLECTION = "club_members"
EVENTS_COLLECTION = "events"
EVENT_PARTICIPANTS_SUBCOLLECTION = "participants"
COMMUNITY_MEMBERS_COLLECTION = "community_members"
FCM_TOKENS_COLLECTION = "fcm_tokens"
NOTIFICATIONS_COLLECTION = "notifications"


class FirestoreCommunityStore:
  """Read memberships and tokens, and append notifications, in Cloud Firestore.

  The Firestore SDK client is synchronous, so every call is pushed to the thread
  pool to keep the event loop free while the fan-out is in flight.
  """

  def __init__(self, client: FirestoreClient) -> None:
    self._client = client

  async def list_member_ids(self, community_id: str, community_type: CommunityType) -> list[str]:
    """Return member user ids for a community, resolved per community kind."""
    return await run_in_threadpool(self._list_member_ids_sync, community_id, community_type)

  async def get_delivery_token(self, user_id: str) -> DeliveryToken | None:
    """Return the registered push token for a user, if any."""
    return await run_in_threadpool(self._get_delivery_token_sync, user_id)

  async def create_notification(self, notification: Notification, *, notification_id: str | None = None) -> bool:
    """Append a notification; False means a document with that id already existed."""
    return await run_in_threadpool(self._create_notification_sync, notification, notification_id)

  def _list_member_ids_sync(self, community_id: str, community_type: CommunityType) -> list[str]:
    if community_type is CommunityType.TEAM:
      return self._team_member_ids(community_id)
    if community_type is CommunityType.CLUB:
      return self._club_member_ids(community_id)
    if community_type is CommunityType.EVENT:
      docs = self._client.collection(EVENTS_COLLECTION).document(community_id).collection(EVENT_PARTICIPANTS_SUBCOLLECTION).stream()
      return self._member_ids(community_id, docs)
    docs = self._client.collection(COMMUNITY_MEMBERS_COLLECTION).where(filter=FieldFilter("community_id", "==", community_id)).stream()
    return self._member_ids(community_id, docs)

  def _team_member_ids(self, team_id: str) -> list[str]:
    # The team document carries the roster; the membership collection is a fallback for older teams.
    snapshot = self._client.collection(TEAMS_COLLECTION).document(team_id).get()
    member_ids: list[str] = []
    if snapshot.exists:
      data = snapshot.to_dict() or {}
      member_ids = [member for member in data.get("members") or [] if isinstance(member, str) and member]
      for leader_key in ("leaderId", "leader_id"):
        leader_id = data.get(leader_key)
        if isinstance(leader_id, str) and leader_id and leader_id not in member_ids:
          member_ids.append(leader_id)

    if member_ids:
      return member_ids

    for field_name in ("team_id", "teamId"):
      docs = list(self._client.collection(TEAM_MEMBERS_COLLECTION).where(filter=FieldFilter(field_name, "==", team_id)).stream())
      if docs:
        return self._member_ids(team_id, docs)

    return []

  def _club_member_ids(self, club_id: str) -> list[str]:
    # Only active or approved members hear about club chat; pending requests do not.
    sub_docs = self._client.collection(CLUBS_COLLECTION).document(club_id).collection(CLUB_MEMBERS_SUBCOLLECTION).stream()
    member_ids = self._member_ids(club_id, sub_docs, active_only=True)
    if member_ids:
      return member_ids

    docs = self._client.collection(CLUB_MEMBERS_COLLECTION).where(filter=FieldFilter("club_id", "==", club_id)).stream()
    return self._member_ids(club_id, docs, active_only=True)

  def _member_ids(self, community_id: str, docs: Iterable[Any], *, active_only: bool = False) -> list[str]:
    member_ids: list[str] = []
    for doc in docs:
      try:
        membership = Membership.from_document(community_id, doc.to_dict() or {})
      except ValidationError:
        logger.warning("Skipping malformed membership doc_id=%s community_id=%s", doc.id, community_id)
        continue
      if active_only and not membership.is_active:
        continue
      member_ids.append(membership.user_id)
    return member_ids

  def _get_delivery_token_sync(self, user_id: str) -> DeliveryToken | None:
    snapshot = self._client.collection(FCM_TOKENS_COLLECTION).document(user_id).get()
    if not snapshot.exists:
      return None

    data = snapshot.to_dict() or {}
    try:
      return DeliveryToken(user_id=user_id, token=data.get("token") or "")
    except ValidationError:
      logger.warning("Ignoring malformed delivery token record user_id=%s", user_id)
      return None

  def _create_notification_sync(self, notification: Notification, notification_id: str | None) -> bool:
    document = notification.to_document()
    document["created_at"] = SERVER_TIMESTAMP
    collection = self._client.collection(NOTIFICATIONS_COLLECTION)
    if notification_id is None:
      collection.add(document)
      return True

    try:
      collection.document(notification_id).create(document)
    except AlreadyExists:
      logger.info("Notification already written notification_id=%s", notification_id)
      return False
    return True
