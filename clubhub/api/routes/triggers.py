"""Event entry points for document triggers."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict

from clubhub.api.deps import get_notification_service, verify_trigger_secret
from clubhub.notifications.contracts import MalformedEventError
from clubhub.notifications.service import MessageNotificationService, parse_message_event

router = APIRouter(dependencies=[Depends(verify_trigger_secret)])
logger = logging.getLogger(__name__)

MESSAGES_COLLECTION = "community_messages"


class DocumentCreatedEvent(BaseModel):
  """Envelope for a document-created event delivered by the event source."""

  id: str | None = None
  document: str | None = None
  data: dict[str, Any] | None = None
  model_config = ConfigDict(extra="ignore")


def _document_id(document: str | None, collection: str) -> str | None:
  """Return the id of `collection/<id>` paths, or None for other paths."""
  if not document:
    return None
  parent, _, doc_id = document.strip("/").rpartition("/")
  if parent.rpartition("/")[2] != collection or not doc_id:
    return None
  return doc_id


@router.post("/message-created", status_code=status.HTTP_200_OK)
async def on_message_create(event: DocumentCreatedEvent, service: Annotated[MessageNotificationService, Depends(get_notification_service)]) -> dict[str, Any]:
  """Fan a newly created community message out to the community's members."""
  message_id = _document_id(event.document, MESSAGES_COLLECTION)
  logger.info("Received message-created event event_id=%s message_id=%s", event.id, message_id)
  if event.document and message_id is None:
    raise MalformedEventError(f"Event document {event.document!r} is not a {MESSAGES_COLLECTION} document.")

  message = parse_message_event(event.data, message_id=message_id)
  result = await service.handle_message_created(message)
  return {
    "status": "ok",
    "outcome": result.outcome.value,
    "messageId": result.message_id,
    "recipients": result.recipient_count,
    "tokens": result.token_count,
    "notificationsCreated": result.notifications_created,
  }
