"""Fan-out of community chat messages into notifications and push delivery."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from clubhub.notifications.contracts import CommunityStore, FanoutError, FanoutOutcome, FanoutStage, MalformedEventError, MulticastReport, PushGateway, PushMulticast, RecipientFailure
from clubhub.schema.records import DeliveryToken, Message, Notification

logger = logging.getLogger(__name__)

T = TypeVar("T")

PUSH_TITLE = "New Message"
PUSH_FALLBACK_BODY = "You have a new message"
DEFAULT_PUSH_BODY_MAX_CHARS = 100


@dataclass(frozen=True)
class FanoutResult:
  """Summary of one completed fan-out."""

  outcome: FanoutOutcome
  message_id: str | None
  community_id: str
  recipient_count: int = 0
  token_count: int = 0
  notifications_created: int = 0
  push_report: MulticastReport | None = None


def parse_message_event(data: dict[str, Any] | None, *, message_id: str | None = None) -> Message:
  """Validate a raw message document; raise MalformedEventError before any side effect."""
  if not data:
    raise MalformedEventError("Message event carried no document data.")

  payload = dict(data)
  if message_id and not payload.get("messageId"):
    payload["messageId"] = message_id
  try:
    return Message.model_validate(payload)
  except ValidationError as exc:
    fields = sorted({".".join(str(part) for part in error["loc"]) for error in exc.errors()})
    raise MalformedEventError(f"Message event is missing or has invalid fields: {', '.join(fields)}") from exc


def build_push_body(text: str, max_chars: int = DEFAULT_PUSH_BODY_MAX_CHARS) -> str:
  """Return the push body: the leading characters of the message text."""
  if not text:
    return PUSH_FALLBACK_BODY
  return text[:max_chars]


def _unique(values: Iterable[str]) -> list[str]:
  return list(dict.fromkeys(stripped for stripped in (value.strip() for value in values if value) if stripped))


class MessageNotificationService:
  """Notifies every community member except the sender about a new chat message."""

  def __init__(self, *, store: CommunityStore, push_gateway: PushGateway, concurrency: int = 16, idempotent_notifications: bool = True, push_body_max_chars: int = DEFAULT_PUSH_BODY_MAX_CHARS) -> None:
    if concurrency <= 0:
      raise ValueError("concurrency must be a positive integer.")
    self._store = store
    self._push_gateway = push_gateway
    self._concurrency = concurrency
    self._idempotent_notifications = idempotent_notifications
    self._push_body_max_chars = push_body_max_chars

  async def handle_message_created(self, message: Message) -> FanoutResult:
    """Run the full fan-out for one newly created message."""
    logger.info("Message fan-out started message_id=%s community_id=%s community_type=%s", message.message_id, message.community_id, message.community_type.value)

    member_ids = await self._resolve_members(message)
    if not member_ids:
      logger.info("No members found; nothing to notify message_id=%s community_id=%s", message.message_id, message.community_id)
      return FanoutResult(outcome=FanoutOutcome.SKIPPED_NO_MEMBERS, message_id=message.message_id, community_id=message.community_id)

    recipient_ids = [member_id for member_id in member_ids if member_id != message.sender_id]
    tokens = await self._resolve_tokens(message, recipient_ids)

    # Notification writes and push dispatch do not depend on each other.
    (created, write_failures), (push_report, push_error) = await asyncio.gather(self._write_notifications(message, recipient_ids), self._dispatch_push(message, tokens))

    if write_failures:
      if push_error is not None:
        logger.error("Push dispatch also failed message_id=%s error=%s", message.message_id, push_error)
      raise FanoutError(
        f"{len(write_failures)} of {len(recipient_ids)} notification writes failed",
        stage=FanoutStage.WRITE_NOTIFICATIONS,
        message_id=message.message_id,
        community_id=message.community_id,
        failures=write_failures,
      )

    if push_error is not None:
      raise FanoutError(f"Push dispatch failed: {push_error}", stage=FanoutStage.DISPATCH_PUSH, message_id=message.message_id, community_id=message.community_id) from push_error

    outcome = FanoutOutcome.PUSH_DISPATCHED if tokens else FanoutOutcome.NOTIFICATIONS_WRITTEN
    logger.info(
      "Message fan-out finished message_id=%s community_id=%s outcome=%s recipients=%s tokens=%s created=%s",
      message.message_id,
      message.community_id,
      outcome.value,
      len(recipient_ids),
      len(tokens),
      created,
    )
    return FanoutResult(
      outcome=outcome, message_id=message.message_id, community_id=message.community_id, recipient_count=len(recipient_ids), token_count=len(tokens), notifications_created=created, push_report=push_report
    )

  async def _resolve_members(self, message: Message) -> list[str]:
    try:
      member_ids = await self._store.list_member_ids(message.community_id, message.community_type)
    except Exception as exc:
      logger.error("Member lookup failed message_id=%s community_id=%s error=%s", message.message_id, message.community_id, exc, exc_info=True)
      raise FanoutError(f"Member lookup failed: {exc}", stage=FanoutStage.RESOLVE_MEMBERS, message_id=message.message_id, community_id=message.community_id) from exc

    # Rosters merged from several sources can list the same user twice.
    return _unique(member_ids)

  async def _resolve_tokens(self, message: Message, recipient_ids: list[str]) -> list[str]:
    """Look up every recipient's token; fail before any write if a lookup errors."""
    results = await self._fan_out(recipient_ids, self._store.get_delivery_token)

    failures: list[RecipientFailure] = []
    tokens: list[str] = []
    for user_id, result in results:
      if isinstance(result, Exception):
        logger.error("Token lookup failed message_id=%s user_id=%s error=%s", message.message_id, user_id, result)
        failures.append(RecipientFailure(user_id=user_id, error=str(result)))
      elif isinstance(result, DeliveryToken):
        tokens.append(result.token)

    if failures:
      raise FanoutError(f"{len(failures)} token lookups failed", stage=FanoutStage.RESOLVE_TOKENS, message_id=message.message_id, community_id=message.community_id, failures=failures)

    logger.debug("Resolved tokens message_id=%s recipients=%s with_token=%s", message.message_id, len(recipient_ids), len(tokens))
    return _unique(tokens)

  async def _write_notifications(self, message: Message, recipient_ids: list[str]) -> tuple[int, list[RecipientFailure]]:
    """Create one notification per recipient, isolating per-recipient failures."""
    body = f"New message in your {message.community_type.value}"

    async def _write(user_id: str) -> bool:
      notification = Notification(user_id=user_id, message=body, reference_id=message.community_id, community_type=message.community_type.value)
      return await self._store.create_notification(notification, notification_id=self._notification_id(message, user_id))

    results = await self._fan_out(recipient_ids, _write)

    created = 0
    failures: list[RecipientFailure] = []
    for user_id, result in results:
      if isinstance(result, Exception):
        logger.error("Notification write failed message_id=%s user_id=%s error=%s", message.message_id, user_id, result)
        failures.append(RecipientFailure(user_id=user_id, error=str(result)))
      elif result:
        created += 1

    if created < len(recipient_ids) - len(failures):
      logger.info("Skipped already-written notifications message_id=%s count=%s", message.message_id, len(recipient_ids) - len(failures) - created)
    return created, failures

  async def _dispatch_push(self, message: Message, tokens: list[str]) -> tuple[MulticastReport | None, Exception | None]:
    """Send one multicast push for all tokens; never call the gateway without tokens."""
    if not tokens:
      logger.debug("No delivery tokens; push skipped message_id=%s", message.message_id)
      return None, None

    push = PushMulticast(
      tokens=tuple(tokens), title=PUSH_TITLE, body=build_push_body(message.text, self._push_body_max_chars), data={"communityId": message.community_id, "type": message.community_type.value}
    )
    try:
      report = await run_in_threadpool(self._push_gateway.send_multicast, push)
    except Exception as exc:
      logger.error("Push dispatch failed message_id=%s token_count=%s error=%s", message.message_id, len(tokens), exc, exc_info=True)
      return None, exc

    logger.info("Push dispatched message_id=%s success_count=%s failure_count=%s invalid_tokens=%s", message.message_id, report.success_count, report.failure_count, len(report.invalid_tokens))
    return report, None

  def _notification_id(self, message: Message, user_id: str) -> str | None:
    if not self._idempotent_notifications or not message.message_id:
      return None
    return f"{message.message_id}_{user_id}"

  async def _fan_out(self, user_ids: list[str], operation: Callable[[str], Awaitable[T]]) -> list[tuple[str, T | Exception]]:
    """Run `operation` for every user id with bounded concurrency, collecting failures."""
    semaphore = asyncio.Semaphore(self._concurrency)

    async def _run(user_id: str) -> T:
      async with semaphore:
        return await operation(user_id)

    results = await asyncio.gather(*(_run(user_id) for user_id in user_ids), return_exceptions=True)
    collected: list[tuple[str, T | Exception]] = []
    for user_id, result in zip(user_ids, results, strict=True):
      if isinstance(result, BaseException) and not isinstance(result, Exception):
        raise result
      collected.append((user_id, result))
    return collected
