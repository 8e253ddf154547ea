"""Push notification delivery implementations."""

from __future__ import annotations

import logging

from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from clubhub.notifications.contracts import MulticastReport, PushGateway, PushGatewayError, PushMulticast

logger = logging.getLogger(__name__)

# FCM rejects multicast requests addressed to more than 500 registration tokens.
FCM_MULTICAST_MAX_TOKENS = 500

_INVALID_TOKEN_ERRORS = (messaging.UnregisteredError, messaging.SenderIdMismatchError, firebase_exceptions.InvalidArgumentError)


class FcmPushGateway(PushGateway):
  """Firebase Cloud Messaging backed multicast sender."""

  def __init__(self, *, app: object | None = None, batch_size: int = FCM_MULTICAST_MAX_TOKENS) -> None:
    if not 0 < batch_size <= FCM_MULTICAST_MAX_TOKENS:
      raise ValueError(f"batch_size must be between 1 and {FCM_MULTICAST_MAX_TOKENS}.")
    self._app = app
    self._batch_size = batch_size

  def send_multicast(self, push: PushMulticast) -> MulticastReport:
    """Send the payload to every token, splitting into FCM-sized batches."""
    success_count = 0
    failure_count = 0
    invalid_tokens: list[str] = []

    for start in range(0, len(push.tokens), self._batch_size):
      batch_tokens = list(push.tokens[start : start + self._batch_size])
      message = messaging.MulticastMessage(tokens=batch_tokens, notification=messaging.Notification(title=push.title, body=push.body), data=push.data or None)
      try:
        batch = messaging.send_each_for_multicast(message, app=self._app)
      except firebase_exceptions.FirebaseError as exc:
        raise PushGatewayError(f"FCM multicast failed (code={exc.code})") from exc
      except ValueError as exc:
        raise PushGatewayError(f"FCM multicast rejected: {exc}") from exc

      success_count += batch.success_count
      failure_count += batch.failure_count
      for token, send_response in zip(batch_tokens, batch.responses, strict=False):
        if send_response.success:
          continue
        exc = send_response.exception
        logger.warning("FCM send failed for token_prefix=%s: %s", token[:12], getattr(exc, "code", exc))
        if isinstance(exc, _INVALID_TOKEN_ERRORS):
          invalid_tokens.append(token)

    logger.info("FCM multicast success_count=%s failure_count=%s total=%s", success_count, failure_count, len(push.tokens))
    return MulticastReport(success_count=success_count, failure_count=failure_count, invalid_tokens=tuple(invalid_tokens))


class NullPushGateway(PushGateway):
  """No-op gateway used when push notifications are disabled or unconfigured."""

  def send_multicast(self, push: PushMulticast) -> MulticastReport:
    """Drop the push while recording a debug log."""
    logger.debug("Push notifications disabled; dropping multicast token_count=%s", len(push.tokens))
    return MulticastReport(success_count=0, failure_count=0)
