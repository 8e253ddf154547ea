import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from clubhub.notifications.contracts import FanoutError, MalformedEventError

logger = logging.getLogger("uvicorn.error")


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    error_message = str(value)
    if error_message:
      return f"{type(value).__name__}: {error_message}"
    return type(value).__name__
  return str(value)


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key != "input"}
    # Remove nested input values from context payloads as well.
    if "ctx" in scrubbed and isinstance(scrubbed["ctx"], dict):
      scrubbed_ctx = dict(scrubbed["ctx"])
      scrubbed_ctx.pop("input", None)
      scrubbed["ctx"] = scrubbed_ctx

    sanitized.append(_coerce_json_safe(scrubbed))

  return sanitized


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Global exception handler to catch unhandled errors."""
  logger.error("Global exception path=%s error_type=%s", request.url.path, type(exc).__name__, exc_info=True)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "Internal Server Error"})


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  """Log request validation errors for debugging without leaking payloads."""
  sanitized_errors = _sanitize_validation_errors(exc.errors())
  logger.warning("Request validation failed path=%s method=%s errors=%s", request.url.path, request.method, sanitized_errors)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": sanitized_errors})


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Handle FastAPI HTTPExceptions without echoing 5xx diagnostics."""
  if exc.status_code >= 500:
    logger.error("HTTPException path=%s status_code=%s detail=%s", request.url.path, exc.status_code, exc.detail, exc_info=True)
    return JSONResponse(status_code=exc.status_code, content={"detail": "Internal Server Error"})

  return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)


async def malformed_event_exception_handler(request: Request, exc: MalformedEventError) -> JSONResponse:
  """Reject events that cannot be fanned out; redelivery would fail the same way."""
  logger.warning("Malformed event rejected path=%s reason=%s", request.url.path, exc)
  return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


async def fanout_exception_handler(request: Request, exc: FanoutError) -> JSONResponse:
  """Report a failed fan-out so the event source redelivers the event."""
  failed_user_ids = [failure.user_id for failure in exc.failures]
  logger.error("Fan-out failed path=%s stage=%s message_id=%s community_id=%s failed_user_ids=%s error=%s", request.url.path, exc.stage.value, exc.message_id, exc.community_id, failed_user_ids, exc)
  return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": "Fan-out failed", "stage": exc.stage.value, "messageId": exc.message_id, "failedRecipients": len(failed_user_ids)})
