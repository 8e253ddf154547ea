"""Unit tests for exception sanitization behavior."""

from __future__ import annotations

from clubhub.core.exceptions import _sanitize_validation_errors


def test_sanitize_validation_errors_removes_input_and_serializes_exception_ctx() -> None:
  """Ensure validation errors stay JSON-serializable and redact raw event payloads."""
  errors = [{"type": "value_error", "loc": ("body", "data"), "msg": "Value error, identifier must not be blank", "input": {"senderId": " "}, "ctx": {"error": ValueError("identifier must not be blank"), "input": {"senderId": " "}}}]
  sanitized = _sanitize_validation_errors(errors)
  assert "input" not in sanitized[0]
  assert sanitized[0]["ctx"]["error"] == "ValueError: identifier must not be blank"
  assert "input" not in sanitized[0]["ctx"]
  assert sanitized[0]["loc"] == ["body", "data"]
