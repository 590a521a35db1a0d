from __future__ import annotations

from gemflush.services.automation.messages import (
    UNKNOWN_ERROR_MESSAGE,
    redact_sensitive,
    user_safe_error_message,
)
from gemflush.settings import settings


def test_known_upstream_errors_are_rewritten() -> None:
    assert user_safe_error_message("Item Q1 already has label 'Brew Lab'") == (
        "Business already exists in Wikidata. Updating existing entry..."
    )
    assert user_safe_error_message(ValueError("Bad value type string, expected quantity")) == (
        "Data format error. Please contact support if this persists."
    )


def test_long_messages_are_clipped_to_configured_limit() -> None:
    message = user_safe_error_message("x" * 250)
    assert message == "x" * 100 + "..."

    previous = settings.publish_error_message_max_chars
    object.__setattr__(settings, "publish_error_message_max_chars", 10)
    try:
        assert user_safe_error_message("abcdefghijklmnop") == "abcdefghij..."
    finally:
        object.__setattr__(settings, "publish_error_message_max_chars", previous)


def test_secrets_are_redacted_before_storage() -> None:
    message = user_safe_error_message("upstream rejected Bearer abc.def-123 for call", max_chars=500)
    assert "abc.def-123" not in message
    assert "[REDACTED]" in message

    assert "hunter2" not in redact_sensitive("password=hunter2 was wrong")
    assert "sk_live_999" not in redact_sensitive("api_key: sk_live_999")


def test_empty_errors_use_generic_message() -> None:
    assert user_safe_error_message(None) == UNKNOWN_ERROR_MESSAGE
    assert user_safe_error_message(RuntimeError()) == UNKNOWN_ERROR_MESSAGE
