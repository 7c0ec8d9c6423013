"""
Tests for structured logging processors.
"""

import pytest

from mcp_gateway.observability.logging import redact_secrets, truncate_secret


class TestRedaction:
    def test_secret_fields_are_truncated(self):
        event = {
            "event": "oauth_session_created",
            "session_id": "session_" + "a" * 64,
            "access_token": "Atza|IwEBIExampleTokenValue",
            "client_secret": "very-secret-value",
            "user_id": "6f1c2a4e-9d1b-4c33-8a57-0c2f5a7e9b10",
        }

        redacted = redact_secrets(None, "info", dict(event))

        assert redacted["session_id"] == "session_..."
        assert redacted["access_token"] == "Atza|IwE..."
        assert redacted["client_secret"] == "very-sec..."
        assert redacted["user_id"] == event["user_id"]
        assert redacted["event"] == "oauth_session_created"

    def test_non_string_values_untouched(self):
        redacted = redact_secrets(None, "info", {"event": "x", "token_count": 3})
        assert redacted["token_count"] == 3

    @pytest.mark.parametrize("value", ["", "short", "exactly8"])
    def test_short_secrets_fully_hidden(self, value):
        assert truncate_secret(value) == "***"
