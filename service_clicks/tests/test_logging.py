"""
Tests for structured logging processors.
"""

import pytest

from shared.logging import (
    REDACTED,
    add_correlation_context,
    clear_context,
    is_valid_request_id,
    mask_bearer,
    redact_secrets,
    service_context,
    set_request_id,
    set_user_context,
)


class TestRedaction:

    def test_secret_fields_masked(self):
        event = redact_secrets(None, "info", {"event": "login", "token": "abc.def.ghi", "Password": "x"})

        assert event["token"] == REDACTED
        assert event["Password"] == REDACTED
        assert event["event"] == "login"

    def test_inline_bearer_masked(self):
        event = redact_secrets(None, "info", {"event": "header", "header": "Bearer abc.def.ghi"})

        assert event["header"] == f"Bearer {REDACTED}"

    def test_mask_bearer_keeps_surrounding_text(self):
        assert mask_bearer("sent Bearer abc.def to idp") == f"sent Bearer {REDACTED} to idp"

    def test_nested_secrets_masked(self):
        event = redact_secrets(None, "warning", {
            "event": "JWT authentication failed",
            "details": {"token": "abc.def.ghi", "headers": ["Bearer abc.def.ghi"], "reason": "TOKEN_EXPIRED"},
        })

        assert event["details"]["token"] == REDACTED
        assert event["details"]["headers"] == [f"Bearer {REDACTED}"]
        assert event["details"]["reason"] == "TOKEN_EXPIRED"

    def test_nested_tuple_type_kept(self):
        event = redact_secrets(None, "info", {"pair": ("a", {"password": "x"})})

        assert event["pair"] == ("a", {"password": REDACTED})

    def test_plain_values_untouched(self):
        event = {"event": "click", "user_id": "user1", "count": 3}
        assert redact_secrets(None, "info", dict(event)) == event


class TestContext:

    def setup_method(self):
        clear_context()

    def teardown_method(self):
        clear_context()

    def test_request_id_generated(self):
        request_id = set_request_id(None)
        assert request_id
        assert add_correlation_context(None, "info", {})["request_id"] == request_id

    def test_request_id_kept(self):
        assert set_request_id("req-1") == "req-1"

    @pytest.mark.parametrize("supplied", ["x" * 129, "id with spaces", "id\r\nSet-Cookie: a=b", "<script>"])
    def test_unsafe_request_id_replaced(self, supplied):
        request_id = set_request_id(supplied)

        assert request_id != supplied
        assert is_valid_request_id(request_id)

    def test_safe_request_id_kept(self):
        assert set_request_id("trace-01:abc.DEF_2") == "trace-01:abc.DEF_2"

    def test_user_context(self):
        set_user_context("user1")
        assert add_correlation_context(None, "info", {})["user_id"] == "user1"

    def test_cleared_context_adds_nothing(self):
        assert add_correlation_context(None, "info", {}) == {}

    def test_service_context(self):
        processor = service_context("clicks")
        assert processor(None, "info", {})["service"] == "clicks"
