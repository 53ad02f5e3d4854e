import json
import logging

from fastapi import HTTPException

from kapsule.core.errors import sanitize_error
from kapsule.core.logging import JsonLogFormatter, reset_request_id, set_request_id


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("billing", logging.INFO, __file__, 1, "stripe.webhook_received", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_json_with_request_id() -> None:
    token = set_request_id("req-1")
    try:
        payload = json.loads(JsonLogFormatter().format(_record(component="billing", event_id="evt_1")))
    finally:
        reset_request_id(token)

    assert payload["msg"] == "stripe.webhook_received"
    assert payload["component"] == "billing"
    assert payload["request_id"] == "req-1"
    assert payload["event_id"] == "evt_1"


def test_formatter_redacts_sensitive_keys() -> None:
    payload = json.loads(
        JsonLogFormatter().format(
            _record(webhook_secret="whsec_abc", context={"api_key": "rc-key", "user_id": "user-1"})
        )
    )

    assert payload["webhook_secret"] == "[redacted]"
    assert payload["context"] == {"api_key": "[redacted]", "user_id": "user-1"}


def test_sanitize_error_redacts_credentials() -> None:
    message = sanitize_error(
        RuntimeError("call failed: Authorization: Bearer abc.def token=xyz key sk_test_123"),
        default_message="failed",
    )

    assert "abc.def" not in message
    assert "xyz" not in message
    assert "sk_test_123" not in message


def test_sanitize_error_uses_http_detail_and_default() -> None:
    assert sanitize_error(HTTPException(status_code=502, detail="Failed to fetch"), default_message="x") == (
        "Failed to fetch"
    )
    assert sanitize_error(RuntimeError(""), default_message="fallback") == "fallback"
    assert len(sanitize_error(RuntimeError("e" * 2000), default_message="x")) == 500


def test_formatter_redacts_key_named_fields_and_keeps_others() -> None:
    payload = json.loads(
        JsonLogFormatter().format(
            _record(
                stripe_signature="t=1,v1=abc",
                revenuecat_key="rc-key",
                customer_id="cus_1",
                writes=[{"table": "stripe_customers", "service_role_key": "srk"}],
            )
        )
    )

    assert payload["stripe_signature"] == "[redacted]"
    assert payload["revenuecat_key"] == "[redacted]"
    assert payload["customer_id"] == "cus_1"
    assert payload["writes"] == [{"table": "stripe_customers", "service_role_key": "[redacted]"}]
    assert "args" not in payload
    assert "lineno" not in payload
