import json
import logging

from kitchen_orders.core.logging_setup import JsonFormatter
from kitchen_orders.core.request_context import clear_request_context, set_request_context


def _record(message, *args, **extra):
    record = logging.LogRecord("kitchen_orders.test", logging.INFO, __file__, 1, message, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_context_and_masks_secrets():
    set_request_context(request_id="req-123")
    try:
        line = JsonFormatter().format(_record("token=%s saved", "abc", order_id="o1", attempt=2))
    finally:
        clear_request_context()

    payload = json.loads(line)
    assert payload["request_id"] == "req-123"
    assert payload["message"] == "token=*** saved"
    assert payload["order_id"] == "o1"
    assert payload["attempt"] == 2
    assert "endpoint" not in payload


def test_json_formatter_without_request_context():
    payload = json.loads(JsonFormatter().format(_record("plain")))

    assert payload["request_id"] is None
    assert payload["level"] == "INFO"
    assert payload["module"] == "kitchen_orders.test"
