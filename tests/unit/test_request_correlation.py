"""Unit tests for request correlation ids and the logging filter"""

import contextvars
import json
import logging

from mailcatch.observability.logging_config import JSONFormatter, RequestIDFilter
from mailcatch.observability.middleware import bind_request_id, get_request_id


def in_fresh_context(func):
    return contextvars.copy_context().run(func)


def make_record() -> logging.LogRecord:
    return logging.LogRecord(
        name="mailcatch.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Saved message",
        args=(),
        exc_info=None,
    )


class TestBindRequestId:
    def test_default_when_unbound(self):
        context = contextvars.Context()
        assert context.run(get_request_id) == "no-request-id"

    def test_client_id_is_kept(self):
        def bind():
            bound = bind_request_id("trace-123")
            return bound, get_request_id()

        assert in_fresh_context(bind) == ("trace-123", "trace-123")

    def test_generated_id_uses_prefix(self):
        def bind():
            return bind_request_id(prefix="smtp-"), get_request_id()

        bound, current = in_fresh_context(bind)
        assert bound.startswith("smtp-")
        assert current == bound


class TestRequestIDFilter:
    def test_record_carries_bound_id(self):
        def log():
            bind_request_id("trace-456")
            record = make_record()
            record.message_id = "20240101000000000000-000001-deadbeef.eml"
            RequestIDFilter().filter(record)
            return json.loads(JSONFormatter().format(record))

        data = in_fresh_context(log)

        assert data["request_id"] == "trace-456"
        assert data["message_id"] == "20240101000000000000-000001-deadbeef.eml"
        assert data["message"] == "Saved message"
