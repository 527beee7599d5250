import json
import logging

from fitos.utils.logging import (
    ContextFormatter,
    JSONFormatter,
    RequestContextFilter,
    bind_context,
    current_context,
    reset_context,
)


def _record(message="hello", **extra):
    record = logging.LogRecord("fitos.test", logging.INFO, __file__, 10, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_bind_and_reset_context():
    outer = bind_context(request_id="abc")
    inner = bind_context(tenant_id="t-1", user_id=None)

    assert current_context() == {"request_id": "abc", "tenant_id": "t-1"}

    reset_context(inner)
    assert current_context() == {"request_id": "abc"}
    reset_context(outer)
    assert current_context() == {}


def test_filter_copies_context_without_overriding_extras():
    token = bind_context(request_id="abc", tenant_id="t-1")
    try:
        record = _record(tenant_id="explicit")
        assert RequestContextFilter().filter(record)
    finally:
        reset_context(token)

    assert record.request_id == "abc"
    assert record.tenant_id == "explicit"


def test_json_formatter_includes_extras():
    record = _record("SECURITY EVENT: failed_login", event_type="failed_login", request_id="abc")

    body = json.loads(JSONFormatter().format(record))

    assert body["message"] == "SECURITY EVENT: failed_login"
    assert body["level"] == "INFO"
    assert body["event_type"] == "failed_login"
    assert body["request_id"] == "abc"
    assert "args" not in body


def test_context_formatter_appends_known_fields():
    formatter = ContextFormatter("%(message)s")

    assert formatter.format(_record()) == "hello"
    assert formatter.format(_record(request_id="abc", tenant_id="t-1")) == "hello [request_id=abc tenant_id=t-1]"


def test_request_id_header(client):
    generated = client.get("/health")
    echoed = client.get("/health", headers={"X-Request-ID": "req-42"})

    assert len(generated.headers["X-Request-ID"]) == 32
    assert echoed.headers["X-Request-ID"] == "req-42"
    assert float(echoed.headers["X-Process-Time"]) >= 0
