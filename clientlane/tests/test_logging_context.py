"""Tests for structured logging and request_id propagation."""

import json
import logging

from clientlane.core.logging import JsonFormatter, PrettyFormatter, latency_bucket_ms


def test_request_id_in_response_and_logs(client, caplog):
    with caplog.at_level(logging.INFO, logger="clientlane"):
        response = client.get("/healthz")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records, "Expected logs to contain request_id from response"
    assert records[-1].getMessage() == "request.complete"
    assert records[-1].path == "/healthz"


def test_request_id_in_error_response(client):
    response = client.get("/api/portals/non-existent", headers={"Authorization": "Bearer nope"})
    rid = response.headers.get("x-request-id")
    assert response.status_code == 401
    assert rid
    assert response.json()["error"]["request_id"] == rid


def test_service_logs_carry_extra_fields(client, freelancer, caplog):
    with caplog.at_level(logging.INFO, logger="clientlane"):
        client.post(
            "/api/portals",
            json={"name": "Website Redesign", "clientEmail": "ops@acme.co", "clientName": "Acme Ops"},
            headers=freelancer["headers"],
        )
    created = [r for r in caplog.records if r.getMessage() == "[portals] portal created"]
    assert len(created) == 1
    assert created[0].user_id == freelancer["id"]
    assert created[0].portal_id


def _record(**extra):
    record = logging.LogRecord("clientlane", logging.INFO, __file__, 1, "portal created", (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extras():
    line = JsonFormatter().format(_record(request_id="rid-1", portal_id="p1"))
    payload = json.loads(line)
    assert payload["message"] == "portal created"
    assert payload["request_id"] == "rid-1"
    assert payload["portal_id"] == "p1"
    assert payload["timestamp"].endswith("Z")


def test_pretty_formatter_line():
    line = PrettyFormatter().format(_record(request_id="rid-2", user_id="u1"))
    assert "[rid=rid-2]" in line
    assert "user_id=u1" in line


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(5) == "<10ms"
    assert latency_bucket_ms(250) == "100-500ms"
    assert latency_bucket_ms(2500) == ">=1000ms"
