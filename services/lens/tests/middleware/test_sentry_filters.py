"""Tests for services.lens.middleware.sentry before_send scrubbing."""

from services.lens.middleware.sentry import _strip_sensitive_data


def test_headers_and_nested_ids_scrubbed():
    event = {
        "request": {
            "headers": {"Authorization": "Bearer x", "Content-Type": "application/json"},
            "data": {"intention": {"userId": "u-1", "sessionId": "s-1", "city": "New York"}},
        },
        "breadcrumbs": {"values": [{"data": {"headers": {"Cookie": "a=b"}}}]},
    }

    out = _strip_sensitive_data(event, {})

    assert out["request"]["headers"]["Authorization"] == "[FILTERED]"
    assert out["request"]["headers"]["Content-Type"] == "application/json"
    assert out["request"]["data"]["intention"]["userId"] == "[FILTERED]"
    assert out["request"]["data"]["intention"]["sessionId"] == "[FILTERED]"
    assert out["request"]["data"]["intention"]["city"] == "New York"
    assert out["breadcrumbs"]["values"][0]["data"]["headers"]["Cookie"] == "[FILTERED]"


def test_event_without_request_passes_through():
    event = {"message": "boom"}
    assert _strip_sensitive_data(event, {}) == {"message": "boom"}
