"""Unit tests for request-scoped structlog context."""

import pytest
import structlog

from expertdesk.logging_config import bind_request_context, clear_request_context


@pytest.fixture(autouse=True)
def clean_context():
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service="expertdesk")
    yield
    structlog.contextvars.clear_contextvars()


class TestRequestContext:
    def test_bind_adds_request_and_user(self):
        bind_request_context("req-1", user_id=7, route="/questions")

        assert structlog.contextvars.get_contextvars() == {
            "service": "expertdesk",
            "request_id": "req-1",
            "user_id": 7,
            "route": "/questions",
        }

    def test_anonymous_request_has_no_user_key(self):
        bind_request_context("req-2")

        assert "user_id" not in structlog.contextvars.get_contextvars()

    def test_clear_keeps_service_binding(self):
        bind_request_context("req-3", user_id=7)

        clear_request_context()

        assert structlog.contextvars.get_contextvars() == {"service": "expertdesk"}

    def test_clear_named_keys_only(self):
        bind_request_context("req-4", route="/reports")

        clear_request_context("route")

        assert structlog.contextvars.get_contextvars() == {
            "service": "expertdesk",
            "request_id": "req-4",
        }
