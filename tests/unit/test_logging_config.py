"""
Unit tests for structlog configuration.
"""

import io
import json
import logging

import pytest
import structlog

from execution_gateway.logging_config import APP_NAME, configure_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def test_production_renders_json_with_context():
    stream = io.StringIO()
    configure_logging("INFO", "production", stream=stream)

    with structlog.contextvars.bound_contextvars(operation_id="content.generate"):
        logging.getLogger("provider.sdk").warning("upstream slow")

    event = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert event["event"] == "upstream slow"
    assert event["level"] == "warning"
    assert event["app"] == APP_NAME
    assert event["operation_id"] == "content.generate"


def test_level_filters_lower_events():
    stream = io.StringIO()
    configure_logging("ERROR", "production", stream=stream)

    logging.getLogger("provider.sdk").warning("dropped")

    assert stream.getvalue() == ""


def test_development_renders_console_text():
    stream = io.StringIO()
    handler = configure_logging("debug", "development", stream=stream)

    logging.getLogger("provider.sdk").info("hello console")

    assert "hello console" in stream.getvalue()
    assert logging.getLogger().handlers == [handler]


def test_unknown_level_falls_back_to_info():
    configure_logging("chatty", "production", stream=io.StringIO())

    assert logging.getLogger().level == logging.INFO
    assert logging.getLogger("httpx").level == logging.WARNING
