import logging

import pytest
import structlog

from jupytutor.infrastructure.config import ServiceSettings
from jupytutor.infrastructure.observability.logging import MetricsCollector, add_service_context, setup_logging


def test_settings_defaults(monkeypatch):
    for name in ServiceSettings.model_fields:
        monkeypatch.delenv(f"JUPYTUTOR_{name.upper()}", raising=False)

    settings = ServiceSettings.from_env()

    assert settings.soft_timeout == 5.0
    assert settings.max_concurrency is None


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("JUPYTUTOR_SOFT_TIMEOUT", "2.5")
    monkeypatch.setenv("JUPYTUTOR_MAX_CONCURRENCY", "8")
    monkeypatch.setenv("JUPYTUTOR_LOG_FORMAT", "console")
    monkeypatch.setenv("JUPYTUTOR_USER_AGENT", "")

    settings = ServiceSettings.from_env()

    assert settings.soft_timeout == 2.5
    assert settings.max_concurrency == 8
    assert settings.log_format == "console"
    assert settings.user_agent == "jupytutor/0.1"


def test_invalid_settings_are_rejected(monkeypatch):
    monkeypatch.setenv("JUPYTUTOR_REQUEST_TIMEOUT", "soon")

    with pytest.raises(ValueError):
        ServiceSettings.from_env()


def test_dev_log_forces_debug(monkeypatch):
    monkeypatch.setenv("JUPYTUTOR_DEV_LOG", "1")
    root = logging.getLogger()
    previous_handlers, previous_level = list(root.handlers), root.level
    root.handlers = []

    try:
        setup_logging(log_level="WARNING", log_format="console")
        assert root.level == logging.DEBUG
    finally:
        root.handlers = previous_handlers
        root.setLevel(previous_level)
        structlog.contextvars.clear_contextvars()


def test_service_context_adds_notebook_path():
    structlog.contextvars.bind_contextvars(notebook_path="lab.ipynb")
    try:
        event = add_service_context(None, "info", {"event": "x"})
    finally:
        structlog.contextvars.clear_contextvars()

    assert event["notebook_path"] == "lab.ipynb"
    assert "timestamp" in event


def test_metrics_summary():
    collector = MetricsCollector()
    collector.record_latency("page_fetch", 10.0)
    collector.record_latency("page_fetch", 30.0)
    collector.increment_counter("page_fetch.failed")

    summary = collector.get_metrics_summary()

    assert summary["latency.page_fetch"] == {"count": 2, "avg": 20.0, "min": 10.0, "max": 30.0}
    assert summary["page_fetch.failed"] == 1

    collector.reset()
    assert collector.get_metrics_summary() == {}
