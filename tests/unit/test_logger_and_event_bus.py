"""
Unit tests for StructuredLogger and EventBus
============================================
"""

import json
import logging

import pytest

from psiconnect_sync.core.event_bus import EventBus
from psiconnect_sync.core.logger import JsonFormatter, StructuredLogger, get_logger
from psiconnect_sync.domain.models.connection import ConnectionStatus
from psiconnect_sync.infrastructure.config.settings import LoggingSettings


class TestStructuredLogger:

    def test_get_logger_is_cached(self):
        assert get_logger("psiconnect_sync.tests.cached") is get_logger("psiconnect_sync.tests.cached")

    def test_no_duplicate_console_handlers(self):
        config = LoggingSettings()
        first = StructuredLogger("psiconnect_sync.tests.handlers", config)
        StructuredLogger("psiconnect_sync.tests.handlers", config)

        assert len(first.logger.handlers) == 1

    def test_json_formatter_renders_event(self):
        record = logging.LogRecord(
            "psiconnect_sync", logging.INFO, __file__, 1,
            {"event_type": "transport_channel.opened", "data": {"status": ConnectionStatus.OPEN}},
            None, None,
        )

        rendered = json.loads(JsonFormatter().format(record))

        assert rendered["event_type"] == "transport_channel.opened"
        assert rendered["data"] == {"status": "open"}
        assert rendered["level"] == "INFO"

    def test_file_handler_writes_jsonl(self, tmp_path):
        config = LoggingSettings(file_enabled=True, console_enabled=False, log_dir=str(tmp_path))
        structured = StructuredLogger("psiconnect_sync.tests.file", config)

        structured.info("session_store.state_changed", {"status": "authenticated"})
        for handler in structured.logger.handlers:
            handler.flush()

        line = (tmp_path / "psiconnect_sync.tests.file.jsonl").read_text(encoding="utf-8").strip()
        assert json.loads(line)["event_type"] == "session_store.state_changed"
        for handler in list(structured.logger.handlers):
            handler.close()
            structured.logger.removeHandler(handler)


class TestEventBus:

    async def test_publish_reaches_sync_and_async_subscribers(self):
        bus = EventBus()
        received = []

        async def async_handler(data):
            received.append(("async", data["status"]))

        await bus.subscribe("connection.status_changed", lambda data: received.append(("sync", data["status"])))
        await bus.subscribe("connection.status_changed", async_handler)

        await bus.publish("connection.status_changed", {"status": "open"})

        assert received == [("sync", "open"), ("async", "open")]

    async def test_failing_subscriber_isolated(self):
        bus = EventBus()
        received = []

        def broken(data):
            raise RuntimeError("ui bug")

        await bus.subscribe("notification.raised", broken)
        await bus.subscribe("notification.raised", received.append)

        await bus.publish("notification.raised", {"title": "New message"})

        assert received == [{"title": "New message"}]
        assert (await bus.health_check())["delivery_failures"] == 1

    async def test_unsubscribe_and_shutdown(self):
        bus = EventBus()
        received = []
        await bus.subscribe("cache.invalidated", received.append)
        await bus.unsubscribe("cache.invalidated", received.append)
        await bus.publish("cache.invalidated", {"key": "k"})
        assert received == []

        await bus.shutdown()
        await bus.publish("cache.invalidated", {"key": "k"})
        assert (await bus.health_check())["healthy"] is False

    async def test_invalid_publish_rejected(self):
        with pytest.raises(ValueError):
            await EventBus().publish("", {})
