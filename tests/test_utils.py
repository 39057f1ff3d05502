"""
Tests for src/utils - structured logging and the shared Redis client.
"""
import json
import logging
from unittest.mock import MagicMock, patch

import pytest

from src.utils import redis_client
from src.utils.logging import (
    StructuredJsonFormatter,
    configure_structured_logging,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


class TestCorrelationId:
    def test_generate_is_hex(self):
        cid = generate_correlation_id()
        assert len(cid) == 32
        int(cid, 16)

    def test_set_and_get(self):
        set_correlation_id("abc")
        assert get_correlation_id() == "abc"


class TestStructuredJsonFormatter:
    def _record(self, **extra):
        record = logging.LogRecord("src.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_basic_fields(self):
        set_correlation_id("cid-1")
        entry = json.loads(StructuredJsonFormatter().format(self._record()))

        assert entry["message"] == "hello world"
        assert entry["level"] == "INFO"
        assert entry["module"] == "src.test"
        assert entry["correlation_id"] == "cid-1"

    def test_lifts_queue_fields(self):
        entry = json.loads(StructuredJsonFormatter().format(
            self._record(event_id="e1", event_type="job:x", webhook_name=None)
        ))

        assert entry["event_id"] == "e1"
        assert entry["event_type"] == "job:x"
        assert "webhook_name" not in entry

    def test_includes_exception(self):
        try:
            raise ValueError("bad")
        except ValueError:
            import sys
            record = logging.LogRecord("src.test", logging.ERROR, __file__, 1, "oops", (), sys.exc_info())

        entry = json.loads(StructuredJsonFormatter().format(record))
        assert "ValueError: bad" in entry["exception"]


def test_configure_structured_logging_replaces_handlers():
    root = logging.getLogger()
    saved = root.handlers[:]
    saved_level = root.level
    try:
        configure_structured_logging("DEBUG")
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredJsonFormatter)
        assert root.level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        root.handlers[:] = saved
        root.setLevel(saved_level)


class TestGetRedis:
    @pytest.fixture(autouse=True)
    def _reset(self):
        redis_client._redis_client = None
        yield
        redis_client._redis_client = None

    async def test_created_once_from_settings(self):
        fake = MagicMock()
        with patch("redis.asyncio.from_url", return_value=fake) as mock_from_url:
            first = await redis_client.get_redis()
            second = await redis_client.get_redis()

        assert first is second is fake
        mock_from_url.assert_called_once()
        assert mock_from_url.call_args.kwargs["decode_responses"] is True
