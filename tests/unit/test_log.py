"""Tests for logging setup."""

from __future__ import annotations

import json
import logging

from rich.logging import RichHandler

from trawler.log import JSONFormatter, setup_logging


def _own_handlers(logger: logging.Logger) -> list[logging.Handler]:
    return [h for h in logger.handlers if getattr(h, "_trawler_handler", False)]


def test_setup_logging_installs_rich_handler():
    logger = setup_logging("debug")
    handlers = _own_handlers(logger)
    assert len(handlers) == 1
    assert isinstance(handlers[0], RichHandler)
    assert logger.level == logging.DEBUG


def test_setup_logging_replaces_previous_handler():
    setup_logging("INFO")
    logger = setup_logging("WARNING", json_format=True)
    handlers = _own_handlers(logger)
    assert len(handlers) == 1
    assert isinstance(handlers[0].formatter, JSONFormatter)


def test_json_formatter_includes_extras():
    record = logging.LogRecord(
        "trawler.crawl", logging.INFO, __file__, 1, "crawled %d pages", (3,), None
    )
    record.source_id = "src-1"

    entry = json.loads(JSONFormatter().format(record))
    assert entry["message"] == "crawled 3 pages"
    assert entry["level"] == "INFO"
    assert entry["logger"] == "trawler.crawl"
    assert entry["source_id"] == "src-1"
    assert "timestamp" in entry
