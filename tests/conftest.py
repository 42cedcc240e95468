"""Shared pytest fixtures."""

from __future__ import annotations

import logging

import pytest

from trawler.cli import runtime as cli_runtime
from trawler.db.connection import Database
from trawler.db.repository import Repository
from trawler.db.schema import initialize


@pytest.fixture(autouse=True)
def _reset_trawler_logger():
    """Undo setup_logging() so caplog sees trawler records in every test."""
    yield
    logger = logging.getLogger("trawler")
    for handler in list(logger.handlers):
        if getattr(handler, "_trawler_handler", False):
            logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".trawler.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


# ---------------------------------------------------------------------------
# Fake playwright objects
# ---------------------------------------------------------------------------


class FakeResponse:
    def __init__(self, status: int = 200) -> None:
        self.status = status


class FakePage:
    def __init__(self, html: str = "<html><body></body></html>", status: int = 200) -> None:
        self.html = html
        self.status = status
        self.goto_calls: list[str] = []
        self.closed = False

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls.append(url)
        return FakeResponse(self.status)

    async def content(self) -> str:
        return self.html

    async def close(self) -> None:
        self.closed = True


class FakeContext:
    def __init__(self, page: FakePage | None = None) -> None:
        self.page = page or FakePage()
        self.closed = False
        self.routes: list[str] = []

    async def route(self, pattern, handler) -> None:
        self.routes.append(pattern)

    async def new_page(self) -> FakePage:
        return self.page

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self, html: str = "<html><body></body></html>", status: int = 200) -> None:
        self.html = html
        self.status = status
        self.contexts: list[FakeContext] = []
        self.closed = False

    async def new_context(self, **kwargs) -> FakeContext:
        ctx = FakeContext(FakePage(self.html, self.status))
        self.contexts.append(ctx)
        return ctx

    async def close(self) -> None:
        self.closed = True


class FakeLauncher:
    """Coroutine-function stand-in for playwright's chromium launch."""

    def __init__(self, html: str = "<html><body></body></html>", status: int = 200) -> None:
        self.html = html
        self.status = status
        self.browsers: list[FakeBrowser] = []

    async def __call__(self) -> FakeBrowser:
        browser = FakeBrowser(self.html, self.status)
        self.browsers.append(browser)
        return browser


@pytest.fixture
def launcher():
    return FakeLauncher()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_project(tmp_path, monkeypatch):
    """An initialized project as the CWD, inline jobs, private global config."""
    monkeypatch.chdir(tmp_path)
    for var in ("TRAWLER_REDIS_URL", "REDIS_URL", "TRAWLER_EMBEDDING_MODEL"):
        monkeypatch.delenv(var, raising=False)
    # Log lines would interleave with command output.
    monkeypatch.setenv("TRAWLER_LOG_LEVEL", "ERROR")
    monkeypatch.setattr("trawler.config._GLOBAL_CONFIG_PATH", tmp_path / "global" / "config.yaml")
    # Wide console so table rows and messages stay on one line.
    monkeypatch.setattr(cli_runtime.console, "width", 200)
    conn = Database(tmp_path / ".trawler.db").connect()
    initialize(conn)
    conn.close()
    return tmp_path
