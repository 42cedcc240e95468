"""Plumbing shared by the CLI commands.

Each command loads the config once, opens a ``KnowledgeBase`` on the
``--db`` file, awaits one coroutine against it and closes it again.
Domain errors become the actionable messages from ``trawler.cli.errors``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

import typer
from rich.console import Console

from trawler.cli.errors import err_config, err_no_api_key, err_no_db, explain
from trawler.config import ConfigError, TrawlerConfig, load_config
from trawler.errors import MissingApiKeyError, TrawlerError
from trawler.events import EventPublisher
from trawler.log import setup_logging
from trawler.service import KnowledgeBase

console = Console()

DEFAULT_DB = Path(".trawler.db")

T = TypeVar("T")


def load_cli_config() -> TrawlerConfig:
    """Load trawler.yaml from the CWD and configure logging from it."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    setup_logging(cfg.logging.level, cfg.logging.json)
    return cfg


def require_db(db: Path) -> None:
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)


@contextmanager
def reported(source_id: str = "<id>", url: str | None = None) -> Iterator[None]:
    """Print domain errors as actionable messages and exit 1."""
    try:
        yield
    except TrawlerError as exc:
        console.print(explain(exc, source_id, url))
        raise typer.Exit(1) from exc


def run_with_kb(
    db: Path,
    action: Callable[[KnowledgeBase], Awaitable[T]],
    *,
    publisher: EventPublisher | None = None,
) -> T:
    """Open a KnowledgeBase on *db*, await ``action(kb)``, always close it."""
    require_db(db)
    cfg = load_cli_config()

    async def _main() -> T:
        kb = KnowledgeBase(db, cfg, publisher=publisher)
        try:
            return await action(kb)
        finally:
            await kb.close()

    try:
        return asyncio.run(_main())
    except MissingApiKeyError as exc:
        console.print(err_no_api_key(exc.provider))
        raise typer.Exit(1) from exc


class ConsoleProgress:
    """Event sink printing crawl progress lines while an inline crawl runs."""

    def __init__(self, out: Console | None = None) -> None:
        self._out = out or console

    async def publish(self, topic: str, event: dict[str, Any]) -> None:
        status = event.get("status")
        if status == "progress":
            phase = event.get("phase", "")
            if phase == "processing":
                self._out.print(
                    f"  [dim]{event.get('current', 0)}/{event.get('total', 0)}[/] "
                    f"{event.get('currentUrl', '')}"
                )
            elif phase in ("completed", "failed"):
                self._out.print(
                    f"  [dim]{phase}: {event.get('current', 0)} page(s), "
                    f"{event.get('discoveredLinks', 0)} link(s) discovered[/]"
                )
