"""trawler crawl / recrawl: (re)build a website source's chunks.

Without a broker the crawl runs in this process and progress is printed
as it goes; with ``queue.redis_url`` set the job is handed to the arq
worker and the command returns immediately.

Usage:
  trawler crawl <source-id>
  trawler crawl <source-id> --max-pages 20 --exclude "/blog/*"
  trawler recrawl <source-id>
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

import typer

from trawler.cli.runtime import DEFAULT_DB, ConsoleProgress, console, reported, run_with_kb
from trawler.db.models import CrawlPolicy, WebsiteMetadata
from trawler.service import KnowledgeBase


def crawl_cmd(
    source_id: Annotated[str, typer.Argument(help="Website source id.")],
    url: Annotated[
        str | None, typer.Option("--url", help="Crawl this URL instead of the stored one.")
    ] = None,
    max_pages: Annotated[int | None, typer.Option("--max-pages", help="Page budget.")] = None,
    no_subpages: Annotated[
        bool, typer.Option("--no-subpages", help="Crawl the seed page only.")
    ] = False,
    include: Annotated[
        list[str] | None, typer.Option("--include", help="Path glob to include (repeatable).")
    ] = None,
    exclude: Annotated[
        list[str] | None, typer.Option("--exclude", help="Path glob to exclude (repeatable).")
    ] = None,
    full_page: Annotated[
        bool, typer.Option("--full-page", help="Extract the whole page, not just the main region.")
    ] = False,
    db: Annotated[Path, typer.Option("--db", help="Path to .trawler.db.")] = DEFAULT_DB,
) -> None:
    """Crawl a website source and replace its chunks."""
    overrides = any([max_pages, no_subpages, include, exclude, full_page])

    async def _crawl(kb: KnowledgeBase) -> dict[str, Any]:
        policy = None
        if overrides:
            meta = kb.get_source(source_id).details
            stored = meta.policy if isinstance(meta, WebsiteMetadata) else CrawlPolicy()
            policy = CrawlPolicy(
                max_pages=max_pages or stored.max_pages,
                crawl_subpages=stored.crawl_subpages and not no_subpages,
                include_paths=include or stored.include_paths,
                exclude_paths=exclude or stored.exclude_paths,
                full_page_content=full_page or stored.full_page_content,
            )
        return await kb.trigger_crawl(source_id, url, policy)

    console.print(f"[bold]Crawling {source_id}[/]")
    with reported(source_id, url):
        result = run_with_kb(db, _crawl, publisher=ConsoleProgress())
    _report(result)


def recrawl_cmd(
    source_id: Annotated[str, typer.Argument(help="Website source id.")],
    db: Annotated[Path, typer.Option("--db", help="Path to .trawler.db.")] = DEFAULT_DB,
) -> None:
    """Re-crawl a website; existing chunks stay until replacements are stored."""

    async def _recrawl(kb: KnowledgeBase) -> dict[str, Any]:
        return await kb.trigger_recrawl(source_id)

    console.print(f"[bold]Re-crawling {source_id}[/]")
    with reported(source_id):
        result = run_with_kb(db, _recrawl, publisher=ConsoleProgress())
    _report(result)


def _report(result: dict[str, Any]) -> None:
    if result["success"]:
        console.print(f"[green]✓[/] {result['message']}")
        return
    console.print(f"[red]✗[/] {result['message']}")
    raise typer.Exit(1)
