"""trawler sources: register, list, remove and restore knowledge sources.

Usage:
  trawler sources add-website agent-1 https://example.com --max-pages 50
  trawler sources add-text agent-1 "Opening hours" --content "Mon-Fri 9-17"
  trawler sources add-qa agent-1 -q "Do you ship abroad?" --answer "Yes, EU only."
  trawler sources add-file agent-1 handbook.pdf
  trawler sources list agent-1
  trawler sources remove <source-id>
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from trawler.cli.runtime import DEFAULT_DB, console, reported, run_with_kb
from trawler.db.models import CrawlPolicy, Source
from trawler.service import KnowledgeBase

sources_app = typer.Typer(help="Manage knowledge sources.", no_args_is_help=True)

_STATUS_STYLE = {
    "pending": "yellow",
    "processing": "cyan",
    "ready": "green",
    "error": "red",
    "critical": "bold red",
    "removed": "dim",
}

DbOption = Annotated[Path, typer.Option("--db", help="Path to .trawler.db.")]


def _print_added(source: Source) -> None:
    console.print(f"[green]✓[/] Added {source.type} source [bold]{source.name}[/]")
    console.print(f"  id: {source.id}  status: {source.status}")


# ---------------------------------------------------------------------------
# Add
# ---------------------------------------------------------------------------


@sources_app.command("add-website")
def add_website_cmd(
    agent: Annotated[str, typer.Argument(help="Agent (knowledge base) id.")],
    url: Annotated[str, typer.Argument(help="Seed URL to crawl.")],
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
    name: Annotated[str | None, typer.Option("--name", help="Display name.")] = None,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Register a website. It stays pending until crawled."""

    async def _add(kb: KnowledgeBase) -> Source:
        policy = CrawlPolicy(
            max_pages=max_pages or kb.config.crawler.default_max_pages,
            crawl_subpages=not no_subpages,
            include_paths=include or [],
            exclude_paths=exclude or [],
            full_page_content=full_page,
        )
        return await kb.add_website(agent, url, policy, name)

    with reported(url=url):
        source = run_with_kb(db, _add)
    _print_added(source)
    console.print(f"  Next:  trawler crawl {source.id}")


@sources_app.command("add-text")
def add_text_cmd(
    agent: Annotated[str, typer.Argument(help="Agent (knowledge base) id.")],
    title: Annotated[str, typer.Argument(help="Title of the text.")],
    content: Annotated[
        str | None, typer.Option("--content", "-c", help="Text content; read from --file if omitted.")
    ] = None,
    file: Annotated[
        Path | None, typer.Option("--file", "-f", help="Read the text from this file.")
    ] = None,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Register free text; it is chunked immediately."""
    if content is None:
        if file is None:
            console.print("[red]Error:[/] Provide --content or --file.")
            raise typer.Exit(1)
        content = file.read_text(encoding="utf-8")

    async def _add(kb: KnowledgeBase) -> Source:
        return kb.add_text(agent, title, content)

    with reported():
        source = run_with_kb(db, _add)
    _print_added(source)


@sources_app.command("add-qa")
def add_qa_cmd(
    agent: Annotated[str, typer.Argument(help="Agent (knowledge base) id.")],
    question: Annotated[
        list[str], typer.Option("--question", "-q", help="Question phrasing (repeatable).")
    ],
    answer: Annotated[str, typer.Option("--answer", "-a", help="The answer.")],
    title: Annotated[str, typer.Option("--title", help="Optional title.")] = "",
    db: DbOption = DEFAULT_DB,
) -> None:
    """Register one question/answer pair as a single chunk."""

    async def _add(kb: KnowledgeBase) -> Source:
        return kb.add_qa(agent, question, answer, title)

    with reported():
        source = run_with_kb(db, _add)
    _print_added(source)


@sources_app.command("add-file")
def add_file_cmd(
    agent: Annotated[str, typer.Argument(help="Agent (knowledge base) id.")],
    path: Annotated[Path, typer.Argument(help="Document to ingest (.pdf, .md, .txt, .html).")],
    db: DbOption = DEFAULT_DB,
) -> None:
    """Register a document file; its text is chunked immediately."""
    if not path.exists():
        console.print(f"[red]Error:[/] File not found: '{path}'")
        raise typer.Exit(1)

    async def _add(kb: KnowledgeBase) -> Source:
        return kb.add_file(agent, path)

    with reported():
        source = run_with_kb(db, _add)
    _print_added(source)


# ---------------------------------------------------------------------------
# Inspect / lifecycle
# ---------------------------------------------------------------------------


@sources_app.command("list")
def list_cmd(
    agent: Annotated[str | None, typer.Argument(help="Only this agent's sources.")] = None,
    status: Annotated[str | None, typer.Option("--status", help="Filter by status.")] = None,
    db: DbOption = DEFAULT_DB,
) -> None:
    """List sources with their status and size."""

    async def _list(kb: KnowledgeBase) -> list[tuple[Source, int]]:
        return [
            (s, kb.repo.count_chunks_by_source(s.id)) for s in kb.list_sources(agent, status)
        ]

    rows = run_with_kb(db, _list)
    if not rows:
        console.print("[dim]No sources.[/]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Agent")
    table.add_column("Type")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")
    table.add_column("Size (KB)", justify="right")
    for source, chunks in rows:
        style = _STATUS_STYLE.get(source.status, "")
        table.add_row(
            source.id,
            source.agent_id,
            source.type,
            source.name,
            f"[{style}]{source.status}[/]" if style else source.status,
            str(chunks),
            f"{source.size / 1024:.1f}",
        )
    console.print(table)


@sources_app.command("show")
def show_cmd(
    source_id: Annotated[str, typer.Argument(help="Source id.")],
    db: DbOption = DEFAULT_DB,
) -> None:
    """Show one source with its metadata."""

    async def _get(kb: KnowledgeBase) -> Source:
        return kb.get_source(source_id)

    with reported(source_id):
        source = run_with_kb(db, _get)
    console.print(f"[bold]{source.name}[/]  ({source.type}, {source.status})")
    console.print(f"  id: {source.id}  agent: {source.agent_id}  size: {source.size} bytes")
    console.print_json(data=source.metadata_dict)


@sources_app.command("remove")
def remove_cmd(
    source_id: Annotated[str, typer.Argument(help="Source id.")],
    db: DbOption = DEFAULT_DB,
) -> None:
    """Mark a source removed; the next train purges it."""

    async def _remove(kb: KnowledgeBase) -> Source:
        return kb.remove_source(source_id)

    with reported(source_id):
        source = run_with_kb(db, _remove)
    console.print(f"[green]✓[/] Removed: {source.name}")
    console.print(f"  Undo with:  trawler sources restore {source.id}  (before the next train)")


@sources_app.command("restore")
def restore_cmd(
    source_id: Annotated[str, typer.Argument(help="Source id.")],
    db: DbOption = DEFAULT_DB,
) -> None:
    """Restore a removed source that has not been purged yet."""

    async def _restore(kb: KnowledgeBase) -> Source:
        return kb.restore_source(source_id)

    with reported(source_id):
        source = run_with_kb(db, _restore)
    console.print(f"[green]✓[/] Restored: {source.name} ({source.status})")


@sources_app.command("acknowledge")
def acknowledge_cmd(
    source_id: Annotated[str, typer.Argument(help="Source id.")],
    db: DbOption = DEFAULT_DB,
) -> None:
    """Clear the critical state of a source so it can be crawled again."""

    async def _ack(kb: KnowledgeBase) -> Source:
        return kb.acknowledge_critical(source_id)

    with reported(source_id):
        source = run_with_kb(db, _ack)
    console.print(f"[green]✓[/] Acknowledged: {source.name} is now {source.status}")
    console.print(f"  Next:  trawler crawl {source.id}")


@sources_app.command("reap")
def reap_cmd(
    max_age: Annotated[
        float | None,
        typer.Option("--max-age", help="Seconds without progress before a crawl counts as stuck."),
    ] = None,
    db: DbOption = DEFAULT_DB,
) -> None:
    """Fail sources stuck in processing."""

    async def _reap(kb: KnowledgeBase) -> list[str]:
        return kb.reap_stuck_sources(max_age)

    reaped = run_with_kb(db, _reap)
    if not reaped:
        console.print("[dim]No stuck sources.[/]")
        return
    for source_id in reaped:
        console.print(f"  [yellow]✗[/] {source_id} marked as error")
    console.print(f"[green]✓[/] Reaped {len(reaped)} source(s).")
