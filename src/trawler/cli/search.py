"""trawler search: semantic search over one agent's chunks."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.table import Table

from trawler.cli.runtime import DEFAULT_DB, console, reported, run_with_kb
from trawler.service import KnowledgeBase

_PREVIEW_CHARS = 160


def search_cmd(
    agent: Annotated[str, typer.Argument(help="Agent (knowledge base) id.")],
    query: Annotated[str, typer.Argument(help="Natural-language query.")],
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="Max results (1-100).")] = None,
    threshold: Annotated[
        float | None, typer.Option("--threshold", help="Minimum cosine similarity (0-1).")
    ] = None,
    source_type: Annotated[
        list[str] | None,
        typer.Option("--type", help="Only these source types (repeatable)."),
    ] = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print the raw JSON payload.")] = False,
    db: Annotated[Path, typer.Option("--db", help="Path to .trawler.db.")] = DEFAULT_DB,
) -> None:
    """Find the chunks most similar to a query."""

    async def _search(kb: KnowledgeBase) -> dict[str, Any]:
        return await kb.search(agent, query, limit, threshold, source_type)

    with reported():
        payload = run_with_kb(db, _search)

    if as_json:
        typer.echo(json.dumps(payload, indent=2))
        return

    if not payload["totalResults"]:
        console.print("[dim]No results above the similarity threshold.[/]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Score", justify="right")
    table.add_column("Type")
    table.add_column("Where")
    table.add_column("Content")
    for hit in payload["results"]:
        meta = hit["metadata"]
        where = meta.get("url") or meta.get("filename") or meta.get("title") or hit["sourceId"]
        preview = " ".join(hit["content"].split())
        if len(preview) > _PREVIEW_CHARS:
            preview = preview[:_PREVIEW_CHARS] + "…"
        table.add_row(f"{hit['similarity']:.3f}", hit["sourceType"], where, preview)
    console.print(table)
