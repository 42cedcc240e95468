"""trawler train: purge removed sources, activate pending ones, embed chunks."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel

from trawler.cli.runtime import DEFAULT_DB, console, reported, run_with_kb
from trawler.service import KnowledgeBase, TrainSummary


def train_cmd(
    agent: Annotated[str, typer.Argument(help="Agent (knowledge base) id.")],
    no_embeddings: Annotated[
        bool,
        typer.Option("--no-embeddings", help="Update source states only; skip embedding."),
    ] = False,
    db: Annotated[Path, typer.Option("--db", help="Path to .trawler.db.")] = DEFAULT_DB,
) -> None:
    """Train an agent: make its sources searchable."""

    async def _train(kb: KnowledgeBase) -> TrainSummary:
        return await kb.train(agent, generate_embeddings=not no_embeddings)

    with reported():
        summary = run_with_kb(db, _train)

    emb = summary.embeddings
    lines = [
        f"Sources updated:  {summary.sources_updated}",
        f"Sources purged:   {summary.sources_purged}",
        f"Total sources:    {summary.total_sources}  ({summary.total_size_kb} KB)",
    ]
    if not no_embeddings:
        lines += [
            "",
            f"Embedded:  {emb.total_processed} chunk(s) with {emb.model}",
            f"Failed:    {emb.total_failed}",
            f"Tokens:    {emb.total_tokens:,}  (${emb.total_cost:.4f})",
        ]
    console.print(Panel("\n".join(lines), title=f"[bold]Trained {agent}[/]", expand=False))

    if emb.total_failed:
        console.print(
            f"[yellow]⚠[/] {emb.total_failed} chunk(s) failed to embed; "
            f"run  trawler train {agent}  again to retry them."
        )
        raise typer.Exit(1)
