"""Trawler CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from trawler.cli.crawl import crawl_cmd, recrawl_cmd
from trawler.cli.init import init_cmd
from trawler.cli.metrics import metrics_cmd
from trawler.cli.search import search_cmd
from trawler.cli.sources import sources_app
from trawler.cli.train import train_cmd
from trawler.cli.worker import worker_cmd


def _version_callback(value: bool) -> None:
    if value:
        try:
            ver = importlib.metadata.version("trawler")
        except importlib.metadata.PackageNotFoundError:
            ver = "dev"
        typer.echo(f"trawler {ver}")
        raise typer.Exit()


app = typer.Typer(
    name="trawler",
    help=(
        "Trawler: crawl, chunk, embed and search knowledge-base sources.\n\n"
        "  trawler crawl   Crawl a website source (inline, or via the arq worker).\n"
        "  trawler train   Embed pending chunks so an agent's sources are searchable."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Trawler: crawl, chunk, embed and search knowledge-base sources."""


app.command("init")(init_cmd)
app.command("crawl")(crawl_cmd)
app.command("recrawl")(recrawl_cmd)
app.command("train")(train_cmd)
app.command("search")(search_cmd)
app.command("metrics")(metrics_cmd)
app.command("worker")(worker_cmd)
app.add_typer(sources_app, name="sources")


@app.command("version")
def version_cmd() -> None:
    """Show the installed Trawler version."""
    try:
        ver = importlib.metadata.version("trawler")
    except importlib.metadata.PackageNotFoundError:
        ver = "dev"
    typer.echo(f"trawler {ver}")


if __name__ == "__main__":
    app()
