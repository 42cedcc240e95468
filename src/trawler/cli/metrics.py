"""trawler metrics: pool, cache, queue and crawl health at a glance."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.panel import Panel
from rich.table import Table

from trawler.cli.runtime import DEFAULT_DB, console, run_with_kb
from trawler.service import KnowledgeBase

_HEALTH_STYLE = {
    "healthy": "green",
    "busy": "cyan",
    "degraded": "yellow",
    "critical": "bold red",
}


def metrics_cmd(
    as_json: Annotated[bool, typer.Option("--json", help="Print the raw JSON document.")] = False,
    db: Annotated[Path, typer.Option("--db", help="Path to .trawler.db.")] = DEFAULT_DB,
) -> None:
    """Show operational metrics and the derived health status."""

    async def _collect(kb: KnowledgeBase) -> dict[str, Any]:
        return await kb.metrics()

    doc = run_with_kb(db, _collect)
    if as_json:
        typer.echo(json.dumps(doc, indent=2))
        return

    health = doc["health"]
    style = _HEALTH_STYLE.get(health["status"], "")
    pool = doc["crawler"]["browser_pool"]
    cache = doc["crawler"]["cache"]
    queue = doc["crawler"]["queue"]
    perf = doc["performance"]

    table = Table(show_header=False, box=None)
    table.add_column(style="dim")
    table.add_column()
    table.add_row("Memory", f"{doc['system']['memory_percent']:.0f}%  (RSS {doc['system']['rss_mb']} MB)")
    table.add_row("Browsers", f"{pool['browsers']}/{pool['max_browsers']}")
    lookups = cache["hits"] + cache["misses"]
    hit_rate = cache["hits"] / lookups if lookups else 0.0
    table.add_row(
        "Cache",
        f"{cache['entries_in_memory']}/{cache['max_entries']} entries, hit rate {hit_rate:.0%}",
    )
    table.add_row(
        "Queue",
        f"{queue['mode']}  waiting {queue['waiting']}  active {queue['active']}  "
        f"failed {queue['failed']}",
    )
    table.add_row("Active crawls", str(perf["active_crawls"]))
    table.add_row("Chunks", f"{perf['total_chunks']:,}")
    table.add_row("Sources", f"critical {doc['sources']['critical']}  stuck {doc['sources']['stuck']}")
    console.print(
        Panel(table, title=f"[bold]Health: [{style}]{health['status']}[/][/]", expand=False)
    )
    for warning in health["warnings"]:
        console.print(f"[yellow]⚠[/] {warning}")
