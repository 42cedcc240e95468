"""trawler worker: run the arq worker that executes queued jobs."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated

import typer

from trawler.cli.runtime import DEFAULT_DB, console, load_cli_config, require_db


def worker_cmd(
    db: Annotated[Path, typer.Option("--db", help="Path to .trawler.db.")] = DEFAULT_DB,
    burst: Annotated[
        bool, typer.Option("--burst", help="Exit once the queue is empty.")
    ] = False,
) -> None:
    """Run the background worker (requires queue.redis_url)."""
    require_db(db)
    cfg = load_cli_config()
    if not cfg.queue.redis_url:
        console.print(
            "[red]Error:[/] No Redis URL configured; there is no queue to work on.\n"
            "  Set queue.redis_url in trawler.yaml or export TRAWLER_REDIS_URL=redis://..."
        )
        raise typer.Exit(1)

    # The worker module reads its settings at import time.
    os.environ["TRAWLER_DB"] = str(db.resolve())
    os.environ["TRAWLER_PROJECT_DIR"] = str(Path.cwd())
    from arq.worker import run_worker

    from trawler.queue import worker

    console.print(f"[bold]Trawler worker[/] on {cfg.queue.redis_url} ({cfg.queue.queue_name})")
    run_worker(worker.WorkerSettings, burst=burst)
