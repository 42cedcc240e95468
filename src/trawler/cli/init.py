"""trawler init: create a knowledge base in a project directory.

Creates:
  .trawler.db              empty knowledge base with schema
  trawler.yaml             project config with the defaults spelled out
  .gitignore               ignores .trawler.db
  ~/.trawler/config.yaml   global defaults (created once, mode 0o600)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from trawler.config import ensure_global_config
from trawler.db.connection import Database
from trawler.db.schema import initialize

console = Console()

_DEFAULT_PROJECT_DIR = Path(".")

_PROJECT_YAML = """\
# Trawler project configuration. API keys come from the environment only.

embedding:
  model: openai/text-embedding-3-small
  batch_size: 20

retrieval:
  limit: 5
  similarity_threshold: 0.7

crawler:
  default_max_pages: 200
  max_pages_ceiling: 1000
  domain_delay: 1.0

pool:
  max_browsers: 3
  max_contexts_per_browser: 5

queue:
  # Leave empty to run jobs inline; set to use an arq worker.
  redis_url: ""

logging:
  level: INFO
  json: false
"""


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
    global_config: Annotated[
        Path | None,
        typer.Option("--global-config", hidden=True, help="Override global config path (for testing)."),
    ] = None,
) -> None:
    """Initialize a new Trawler knowledge base."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    db_path = project_dir / ".trawler.db"
    if db_path.exists():
        console.print(f"[yellow]⚠[/]  {db_path} already exists; schema checked, data preserved.")

    _create_database(db_path)
    _create_project_yaml(project_dir)
    _update_gitignore(project_dir)

    cfg_path = ensure_global_config(global_config)
    console.print(f"  [green]✓[/] {cfg_path} (global config)")

    console.print(f"\n[bold green]✓ Knowledge base initialized in {project_dir}.[/]")
    console.print("\nNext steps:")
    console.print("  1. trawler sources add-website <agent> <url>   (register a site)")
    console.print("  2. trawler crawl <source-id>                   (crawl it)")
    console.print("  3. trawler train <agent>                       (embed chunks)")
    console.print("  4. trawler search <agent> \"question\"           (query)")


def _create_database(db_path: Path) -> None:
    conn = Database(db_path).connect()
    initialize(conn)
    conn.close()
    console.print(f"  [green]✓[/] {db_path.name}")


def _create_project_yaml(project_dir: Path) -> None:
    target = project_dir / "trawler.yaml"
    if target.exists():
        console.print("  [dim]-[/] trawler.yaml (kept)")
        return
    target.write_text(_PROJECT_YAML, encoding="utf-8")
    console.print("  [green]✓[/] trawler.yaml")


def _update_gitignore(project_dir: Path) -> None:
    gitignore = project_dir / ".gitignore"
    existing = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
    lines = existing.splitlines()
    missing = [entry for entry in (".trawler.db",) if entry not in lines]
    if not missing:
        return
    prefix = "" if not existing or existing.endswith("\n") else "\n"
    gitignore.write_text(existing + prefix + "\n".join(missing) + "\n", encoding="utf-8")
    console.print("  [green]✓[/] .gitignore")
