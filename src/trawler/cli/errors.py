"""Trawler rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from trawler.cli.errors import err_no_db
    console.print(err_no_db(str(db)))
    raise typer.Exit(1)
"""

from __future__ import annotations

from trawler.errors import (
    CriticalStateError,
    MissingApiKeyError,
    PolicyError,
    SourceBusyError,
    SourceNotFoundError,
    SourceStateError,
    SsrfError,
    TrawlerError,
    UrlValidationError,
)


def err_no_db(db_path: str = ".trawler.db") -> str:
    """No .trawler.db found at the given path."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  trawler init"
    )


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "cohere": "COHERE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "azure": "AZURE_API_KEY",
        "voyage": "VOYAGE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_ssrf_blocked(url: str) -> str:
    """URL resolves to a private/reserved address."""
    return (
        f"[red]Error:[/] URL resolves to private address (SSRF protection): '{url}'\n"
        "  Use a publicly reachable URL."
    )


def err_invalid_url(detail: str) -> str:
    return (
        f"[red]Error:[/] {detail}\n"
        "  Use an absolute http:// or https:// URL, e.g. https://example.com/docs"
    )


def err_source_not_found(source_id: str) -> str:
    """Source id not found in database."""
    return (
        f"[yellow]Source not found:[/] '{source_id}' is not in the knowledge base.\n"
        "  Run:  trawler sources list  to see all sources."
    )


def err_source_busy(detail: str) -> str:
    return (
        f"[red]Error:[/] {detail}\n"
        "  Wait for the running crawl to finish, or run:  trawler sources reap"
    )


def err_source_state(detail: str) -> str:
    return (
        f"[red]Error:[/] {detail}\n"
        "  Run:  trawler sources list  to check the source status."
    )


def err_critical(detail: str, source_id: str = "<id>") -> str:
    """Source lost its content in a failed re-crawl."""
    return (
        f"[red]Critical:[/] {detail}\n"
        "  Inspect the source, then run:\n"
        f"    trawler sources acknowledge {source_id}\n"
        f"    trawler crawl {source_id}"
    )


def err_policy(detail: str) -> str:
    return f"[red]Error:[/] {detail}"


def err_config(detail: str) -> str:
    """trawler.yaml or the global config is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration: {detail}\n"
        "  Fix trawler.yaml (or ~/.trawler/config.yaml) and retry."
    )


def explain(exc: TrawlerError, source_id: str = "<id>", url: str | None = None) -> str:
    """Map a domain error to the matching actionable message."""
    if isinstance(exc, SsrfError):
        if url:
            return err_ssrf_blocked(url)
        return f"[red]Error:[/] {exc}\n  Use a publicly reachable URL."
    if isinstance(exc, UrlValidationError):
        return err_invalid_url(str(exc))
    if isinstance(exc, SourceNotFoundError):
        return err_source_not_found(source_id)
    if isinstance(exc, SourceBusyError):
        return err_source_busy(str(exc))
    if isinstance(exc, SourceStateError):
        return err_source_state(str(exc))
    if isinstance(exc, CriticalStateError):
        return err_critical(str(exc), source_id)
    if isinstance(exc, MissingApiKeyError):
        return err_no_api_key(exc.provider)
    if isinstance(exc, PolicyError):
        return err_policy(str(exc))
    return f"[red]Error:[/] {exc}"
