"""Trawler configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site; not in this module)
  2. Environment variables  (TRAWLER_EMBEDDING_MODEL, TRAWLER_REDIS_URL / REDIS_URL,
                             TRAWLER_LOG_LEVEL)
  3. Per-project trawler.yaml  (next to .trawler.db)
  4. Global ~/.trawler/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import dataclasses
import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".trawler"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "trawler.yaml"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate keys like max_tokens or redis_url.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "retrieval", "chunkers", "crawler", "pool", "cache", "queue", "logging"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding provider configuration (trawler.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 20
    max_retries: int = 3
    retry_delay: float = 1.0
    batch_delay: float = 0.5


@dataclass
class RetrievalCfg:
    """Vector search defaults (trawler.yaml: retrieval:)."""

    limit: int = 5
    similarity_threshold: float = 0.7


@dataclass
class ChunkerTypeCfg:
    """Chunk size (characters) and overlap (fraction) for one chunker type."""

    chunk_size: int = 8000
    overlap: float = 0.05


@dataclass
class ChunkersCfg:
    """Per-type chunker configuration (trawler.yaml: chunkers:)."""

    default: ChunkerTypeCfg = field(default_factory=ChunkerTypeCfg)
    text: ChunkerTypeCfg = field(default_factory=ChunkerTypeCfg)
    markdown: ChunkerTypeCfg = field(default_factory=ChunkerTypeCfg)
    pdf: ChunkerTypeCfg = field(default_factory=ChunkerTypeCfg)
    website: ChunkerTypeCfg = field(default_factory=ChunkerTypeCfg)


@dataclass
class CrawlerCfg:
    """Crawl orchestration limits (trawler.yaml: crawler:).

    Attributes:
        default_max_pages: Page budget used when a policy does not set one.
        max_pages_ceiling: Hard system cap; policies are clamped to it.
        domain_delay: Seconds between two fetches of the same host.
        browser_fallback_chars: Extracted HTTP content at or below this size
            is re-fetched through a browser render.
        max_content_chars: Per-page extracted text cap.
        request_timeout: Seconds for an HTTP fetch or a browser navigation.
        stuck_after: Seconds after which a ``processing`` source is reaped.
    """

    default_max_pages: int = 200
    max_pages_ceiling: int = 1000
    domain_delay: float = 1.0
    browser_fallback_chars: int = 500
    max_content_chars: int = 50_000
    request_timeout: float = 30.0
    stuck_after: int = 1800


@dataclass
class PoolCfg:
    """Browser pool ceilings (trawler.yaml: pool:)."""

    max_browsers: int = 3
    max_contexts_per_browser: int = 5
    acquire_timeout: float = 30.0
    idle_timeout: float = 300.0
    cleanup_interval: float = 30.0
    min_browsers: int = 1
    headless: bool = True


@dataclass
class CacheCfg:
    """Crawl cache bounds (trawler.yaml: cache:)."""

    ttl: float = 3600.0
    max_entries: int = 100


@dataclass
class QueueCfg:
    """Job queue settings (trawler.yaml: queue:).

    An empty ``redis_url`` selects inline execution.
    """

    redis_url: str = ""
    queue_name: str = "trawler:jobs"
    max_tries: int = 3
    max_jobs: int = 2
    job_timeout: int = 1800
    retry_backoff: float = 2.0


@dataclass
class LoggingCfg:
    """Log output (trawler.yaml: logging:)."""

    level: str = "INFO"
    json: bool = False


@dataclass
class TrawlerConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    chunkers: ChunkersCfg = field(default_factory=ChunkersCfg)
    crawler: CrawlerCfg = field(default_factory=CrawlerCfg)
    pool: PoolCfg = field(default_factory=PoolCfg)
    cache: CacheCfg = field(default_factory=CacheCfg)
    queue: QueueCfg = field(default_factory=QueueCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: TrawlerConfig) -> None:
    """Raise ConfigError for values no component can work with."""
    positive = {
        "embedding.batch_size": cfg.embedding.batch_size,
        "embedding.max_retries": cfg.embedding.max_retries,
        "embedding.dimensions": cfg.embedding.dimensions,
        "retrieval.limit": cfg.retrieval.limit,
        "crawler.default_max_pages": cfg.crawler.default_max_pages,
        "crawler.max_pages_ceiling": cfg.crawler.max_pages_ceiling,
        "pool.max_browsers": cfg.pool.max_browsers,
        "pool.max_contexts_per_browser": cfg.pool.max_contexts_per_browser,
        "cache.max_entries": cfg.cache.max_entries,
        "queue.max_tries": cfg.queue.max_tries,
        "queue.max_jobs": cfg.queue.max_jobs,
    }
    for name, value in positive.items():
        if value < 1:
            raise ConfigError(f"{name} must be >= 1, got {value}")
    if not 0.0 <= cfg.retrieval.similarity_threshold <= 1.0:
        raise ConfigError(
            "retrieval.similarity_threshold must be in [0.0, 1.0], "
            f"got {cfg.retrieval.similarity_threshold}"
        )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _coerce(value: Any, default: Any) -> Any:
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value)


def _parse_section(raw: dict[str, Any] | None, defaults: Any) -> Any:
    """Return a copy of the dataclass *defaults* with values from *raw* applied."""
    if not raw:
        return defaults
    if not isinstance(raw, dict):
        raise ConfigError(f"Expected a mapping for {type(defaults).__name__}, got {raw!r}")
    values: dict[str, Any] = {}
    for f in dataclasses.fields(defaults):
        if f.name in raw:
            try:
                values[f.name] = _coerce(raw[f.name], getattr(defaults, f.name))
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"Invalid value for '{f.name}': {raw[f.name]!r}") from exc
    return dataclasses.replace(defaults, **values)


def _cfg_from_dict(data: dict[str, Any]) -> TrawlerConfig:
    """Build a *TrawlerConfig* from a merged raw YAML dict."""
    cfg = TrawlerConfig()

    cfg.embedding = _parse_section(data.get("embedding"), cfg.embedding)
    cfg.retrieval = _parse_section(data.get("retrieval"), cfg.retrieval)
    cfg.crawler = _parse_section(data.get("crawler"), cfg.crawler)
    cfg.pool = _parse_section(data.get("pool"), cfg.pool)
    cfg.cache = _parse_section(data.get("cache"), cfg.cache)
    cfg.queue = _parse_section(data.get("queue"), cfg.queue)
    cfg.logging = _parse_section(data.get("logging"), cfg.logging)

    if "chunkers" in data:
        ch = data["chunkers"] or {}
        # Unset per-type entries inherit the default entry.
        default = _parse_section(ch.get("default"), cfg.chunkers.default)
        cfg.chunkers = ChunkersCfg(
            default=default,
            text=_parse_section(ch.get("text"), default),
            markdown=_parse_section(ch.get("markdown"), default),
            pdf=_parse_section(ch.get("pdf"), default),
            website=_parse_section(ch.get("website"), default),
        )

    return cfg


def _apply_env_overrides(cfg: TrawlerConfig) -> TrawlerConfig:
    """Apply TRAWLER_* environment variable overrides."""
    if model := os.environ.get("TRAWLER_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    redis_url = os.environ.get("TRAWLER_REDIS_URL") or os.environ.get("REDIS_URL")
    if redis_url:
        cfg.queue.redis_url = redis_url
    if level := os.environ.get("TRAWLER_LOG_LEVEL"):
        cfg.logging.level = level.upper()
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> TrawlerConfig:
    """Load and return a merged *TrawlerConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *trawler.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.trawler/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# Trawler global configuration: defaults only.\n"
            "# NEVER store API keys here; use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "\n"
            "retrieval:\n"
            "  limit: 5\n"
            "  similarity_threshold: 0.7\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
