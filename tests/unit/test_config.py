"""Tests for the trawler config loader."""

from __future__ import annotations

import stat
from pathlib import Path

import pytest
import yaml

from trawler.config import ConfigError, TrawlerConfig, ensure_global_config, load_config


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.write_text(yaml.dump(data), encoding="utf-8")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("TRAWLER_EMBEDDING_MODEL", "TRAWLER_REDIS_URL", "REDIS_URL", "TRAWLER_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def no_global(tmp_path: Path) -> Path:
    return tmp_path / "nonexistent" / "config.yaml"


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def test_load_config_defaults_no_files(tmp_path: Path, no_global: Path) -> None:
    cfg = load_config(project_dir=tmp_path, global_config_path=no_global)

    assert cfg.embedding.model == "openai/text-embedding-3-small"
    assert cfg.embedding.batch_size == 20
    assert cfg.retrieval.limit == 5
    assert cfg.retrieval.similarity_threshold == pytest.approx(0.7)
    assert cfg.crawler.max_pages_ceiling == 1000
    assert cfg.pool.max_browsers == 3
    assert cfg.pool.max_contexts_per_browser == 5
    assert cfg.cache.ttl == pytest.approx(3600.0)
    assert cfg.queue.redis_url == ""
    assert cfg.logging.level == "INFO"


def test_default_dataclass_matches_loader(tmp_path: Path, no_global: Path) -> None:
    assert load_config(project_dir=tmp_path, global_config_path=no_global) == TrawlerConfig()


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_global_overrides_defaults(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"retrieval": {"limit": 12}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.retrieval.limit == 12
    assert cfg.retrieval.similarity_threshold == pytest.approx(0.7)


def test_project_overrides_global(tmp_path: Path) -> None:
    global_cfg = tmp_path / "global.yaml"
    _write_yaml(global_cfg, {"crawler": {"domain_delay": 2.5, "default_max_pages": 50}})
    _write_yaml(tmp_path / "trawler.yaml", {"crawler": {"domain_delay": 0.2}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.crawler.domain_delay == pytest.approx(0.2)
    assert cfg.crawler.default_max_pages == 50  # global value preserved


def test_empty_global_file_gives_defaults(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    global_cfg.write_text("# nothing here\n", encoding="utf-8")

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.embedding.model == "openai/text-embedding-3-small"


def test_chunker_types_inherit_default(tmp_path: Path, no_global: Path) -> None:
    _write_yaml(
        tmp_path / "trawler.yaml",
        {"chunkers": {"default": {"chunk_size": 2000}, "website": {"overlap": 0.1}}},
    )

    cfg = load_config(project_dir=tmp_path, global_config_path=no_global)
    assert cfg.chunkers.text.chunk_size == 2000
    assert cfg.chunkers.website.chunk_size == 2000
    assert cfg.chunkers.website.overlap == pytest.approx(0.1)


def test_bool_values_coerced(tmp_path: Path, no_global: Path) -> None:
    _write_yaml(tmp_path / "trawler.yaml", {"pool": {"headless": "no"}, "logging": {"json": "yes"}})

    cfg = load_config(project_dir=tmp_path, global_config_path=no_global)
    assert cfg.pool.headless is False
    assert cfg.logging.json is True


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


def test_env_overrides_project(tmp_path: Path, no_global: Path, monkeypatch) -> None:
    _write_yaml(tmp_path / "trawler.yaml", {"embedding": {"model": "openai/text-embedding-3-large"}})
    monkeypatch.setenv("TRAWLER_EMBEDDING_MODEL", "cohere/embed-english-v3.0")
    monkeypatch.setenv("TRAWLER_LOG_LEVEL", "debug")

    cfg = load_config(project_dir=tmp_path, global_config_path=no_global)
    assert cfg.embedding.model == "cohere/embed-english-v3.0"
    assert cfg.logging.level == "DEBUG"


def test_redis_url_env_fallback(tmp_path: Path, no_global: Path, monkeypatch) -> None:
    monkeypatch.setenv("REDIS_URL", "redis://fallback:6379/0")
    assert load_config(tmp_path, global_config_path=no_global).queue.redis_url == (
        "redis://fallback:6379/0"
    )

    monkeypatch.setenv("TRAWLER_REDIS_URL", "redis://primary:6379/1")
    assert load_config(tmp_path, global_config_path=no_global).queue.redis_url == (
        "redis://primary:6379/1"
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("key", ["api_key", "openai_api_key", "token", "password"])
def test_api_key_in_global_rejected(tmp_path: Path, key: str) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"embedding": {key: "sk-secret"}})

    with pytest.raises(ConfigError, match="forbidden key"):
        load_config(project_dir=tmp_path, global_config_path=global_cfg)


def test_max_tokens_like_keys_allowed(tmp_path: Path) -> None:
    global_cfg = tmp_path / "config.yaml"
    _write_yaml(global_cfg, {"queue": {"redis_url": "redis://localhost:6379/0"}})

    cfg = load_config(project_dir=tmp_path, global_config_path=global_cfg)
    assert cfg.queue.redis_url == "redis://localhost:6379/0"


def test_unknown_section_warns(tmp_path: Path, no_global: Path) -> None:
    _write_yaml(tmp_path / "trawler.yaml", {"billing": {"plan": "pro"}})

    with pytest.warns(UserWarning, match="billing"):
        load_config(project_dir=tmp_path, global_config_path=no_global)


@pytest.mark.parametrize(
    "data",
    [
        {"embedding": {"batch_size": 0}},
        {"pool": {"max_browsers": 0}},
        {"retrieval": {"similarity_threshold": 1.5}},
    ],
)
def test_out_of_range_values_rejected(tmp_path: Path, no_global: Path, data: dict) -> None:
    _write_yaml(tmp_path / "trawler.yaml", data)

    with pytest.raises(ConfigError):
        load_config(project_dir=tmp_path, global_config_path=no_global)


def test_non_numeric_value_rejected(tmp_path: Path, no_global: Path) -> None:
    _write_yaml(tmp_path / "trawler.yaml", {"cache": {"ttl": "an hour"}})

    with pytest.raises(ConfigError, match="ttl"):
        load_config(project_dir=tmp_path, global_config_path=no_global)


# ---------------------------------------------------------------------------
# ensure_global_config
# ---------------------------------------------------------------------------


def test_ensure_global_config_creates_private_file(tmp_path: Path) -> None:
    target = tmp_path / ".trawler" / "config.yaml"
    path = ensure_global_config(target)

    assert path == target
    assert target.exists()
    assert stat.S_IMODE(target.stat().st_mode) == 0o600
    assert stat.S_IMODE(target.parent.stat().st_mode) == 0o700
    # The generated file must itself load cleanly.
    cfg = load_config(project_dir=tmp_path, global_config_path=target)
    assert cfg.retrieval.limit == 5


def test_ensure_global_config_keeps_existing(tmp_path: Path) -> None:
    target = tmp_path / "config.yaml"
    target.write_text("retrieval:\n  limit: 9\n", encoding="utf-8")

    ensure_global_config(target)
    assert "limit: 9" in target.read_text(encoding="utf-8")
