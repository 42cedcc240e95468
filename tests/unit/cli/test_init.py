"""Tests for trawler init."""

from __future__ import annotations

import stat

import yaml
from typer.testing import CliRunner

from trawler.cli.main import app
from trawler.db.connection import Database
from trawler.db.schema import CURRENT_VERSION

runner = CliRunner()


def _init(project, global_cfg):
    return runner.invoke(app, ["init", str(project), "--global-config", str(global_cfg)])


def test_init_creates_project(tmp_path):
    project = tmp_path / "kb"
    global_cfg = tmp_path / "home" / "config.yaml"
    result = _init(project, global_cfg)

    assert result.exit_code == 0, result.output
    assert "initialized" in result.output
    assert (project / ".trawler.db").exists()
    assert yaml.safe_load((project / "trawler.yaml").read_text())["queue"]["redis_url"] == ""
    assert ".trawler.db" in (project / ".gitignore").read_text().splitlines()
    assert stat.S_IMODE(global_cfg.stat().st_mode) == 0o600

    conn = Database(project / ".trawler.db").connect()
    assert conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0] == CURRENT_VERSION
    conn.close()


def test_init_is_idempotent(tmp_path):
    project = tmp_path / "kb"
    global_cfg = tmp_path / "home" / "config.yaml"
    project.mkdir()
    (project / "trawler.yaml").write_text("retrieval:\n  limit: 9\n")
    (project / ".gitignore").write_text("node_modules")

    assert _init(project, global_cfg).exit_code == 0
    result = _init(project, global_cfg)

    assert result.exit_code == 0
    assert "already" in result.output
    assert (project / "trawler.yaml").read_text() == "retrieval:\n  limit: 9\n"
    assert (project / ".gitignore").read_text() == "node_modules\n.trawler.db\n"
