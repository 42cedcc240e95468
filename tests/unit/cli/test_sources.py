"""Tests for trawler sources."""

from __future__ import annotations

import re

from typer.testing import CliRunner

from trawler.cli.main import app
from trawler.crawl.urls import normalize_url
from trawler.errors import SsrfError

runner = CliRunner()


def _source_id(output: str) -> str:
    match = re.search(r"id: ([0-9a-f-]{36})", output)
    assert match, output
    return match.group(1)


def _add_text(title="Hours", content="We open at nine."):
    return runner.invoke(app, ["sources", "add-text", "agent-1", title, "--content", content])


def test_add_text_and_list(cli_project):
    result = _add_text()
    assert result.exit_code == 0, result.output
    assert "Added text source" in result.output
    source_id = _source_id(result.output)

    listing = runner.invoke(app, ["sources", "list", "agent-1"])
    assert listing.exit_code == 0, listing.output
    assert source_id in listing.output
    assert "pending" in listing.output


def test_add_text_from_file(cli_project):
    notes = cli_project / "notes.txt"
    notes.write_text("Closed on Sundays.", encoding="utf-8")
    result = runner.invoke(app, ["sources", "add-text", "agent-1", "Notes", "--file", str(notes)])
    assert result.exit_code == 0, result.output


def test_add_text_needs_content(cli_project):
    result = runner.invoke(app, ["sources", "add-text", "agent-1", "Empty"])
    assert result.exit_code == 1
    assert "Provide --content or --file" in result.output


def test_add_qa_and_show(cli_project):
    result = runner.invoke(
        app,
        [
            "sources", "add-qa", "agent-1",
            "-q", "Do you ship abroad?", "-q", "International shipping?",
            "--answer", "Yes, EU only.",
        ],
    )
    assert result.exit_code == 0, result.output
    source_id = _source_id(result.output)

    shown = runner.invoke(app, ["sources", "show", source_id])
    assert shown.exit_code == 0, shown.output
    assert "(qa, pending)" in shown.output
    assert "International shipping?" in shown.output


def test_add_file(cli_project):
    doc = cli_project / "guide.md"
    doc.write_text("# Returns\n\nWithin 30 days.", encoding="utf-8")
    result = runner.invoke(app, ["sources", "add-file", "agent-1", str(doc)])
    assert result.exit_code == 0, result.output
    assert "Added file source guide.md" in result.output


def test_add_file_missing(cli_project):
    result = runner.invoke(app, ["sources", "add-file", "agent-1", "nope.pdf"])
    assert result.exit_code == 1
    assert "File not found" in result.output


def test_add_website(cli_project, monkeypatch):
    monkeypatch.setattr("trawler.service.validate_crawl_url", normalize_url)
    result = runner.invoke(
        app, ["sources", "add-website", "agent-1", "https://example.com", "--max-pages", "5"]
    )
    assert result.exit_code == 0, result.output
    source_id = _source_id(result.output)
    assert f"trawler crawl {source_id}" in result.output


def test_add_website_blocked(cli_project, monkeypatch):
    def refuse(url):
        raise SsrfError("URL resolves to private address (10.0.0.1).")

    monkeypatch.setattr("trawler.service.validate_crawl_url", refuse)
    result = runner.invoke(app, ["sources", "add-website", "agent-1", "http://intranet.local"])
    assert result.exit_code == 1
    assert "SSRF" in result.output


def test_remove_and_restore(cli_project):
    source_id = _source_id(_add_text().output)

    removed = runner.invoke(app, ["sources", "remove", source_id])
    assert removed.exit_code == 0, removed.output
    assert "Removed: Hours" in removed.output

    listing = runner.invoke(app, ["sources", "list", "--status", "removed"])
    assert source_id in listing.output

    restored = runner.invoke(app, ["sources", "restore", source_id])
    assert restored.exit_code == 0, restored.output
    assert "Restored: Hours (ready)" in restored.output


def test_remove_unknown(cli_project):
    result = runner.invoke(app, ["sources", "remove", "missing-id"])
    assert result.exit_code == 1
    assert "trawler sources list" in result.output


def test_acknowledge_requires_critical(cli_project):
    source_id = _source_id(_add_text().output)
    result = runner.invoke(app, ["sources", "acknowledge", source_id])
    assert result.exit_code == 1


def test_list_empty(cli_project):
    result = runner.invoke(app, ["sources", "list"])
    assert result.exit_code == 0
    assert "No sources." in result.output


def test_reap_nothing_stuck(cli_project):
    result = runner.invoke(app, ["sources", "reap"])
    assert result.exit_code == 0
    assert "No stuck sources." in result.output


def test_missing_database(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["sources", "list"])
    assert result.exit_code == 1
    assert "No database found" in result.output
