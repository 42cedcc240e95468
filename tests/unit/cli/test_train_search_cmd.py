"""Tests for trawler train and trawler search."""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest
from typer.testing import CliRunner

from trawler.cli.main import app

runner = CliRunner()


@pytest.fixture
def provider(monkeypatch):
    async def aembedding(model, input):
        return SimpleNamespace(
            data=[{"embedding": [0.6, 0.8, 0.0]} for _ in input],
            usage=SimpleNamespace(prompt_tokens=4 * len(input)),
        )

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr("trawler.ingest.embedding_writer.litellm.aembedding", aembedding)
    monkeypatch.setattr(
        "trawler.ingest.embedding_writer.litellm.completion_cost", lambda completion_response: 0.0
    )


def _add_text(content="We open at nine on weekdays."):
    result = runner.invoke(app, ["sources", "add-text", "agent-1", "Hours", "-c", content])
    assert result.exit_code == 0, result.output


def test_train_embeds_pending_chunks(cli_project, provider):
    _add_text()

    result = runner.invoke(app, ["train", "agent-1"])

    assert result.exit_code == 0, result.output
    assert "Trained agent-1" in result.output
    assert "Sources updated:  1" in result.output
    assert "Embedded:  1 chunk(s)" in result.output
    assert "Failed:    0" in result.output


def test_train_without_embeddings(cli_project, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    _add_text()

    result = runner.invoke(app, ["train", "agent-1", "--no-embeddings"])

    assert result.exit_code == 0, result.output
    assert "Embedded:" not in result.output
    assert "ready" in runner.invoke(app, ["sources", "list"]).output


def test_train_without_api_key(cli_project, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    _add_text()

    result = runner.invoke(app, ["train", "agent-1"])

    assert result.exit_code == 1
    assert "No API key for 'openai'" in result.output
    assert "export OPENAI_API_KEY=" in result.output


def test_train_reports_failed_embeddings(cli_project, monkeypatch):
    async def aembedding(model, input):
        raise ConnectionError("provider down")

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr("trawler.ingest.embedding_writer.litellm.aembedding", aembedding)
    (cli_project / "trawler.yaml").write_text(
        "embedding:\n  max_retries: 1\n  retry_delay: 0\n", encoding="utf-8"
    )
    _add_text()

    result = runner.invoke(app, ["train", "agent-1"])

    assert result.exit_code == 1
    assert "1 chunk(s) failed to embed" in result.output


def test_search_json(cli_project, provider):
    _add_text()
    assert runner.invoke(app, ["train", "agent-1"]).exit_code == 0

    result = runner.invoke(app, ["search", "agent-1", "when do you open?", "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["totalResults"] == 1
    hit = payload["results"][0]
    assert hit["content"] == "We open at nine on weekdays."
    assert hit["sourceType"] == "text"
    assert hit["similarity"] == pytest.approx(1.0)


def test_search_table(cli_project, provider):
    _add_text()
    runner.invoke(app, ["train", "agent-1"])

    result = runner.invoke(app, ["search", "agent-1", "opening hours"])

    assert result.exit_code == 0, result.output
    assert "We open at nine on weekdays." in result.output
    assert "1.000" in result.output


def test_search_without_embeddings(cli_project, provider):
    _add_text()

    result = runner.invoke(app, ["search", "agent-1", "opening hours"])

    assert result.exit_code == 0, result.output
    assert "No results above the similarity threshold." in result.output
