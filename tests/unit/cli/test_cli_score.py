"""Tests for contextkit score and config commands."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from contextkit.cli.main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("contextkit.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    monkeypatch.delenv("CONTEXTKIT_LOG_LEVEL", raising=False)
    monkeypatch.delenv("CONTEXTKIT_RPC_TIMEOUT", raising=False)


# ---------------------------------------------------------------------------
# contextkit score
# ---------------------------------------------------------------------------


def test_score_defaults():
    result = runner.invoke(app, ["score"])

    assert result.exit_code == 0, result.output
    assert "Priority: 0.150" in result.output
    assert "below threshold" in result.output
    assert "Recently accessed" in result.output


def test_score_high_priority_document():
    result = runner.invoke(
        app,
        [
            "score",
            "--access-count", "99",
            "--relevance", "1.0",
            "--embedded",
            "--preference", "1.0",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Priority: 1.000" in result.output
    assert "cache" in result.output
    assert "High context relevance" in result.output


def test_score_lists_every_factor():
    result = runner.invoke(app, ["score", "--days-since-access", "30"])

    for factor in (
        "access_frequency",
        "recency",
        "context_relevance",
        "embedding_status",
        "file_size",
        "user_preference",
    ):
        assert factor in result.output


def test_score_rejects_negative_values():
    result = runner.invoke(app, ["score", "--access-count=-3"])
    assert result.exit_code == 1
    assert "--access-count must not be negative" in result.output


def test_score_threshold_from_config(tmp_path: Path):
    (tmp_path / "contextkit.yaml").write_text("cache:\n  priority_threshold: 0.1\n", encoding="utf-8")

    result = runner.invoke(app, ["score"])

    assert "threshold 0.10" in result.output
    assert "below threshold" not in result.output


# ---------------------------------------------------------------------------
# contextkit config
# ---------------------------------------------------------------------------


def test_config_prints_effective_values(tmp_path: Path):
    (tmp_path / "contextkit.yaml").write_text("session:\n  max_documents: 4\n", encoding="utf-8")

    result = runner.invoke(app, ["config"])

    assert result.exit_code == 0, result.output
    assert "max_documents: 4" in result.output
    assert "priority_threshold: 0.7" in result.output


def test_config_reports_invalid_file(tmp_path: Path):
    (tmp_path / "contextkit.yaml").write_text("rpc:\n  timeout: -2\n", encoding="utf-8")

    result = runner.invoke(app, ["config"])

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
