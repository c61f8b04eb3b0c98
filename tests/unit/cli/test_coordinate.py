"""Tests for quarry coordinate / events / work / worker run."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from quarry.cli.main import app
from quarry.db.connection import Database
from quarry.db.models import WorkState
from quarry.db.store import Store

runner = CliRunner()


@pytest.fixture
def seeded(corpus_file: Path, extractors_file: Path) -> None:
    runner.invoke(app, ["init"])
    runner.invoke(app, ["extractors", "record", str(extractors_file)])
    runner.invoke(app, ["corpus", "upsert", str(corpus_file)])
    runner.invoke(app, ["ingest", "--corpus", "docs", "--text", "hello", "--meta", "lang=en"])
    runner.invoke(app, ["ingest", "--corpus", "docs", "--text", "bonjour", "--meta", "lang=fr"])


def _work(tmp_path: Path):
    with Database(tmp_path / ".quarry.db") as conn:
        return Store(conn).jobs.list_work()


def _mock_embedding():
    response = MagicMock()
    response.data = [{"embedding": [0.1, 0.2, 0.3]}]
    return patch("quarry.extract.embedder.litellm.embedding", return_value=response)


def test_events_lists_pending(seeded) -> None:
    result = runner.invoke(app, ["events"])
    assert result.exit_code == 0, result.output
    assert "pending" in result.output


def test_coordinate_plans_and_assigns(tmp_path: Path, seeded) -> None:
    result = runner.invoke(app, ["coordinate", "--worker", "w1"])
    assert result.exit_code == 0, result.output
    assert "3 event(s) processed" in result.output
    assert "1 work item(s) planned" in result.output
    assert "1 assigned" in result.output

    [work] = _work(tmp_path)
    assert work.worker_id == "w1"
    assert work.work_state is WorkState.PENDING

    assert "No events" in runner.invoke(app, ["events"]).output
    assert runner.invoke(app, ["events", "--all"]).exit_code == 0


def test_coordinate_without_workers_only_plans(tmp_path: Path, seeded) -> None:
    result = runner.invoke(app, ["coordinate"])
    assert result.exit_code == 0
    assert "0 assigned" in result.output
    [work] = _work(tmp_path)
    assert work.worker_id is None


def test_coordinate_loop_needs_workers(seeded) -> None:
    result = runner.invoke(app, ["coordinate", "--loop"])
    assert result.exit_code == 1
    assert "--worker" in result.output


def test_work_listing(seeded) -> None:
    runner.invoke(app, ["coordinate", "--worker", "w1"])
    result = runner.invoke(app, ["work", "--state", "Pending"])
    assert result.exit_code == 0
    assert "Pending" in result.output
    assert "No work" in runner.invoke(app, ["work", "--worker", "w2"]).output


def test_worker_run_completes_work(tmp_path: Path, seeded, monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    runner.invoke(app, ["coordinate", "--worker", "w1"])

    with _mock_embedding():
        result = runner.invoke(app, ["worker", "run", "--worker-id", "w1"])

    assert result.exit_code == 0, result.output
    assert "1 completed, 0 failed" in result.output
    [work] = _work(tmp_path)
    assert work.work_state is WorkState.COMPLETED


def test_worker_run_failure_exits_1(tmp_path: Path, seeded, monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    runner.invoke(app, ["coordinate", "--worker", "w1"])

    result = runner.invoke(app, ["worker", "run", "--worker-id", "w1"])

    assert result.exit_code == 1
    assert "0 completed, 1 failed" in result.output
    [work] = _work(tmp_path)
    assert work.work_state is WorkState.FAILED
