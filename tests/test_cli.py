"""Tests for cardwise.cli: argument parsing and command handlers.

Commands run through main(argv=[...]) against a SQLite file in tmp_path
and the fixture config directory.
"""

from __future__ import annotations

import json
import re
import subprocess
import sys
from pathlib import Path

import pytest

from cardwise.cli import main
from tests.conftest import FIXTURE_CONFIG_DIR

PROJECT_ROOT = Path(__file__).parent.parent

STATEMENT = [
    {"date": "2026-01-03", "description": "MCDONALD'S #12345 ANYTOWN USA", "amount": 250},
    {"date": "2026-01-04", "description": "SWIGGY", "merchant": "SWIGGY", "amount": 4000},
    {"date": "2026-01-05", "description": "IOCL NH44 OUTLET", "amount": 3000},
]


# ── Helpers ──────────────────────────────────────────────


def _run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


@pytest.fixture
def env(tmp_path, monkeypatch):
    monkeypatch.setenv("CARDWISE_DB_PATH", str(tmp_path / "cardwise.db"))
    monkeypatch.setenv("CARDWISE_CONFIG_DIR", str(FIXTURE_CONFIG_DIR))
    monkeypatch.setenv("CARDWISE_LOG_LEVEL", "WARNING")
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("CARDWISE_FUZZY_THRESHOLD", raising=False)
    return tmp_path


@pytest.fixture
def statement_file(env):
    path = env / "statement.json"
    path.write_text(json.dumps(STATEMENT))
    return path


def _queue(statement_file, capsys, session="s1") -> str:
    assert _run(["ingest", str(statement_file), session]) == 0
    out = capsys.readouterr().out
    match = re.search(r"Queued job (\S+) \(3 transactions\)", out)
    assert match, out
    return match.group(1)


# ── Argument parsing (subprocess) ────────────────────────


class TestCliHelp:
    def test_help_exits_zero(self):
        result = subprocess.run(
            [sys.executable, "-m", "cardwise.cli", "--help"],
            capture_output=True, text=True, cwd=PROJECT_ROOT,
        )
        assert result.returncode == 0
        assert "card recommendations" in result.stdout

    def test_ingest_requires_args(self):
        result = subprocess.run(
            [sys.executable, "-m", "cardwise.cli", "ingest"],
            capture_output=True, text=True, cwd=PROJECT_ROOT,
        )
        assert result.returncode != 0

    def test_no_command_prints_help(self, capsys):
        assert _run([]) == 0
        assert "usage" in capsys.readouterr().out.lower()


# ── Command handlers ─────────────────────────────────────


class TestSeed:
    def test_seed_reports_counts(self, env, capsys):
        assert _run(["seed"]) == 0
        out = capsys.readouterr().out
        assert "Seeded 6 categories" in out
        assert "4 offers" in out
        assert "Initialized" in out

    def test_missing_config_dir(self, env, monkeypatch):
        monkeypatch.setenv("CARDWISE_CONFIG_DIR", str(env / "nowhere"))
        with pytest.raises(FileNotFoundError):
            main(["seed"])


class TestIngestAndWork:
    def test_full_flow(self, env, statement_file, capsys):
        _run(["seed"])
        capsys.readouterr()
        job_id = _queue(statement_file, capsys)

        assert _run(["work", "--once"]) == 0
        assert "Processed 1 jobs (0 failed)" in capsys.readouterr().out

        assert _run(["status", job_id]) == 0
        out = capsys.readouterr().out
        assert f"Job {job_id} (statement_processing)" in out
        assert "completed" in out

        assert _run(["jobs", "s1"]) == 0
        out = capsys.readouterr().out
        assert "Transactions:     3" in out
        assert job_id in out

    def test_wrapped_payload_accepted(self, env, capsys):
        path = env / "wrapped.json"
        path.write_text(json.dumps({"transactions": STATEMENT, "profile": {"credit_score": 760}}))
        assert _run(["ingest", str(path), "s2", "--priority", "1"]) == 0
        assert "3 transactions" in capsys.readouterr().out

    def test_missing_file(self, env, capsys):
        assert _run(["ingest", str(env / "absent.json"), "s1"]) == 1
        assert "File not found" in capsys.readouterr().out

    def test_invalid_json(self, env, capsys):
        path = env / "bad.json"
        path.write_text("{not json")
        assert _run(["ingest", str(path), "s1"]) == 1
        assert "Invalid JSON" in capsys.readouterr().out

    def test_wrong_shape(self, env, capsys):
        path = env / "shape.json"
        path.write_text(json.dumps({"rows": []}))
        assert _run(["ingest", str(path), "s1"]) == 1
        assert "expected a list of transactions" in capsys.readouterr().out

    def test_work_once_empty_queue(self, env, capsys):
        assert _run(["work", "--once"]) == 0
        assert "Processed 0 jobs (0 failed)" in capsys.readouterr().out


class TestStatus:
    def test_unknown_job(self, env, capsys):
        assert _run(["status", "does-not-exist"]) == 1
        assert "Job not found: does-not-exist" in capsys.readouterr().out

    def test_empty_session(self, env, capsys):
        assert _run(["jobs", "nobody"]) == 0
        assert "No jobs for this session." in capsys.readouterr().out


class TestRecommend:
    def test_ranked_output(self, env, statement_file, capsys):
        _run(["seed"])
        _queue(statement_file, capsys)
        _run(["work", "--once"])
        capsys.readouterr()

        assert _run(["recommend", "s1"]) == 0
        out = capsys.readouterr().out
        assert "Recommendations for s1 (ranked by earnings)" in out
        assert "  1. " in out

    def test_json_output(self, env, capsys):
        _run(["seed"])
        capsys.readouterr()
        assert _run(["recommend", "fresh", "--json", "--income", "500000"]) == 0
        result = json.loads(capsys.readouterr().out)
        assert result["session_id"] == "fresh"
        assert result["used_fallback"] is True
        assert result["recommendations"]

    def test_no_offers(self, env, capsys):
        assert _run(["recommend", "s1"]) == 1
        assert "No active offers to recommend." in capsys.readouterr().out


class TestInsights:
    def test_prints_json(self, env, statement_file, capsys):
        _run(["seed"])
        _queue(statement_file, capsys)
        _run(["work", "--once"])
        capsys.readouterr()
        assert _run(["insights", "s1"]) == 0
        assert isinstance(json.loads(capsys.readouterr().out), dict)


class TestConfigCommand:
    def test_set_then_get(self, env, capsys):
        assert _run(["config", "set", "max_recommendations", "3"]) == 0
        capsys.readouterr()
        assert _run(["config", "get", "max_recommendations"]) == 0
        assert capsys.readouterr().out.strip() == "max_recommendations = 3"

    def test_get_default(self, env, capsys):
        assert _run(["config", "get", "ranking_mode"]) == 0
        assert "ranking_mode = earnings" in capsys.readouterr().out

    def test_unknown_key(self, env, capsys):
        assert _run(["config", "get", "no_such_key"]) == 1
        assert "Unknown setting" in capsys.readouterr().out

    def test_init_is_idempotent(self, env, capsys):
        assert _run(["config", "init"]) == 0
        assert "Initialized 0 settings" not in capsys.readouterr().out
        assert _run(["config", "init"]) == 0
        assert "Initialized 0 settings" in capsys.readouterr().out

    def test_no_subcommand(self, env, capsys):
        assert _run(["config"]) == 1
        assert "Usage" in capsys.readouterr().out
