"""Tests for the ferry CLI (transfer run/status/stop, config show/init)."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import yaml
from typer.testing import CliRunner

from ferry.cli import _configure_logging, app
from ferry_core.config import FerryConfig
from ferry_core.errors import TransferError, TransferInterruptedError
from ferry_core.state import StateStore
from ferry_core.transfer import RunReport

runner = CliRunner()


def _write_config(root: Path, **transfer) -> Path:
    """Write a ferry.yaml with two servers and a home_dir under *root*."""
    cfg = {
        "servers": {
            "src": {"url": "https://src.example.com/artifactory/", "access_token": "tok-secret"},
            "dst": {"url": "https://dst.example.com/artifactory/", "user": "admin", "password": "pw-secret"},
        },
        "transfer": {"home_dir": str(root / "home"), **transfer},
    }
    path = root / "ferry.yaml"
    path.write_text(yaml.dump(cfg))
    return path


# ── ferry config ─────────────────────────────────────────────────────


def test_config_init_creates_file(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["config", "init"])
    assert result.exit_code == 0
    assert "Created" in result.output
    assert "servers:" in (tmp_path / "ferry.yaml").read_text()


def test_config_init_refuses_overwrite(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "ferry.yaml").write_text("log_level: debug\n")
    result = runner.invoke(app, ["config", "init"])
    assert result.exit_code == 1
    assert "already exists" in result.output
    assert (tmp_path / "ferry.yaml").read_text() == "log_level: debug\n"


def test_config_init_force(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "ferry.yaml").write_text("log_level: debug\n")
    result = runner.invoke(app, ["config", "init", "--force"])
    assert result.exit_code == 0
    assert "transfer:" in (tmp_path / "ferry.yaml").read_text()


def test_config_show_masks_secrets(tmp_path: Path):
    cfg = _write_config(tmp_path)
    result = runner.invoke(app, ["--config", str(cfg), "config", "show"])
    assert result.exit_code == 0
    assert "tok-secret" not in result.output
    assert "pw-secret" not in result.output
    assert "***" in result.output


def test_invalid_config_exits(tmp_path: Path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("transfer:\n  chunk_size: 1000\n")
    result = runner.invoke(app, ["--config", str(bad), "config", "show"])
    assert result.exit_code == 1
    assert "Error" in result.output


# ── ferry transfer status / stop ─────────────────────────────────────


def test_status_before_any_run(tmp_path: Path):
    cfg = _write_config(tmp_path)
    result = runner.invoke(app, ["--config", str(cfg), "transfer", "status"])
    assert result.exit_code == 0
    assert "No transfer has run yet" in result.output


def test_status_shows_repositories(tmp_path: Path):
    cfg = _write_config(tmp_path)
    store = StateStore(tmp_path / "home" / "transfer")
    store.repo_migration_started("libs-release")
    store.repo_migration_completed("libs-release")
    store.set_nodes(["node-a"])

    result = runner.invoke(app, ["--config", str(cfg), "transfer", "status"])
    assert result.exit_code == 0
    assert "libs-release" in result.output
    assert "node-a" in result.output


def test_stop_creates_stop_file(tmp_path: Path):
    cfg = _write_config(tmp_path)
    result = runner.invoke(app, ["--config", str(cfg), "transfer", "stop"])
    assert result.exit_code == 0
    assert "Stop requested" in result.output
    assert (tmp_path / "home" / "transfer" / "stop").is_file()


# ── ferry transfer run ───────────────────────────────────────────────


def _mock_engine(report: RunReport | None = None, error: Exception | None = None) -> MagicMock:
    engine = MagicMock()
    if error is not None:
        engine.run.side_effect = error
    else:
        engine.run.return_value = report or RunReport(run_id="1700000000000")
    return engine


def test_run_passes_overrides_to_engine(tmp_path: Path):
    cfg = _write_config(tmp_path)
    engine = _mock_engine(
        RunReport(run_id="1700000000000", repositories=["a", "b"], phases_run=[("a", "migration")])
    )
    with patch("ferry.cli.TransferEngine", return_value=engine) as cls:
        result = runner.invoke(
            app,
            [
                "--config", str(cfg), "transfer", "run", "src", "dst",
                "--include-repos", "libs-*; docker-*",
                "--exclude-repos", "*-tmp",
                "--threads", "3",
                "--filestore",
            ],
        )
    assert result.exit_code == 0, result.output
    identity, source, target, transfer_cfg = cls.call_args.args
    assert (source, target) == ("src", "dst")
    assert identity.get_server("src").access_token == "tok-secret"
    assert identity.get_server("dst").user == "admin"
    assert transfer_cfg.include_repos == ["libs-*", "docker-*"]
    assert transfer_cfg.exclude_repos == ["*-tmp"]
    assert transfer_cfg.threads == 3
    assert cls.call_args.kwargs["check_existence_in_filestore"] is True
    assert cls.call_args.kwargs["dry_run"] is False
    engine.close.assert_called_once()
    assert "1700000000000" in result.output


def test_run_dry_run_lists_planned_phases(tmp_path: Path):
    cfg = _write_config(tmp_path)
    report = RunReport(run_id="1", repositories=["a"], phases_planned=[("a", "migration")])
    with patch("ferry.cli.TransferEngine", return_value=_mock_engine(report)) as cls:
        result = runner.invoke(app, ["--config", str(cfg), "transfer", "run", "src", "dst", "--dry-run"])
    assert result.exit_code == 0, result.output
    assert cls.call_args.kwargs["dry_run"] is True
    assert "Planned phases" in result.output
    assert "migration" in result.output


def test_run_reports_failed_repositories(tmp_path: Path):
    cfg = _write_config(tmp_path)
    report = RunReport(run_id="1", repositories=["a"], failed={"a": "AQL search failed"})
    with patch("ferry.cli.TransferEngine", return_value=_mock_engine(report)):
        result = runner.invoke(app, ["--config", str(cfg), "transfer", "run", "src", "dst"])
    assert result.exit_code == 0
    assert "AQL search failed" in result.output


def test_run_unknown_server(tmp_path: Path):
    cfg = _write_config(tmp_path)
    with patch("ferry.cli.TransferEngine") as cls:
        result = runner.invoke(app, ["--config", str(cfg), "transfer", "run", "src", "nowhere"])
    assert result.exit_code == 1
    assert "Unknown server id" in result.output
    cls.assert_not_called()


def test_run_rejects_same_server(tmp_path: Path):
    cfg = _write_config(tmp_path)
    with patch("ferry.cli.TransferEngine") as cls:
        result = runner.invoke(app, ["--config", str(cfg), "transfer", "run", "src", "src"])
    assert result.exit_code == 1
    assert "different servers" in result.output
    cls.assert_not_called()


def test_run_interrupted_exits_2(tmp_path: Path):
    cfg = _write_config(tmp_path)
    engine = _mock_engine(error=TransferInterruptedError("stop requested"))
    with patch("ferry.cli.TransferEngine", return_value=engine):
        result = runner.invoke(app, ["--config", str(cfg), "transfer", "run", "src", "dst"])
    assert result.exit_code == 2
    assert "Stopped" in result.output
    engine.close.assert_called_once()


def test_run_transfer_error_exits_1(tmp_path: Path):
    cfg = _write_config(tmp_path)
    engine = _mock_engine(error=TransferError("source agent unreachable", operation="ping"))
    with patch("ferry.cli.TransferEngine", return_value=engine):
        result = runner.invoke(app, ["--config", str(cfg), "transfer", "run", "src", "dst"])
    assert result.exit_code == 1
    assert "source agent unreachable" in result.output
    engine.close.assert_called_once()


# ── logging ──────────────────────────────────────────────────────────


def test_json_log_format_emits_one_object_per_record():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        _configure_logging(FerryConfig(log_format="json", log_level="info"))
        (handler,) = root.handlers
        try:
            raise OSError("disk full")
        except OSError:
            record = logging.getLogger("ferry_core.transfer.engine").makeRecord(
                "ferry_core.transfer.engine", logging.ERROR, __file__, 1,
                "Repository %s failed", ("libs-release",), sys.exc_info(),
            )
        entry = json.loads(handler.format(record))
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)
    assert entry["event"] == "Repository libs-release failed"
    assert entry["level"] == "error"
    assert entry["logger"] == "ferry_core.transfer.engine"
    assert "timestamp" in entry
    assert "OSError: disk full" in entry["exception"]
