"""CLI commands that work against the local store only (no venue calls)."""

import pytest
from typer.testing import CliRunner

from packdraft.cli import app as cli_app
from packdraft.storage.db import get_connection, init_schema
from tests.conftest import make_event, seed_pool, submit

runner = CliRunner()


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    # Keep structlog's global config untouched by CLI runs
    monkeypatch.setattr(cli_app, "configure_logging", lambda settings: None)
    db = tmp_path / "cli.duckdb"
    (tmp_path / "default.toml").write_text(f'[storage]\ndb_path = "{db.as_posix()}"\n', encoding="utf-8")
    conn = get_connection(db)
    init_schema(conn)
    seed_pool(conn, events=[make_event(1), make_event(2)])
    submit(conn, "pk1", ["polymarket:m1", "polymarket:m2"])
    conn.close()
    return tmp_path


def _invoke(config_dir, *args):
    return runner.invoke(cli_app.app, ["-C", str(config_dir), *args])


def test_pools_list(config_dir):
    result = _invoke(config_dir, "pools", "list")
    assert result.exit_code == 0, result.output
    assert "week-1" in result.output
    assert "2 events" in result.output
    assert "Total: 1 pools" in result.output


def test_packs_show_and_list(config_dir):
    shown = _invoke(config_dir, "packs", "show", "pk1")
    assert shown.exit_code == 0, shown.output
    assert "Pack pk1 (p1)" in shown.output
    assert "pending" in shown.output

    listed = _invoke(config_dir, "packs", "list", "p1")
    assert listed.exit_code == 0
    assert "Total: 1 packs" in listed.output


def test_packs_show_unknown(config_dir):
    assert _invoke(config_dir, "packs", "show", "nope").exit_code == 1


def test_reveal_before_resolution_fails(config_dir):
    result = _invoke(config_dir, "packs", "reveal", "pk1")
    assert result.exit_code == 1
    assert "not_resolved" in result.output


def test_resolve_reconcile_and_status(config_dir):
    reconciled = _invoke(config_dir, "resolve", "reconcile")
    assert reconciled.exit_code == 0
    assert "Reconciled 0 events." in reconciled.output

    status = _invoke(config_dir, "resolve", "status")
    assert status.exit_code == 0
    assert "Queued events: 0" in status.output
