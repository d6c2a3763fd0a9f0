"""
tests/test_cli.py
=================

Smoke tests for `python -m regtrack.cli`, with the service bound to the
in-memory database.
"""

import json
from unittest.mock import patch

import pytest

from regtrack.cli import main


@pytest.fixture
def cli_svc(svc):
    with patch("regtrack.service.build_service", return_value=svc):
        yield svc


def test_stats_prints_json(cli_svc, startup_id, capsys):
    assert main(["stats", str(startup_id)]) == 0
    stats = json.loads(capsys.readouterr().out)
    assert stats["total"] == 16


def test_tasks_prints_grouped_checklist(cli_svc, startup_id, capsys):
    assert main(["tasks", str(startup_id), "--role", "CS"]) == 0
    out = capsys.readouterr().out
    assert "Parent Company (IN)" in out
    assert "GST Return (Q4 2025)" in out
    assert "Aggregate (CS): Pending" in out


def test_sync_then_regenerate(cli_svc, startup_id, capsys):
    assert main(["sync", str(startup_id)]) == 0
    assert "Created 16 status rows" in capsys.readouterr().out
    assert main(["regenerate", str(startup_id)]) == 0
    assert "Created 16 status rows" in capsys.readouterr().out


def test_plot_writes_png(cli_svc, startup_id, tmp_path):
    out = tmp_path / "summary.png"
    assert main(["plot", str(startup_id), "--out", str(out)]) == 0
    assert out.exists() and out.stat().st_size > 0


def test_unknown_startup(cli_svc, capsys):
    assert main(["stats", "999"]) == 1
    assert "not found" in capsys.readouterr().err
