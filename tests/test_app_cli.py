from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from conftest import BACKUP_FOLDER, MASTER_FOLDER

import app
from assetsync.engine import InspectionController
from assetsync.google_client import GoogleWorkspaceClient
from assetsync.local_store import LocalStore
from settings import SyncSettings

NOW = datetime(2024, 5, 2, 9, 30, 0)


@pytest.fixture
def controller(google, credentials, manual_clock, tmp_path, monkeypatch) -> InspectionController:
    client = GoogleWorkspaceClient(
        sheets_service=google,
        drive_service=google,
        master_folder_id=MASTER_FOLDER,
        backup_folder_id=BACKUP_FOLDER,
    )
    instance = InspectionController(
        client,
        LocalStore(tmp_path / "state.db"),
        credentials,
        clock=manual_clock,
        notify=app._print_notice,
        now=lambda: NOW,
    )
    monkeypatch.setattr(app, "configure_logging", lambda level: tmp_path / "assetsync.log")
    monkeypatch.setattr(app, "load_sync_settings", lambda path: SyncSettings())
    monkeypatch.setattr(app, "build_controller", lambda settings: instance)
    return instance


def test_status_without_session(controller, capsys) -> None:
    assert app.main(["status"]) == 0
    assert "No session loaded." in capsys.readouterr().out


def test_scan_requires_a_session(controller, capsys) -> None:
    assert app.main(["scan", "A-001"]) == 1
    assert "no session loaded" in capsys.readouterr().err


def test_masters_lists_spreadsheets(controller, capsys) -> None:
    assert app.main(["masters"]) == 0
    assert "Master 2024" in capsys.readouterr().out


def test_start_scan_and_status(controller, google, capsys) -> None:
    assert app.main(["start", "Master 2024", "Round 1"]) == 0
    assert "Session Round 1 created" in capsys.readouterr().out

    assert app.main(["scan", "A-001", "--note", "desk 3"]) == 0
    assert "A-001 checked at 2024-05-02 09:30:00 (Kim)" in capsys.readouterr().out
    assert controller.has_pending_sync is False

    assert app.main(["status"]) == 0
    output = capsys.readouterr().out
    assert "Progress     : 1/3 (33%)" in output
    assert "A-001" in output


def test_start_with_unknown_master(controller, capsys) -> None:
    assert app.main(["start", "Nope", "Round 1"]) == 1
    assert "master 'Nope' not found" in capsys.readouterr().err


def test_scan_of_unknown_asset_fails(controller, capsys) -> None:
    app.main(["start", "Master 2024", "Round 1"])
    capsys.readouterr()

    assert app.main(["scan", "Z-9"]) == 1
    assert "not part of this session" in capsys.readouterr().err


def test_save_with_backup(controller, capsys) -> None:
    app.main(["start", "Master 2024", "Round 1"])
    capsys.readouterr()

    assert app.main(["save", "--backup"]) == 0
    assert "Backup created: Round 1_BK_20240502T093000" in capsys.readouterr().out
