from __future__ import annotations

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import settings


def test_defaults_are_written_when_missing(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("ASSETSYNC_MASTER_FOLDER_ID", "masters")
    monkeypatch.setenv("ASSETSYNC_BACKUP_FOLDER_ID", "backups")
    path = tmp_path / "config" / "sync_settings.json"

    loaded = settings.load_sync_settings(str(path))

    assert path.exists()
    assert loaded.master_folder_id == "masters"
    assert loaded.backup_folder_id == "backups"
    assert loaded.debounce_seconds == 3
    assert loaded.master_sync_hour == 6
    assert loaded.trade_log_file_name == "Global_Trade_Log"


def test_numbers_are_clamped_and_unknown_keys_ignored(tmp_path) -> None:
    path = tmp_path / "sync_settings.json"
    path.write_text(
        json.dumps(
            {
                "debounce_seconds": 0,
                "master_sync_hour": 30,
                "reference_limit": "many",
                "backup_folder_id": "  backups  ",
                "client_secret_path": "",
                "colour": "blue",
            }
        ),
        encoding="utf-8",
    )

    loaded = settings.load_sync_settings(str(path))

    assert loaded.debounce_seconds == 1
    assert loaded.master_sync_hour == 23
    assert loaded.reference_limit == 20
    assert loaded.backup_folder_id == "backups"
    assert loaded.client_secret_path != ""
    assert not hasattr(loaded, "colour")


def test_unreadable_file_falls_back_to_defaults(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("ASSETSYNC_MASTER_FOLDER_ID", raising=False)
    path = tmp_path / "sync_settings.json"
    path.write_text("{broken", encoding="utf-8")

    loaded = settings.load_sync_settings(str(path))

    assert loaded.master_folder_id == ""
    assert loaded.reference_limit == 20


def test_save_round_trips(tmp_path) -> None:
    path = str(tmp_path / "sync_settings.json")
    original = settings.SyncSettings(
        master_folder_id="m",
        backup_folder_id="b",
        client_secret_path=str(tmp_path / "client_secret.json"),
        debounce_seconds=5,
    )

    settings.save_sync_settings(original, path)

    assert settings.load_sync_settings(path) == original
