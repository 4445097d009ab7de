"""Application configuration helpers for assetsync."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from assetsync import app_paths


logger = logging.getLogger(__name__)


SYNC_SETTINGS_PATH = str(app_paths.APP_DIR / "sync_settings.json")
DEFAULT_STORE_PATH = str(app_paths.APP_DIR / "assetsync.db")
DEFAULT_TRADE_LOG_FILE_NAME = "Global_Trade_Log"

# key -> (default, minimum, maximum)
_CLAMPED_INTS: Dict[str, Tuple[int, int, int]] = {
    "debounce_seconds": (3, 1, 60),
    "master_sync_hour": (6, 0, 23),
    "reference_limit": (20, 1, 500),
}


@dataclass
class SyncSettings:
    master_folder_id: str = ""
    backup_folder_id: str = ""
    client_secret_path: str = ""
    trade_log_file_name: str = DEFAULT_TRADE_LOG_FILE_NAME
    debounce_seconds: int = 3
    master_sync_hour: int = 6
    reference_limit: int = 20
    store_path: str = DEFAULT_STORE_PATH

    def to_json(self) -> Dict[str, object]:
        return {
            "master_folder_id": self.master_folder_id,
            "backup_folder_id": self.backup_folder_id,
            "client_secret_path": self.client_secret_path,
            "trade_log_file_name": self.trade_log_file_name,
            "debounce_seconds": self.debounce_seconds,
            "master_sync_hour": self.master_sync_hour,
            "reference_limit": self.reference_limit,
            "store_path": self.store_path,
        }


def _default_settings() -> Dict[str, object]:
    return {
        "master_folder_id": os.getenv("ASSETSYNC_MASTER_FOLDER_ID", ""),
        "backup_folder_id": os.getenv("ASSETSYNC_BACKUP_FOLDER_ID", ""),
        "client_secret_path": os.getenv(
            "ASSETSYNC_CLIENT_SECRET",
            str(app_paths.TOKENS_DIR / "client_secret.json"),
        ),
        "trade_log_file_name": DEFAULT_TRADE_LOG_FILE_NAME,
        "debounce_seconds": _CLAMPED_INTS["debounce_seconds"][0],
        "master_sync_hour": _CLAMPED_INTS["master_sync_hour"][0],
        "reference_limit": _CLAMPED_INTS["reference_limit"][0],
        "store_path": DEFAULT_STORE_PATH,
    }


def _ensure_sync_settings(path: str = SYNC_SETTINGS_PATH) -> Dict[str, object]:
    default_settings = _default_settings()
    if not os.path.exists(path):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(default_settings, handle, indent=2)
        return json.loads(json.dumps(default_settings))

    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, ValueError) as exc:
        logger.warning("Could not read %s, using defaults: %s", path, exc)
        return default_settings
    if not isinstance(data, dict):
        return default_settings

    merged: Dict[str, object] = dict(default_settings)
    for key, value in data.items():
        if key in _CLAMPED_INTS:
            default, low, high = _CLAMPED_INTS[key]
            try:
                merged[key] = max(low, min(high, int(value)))
            except (TypeError, ValueError):
                merged[key] = default
        elif key in default_settings and isinstance(value, str) and value.strip():
            merged[key] = value.strip()
    return merged


def load_sync_settings(path: Optional[str] = None) -> SyncSettings:
    data = _ensure_sync_settings(path or SYNC_SETTINGS_PATH)
    return SyncSettings(
        master_folder_id=str(data.get("master_folder_id", "")),
        backup_folder_id=str(data.get("backup_folder_id", "")),
        client_secret_path=str(data.get("client_secret_path", "")),
        trade_log_file_name=str(data.get("trade_log_file_name", DEFAULT_TRADE_LOG_FILE_NAME)),
        debounce_seconds=int(data.get("debounce_seconds", 3)),
        master_sync_hour=int(data.get("master_sync_hour", 6)),
        reference_limit=int(data.get("reference_limit", 20)),
        store_path=str(data.get("store_path", DEFAULT_STORE_PATH)),
    )


def save_sync_settings(settings: SyncSettings, path: Optional[str] = None) -> None:
    path = path or SYNC_SETTINGS_PATH
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(path, "w", encoding="utf-8") as handle:
        json.dump(settings.to_json(), handle, indent=2)


__all__ = [
    "DEFAULT_STORE_PATH",
    "DEFAULT_TRADE_LOG_FILE_NAME",
    "SYNC_SETTINGS_PATH",
    "SyncSettings",
    "load_sync_settings",
    "save_sync_settings",
]
