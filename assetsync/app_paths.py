"""Where assetsync keeps its settings, cache database, logs and client secret."""
from __future__ import annotations

import os
from pathlib import Path


def _detect_base_directory() -> Path:
    override = os.environ.get("ASSETSYNC_HOME")
    if override:
        return Path(override).expanduser().resolve()
    for env_var in ("LOCALAPPDATA", "APPDATA"):
        value = os.environ.get(env_var)
        if value:
            return Path(value).expanduser().resolve() / "AssetSync"
    return Path.home().resolve() / ".assetsync"


APP_DIR: Path = _detect_base_directory()
TOKENS_DIR: Path = APP_DIR / "tokens"
LOGS_DIR: Path = APP_DIR / "logs"


def data_path(*parts: str) -> Path:
    """Return ``APP_DIR`` joined with ``parts``, creating the parent directory."""

    target = APP_DIR.joinpath(*parts)
    target.parent.mkdir(parents=True, exist_ok=True)
    return target


__all__ = ["APP_DIR", "LOGS_DIR", "TOKENS_DIR", "data_path"]
