"""Error taxonomy shared by the remote client, the scheduler and the controller."""

from __future__ import annotations

from typing import Optional

import httplib2
from google.auth import exceptions as google_auth_exceptions
from googleapiclient.errors import HttpError

_NETWORK_HINTS = ("fetch", "network", "connection", "timed out", "unreachable")


class AssetSyncError(Exception):
    """Base error raised when a sync operation cannot complete."""


class AuthExpiredError(AssetSyncError):
    """Raised when the remote store rejects the current credential."""


class NetworkUnavailableError(AssetSyncError):
    """Raised on transport-level failures (no connectivity, DNS, timeouts)."""


class ConfigurationMissingError(AssetSyncError):
    """Raised when a required folder or file id has not been configured."""


class RemoteRejectedError(AssetSyncError):
    """Raised when the remote store answers with a non-auth error status."""

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class NoDataFoundError(AssetSyncError):
    """Raised when an expected relation is absent after classification."""


def http_status(exc: HttpError) -> int:
    status = getattr(exc, "status_code", None)
    if status is not None:
        try:
            return int(status)
        except (TypeError, ValueError):
            return 0
    resp = getattr(exc, "resp", None)
    if resp is not None:
        try:
            return int(getattr(resp, "status", 0))
        except (TypeError, ValueError):
            return 0
    return 0


def translate_error(exc: BaseException, context: Optional[str] = None) -> AssetSyncError:
    """Map a library or transport exception onto the sync error taxonomy.

    ``context`` is prefixed to the message so callers can tell which remote
    operation failed (for example the sheet name of a failed write).
    """

    if isinstance(exc, AssetSyncError):
        return exc
    prefix = f"{context}: " if context else ""
    if isinstance(exc, HttpError):
        status = http_status(exc)
        if status == 401:
            return AuthExpiredError(f"{prefix}credential rejected (401)")
        return RemoteRejectedError(f"{prefix}remote store answered {status}", status_code=status)
    if isinstance(exc, google_auth_exceptions.RefreshError):
        return AuthExpiredError(f"{prefix}{exc}")
    if isinstance(
        exc,
        (OSError, httplib2.HttpLib2Error, google_auth_exceptions.TransportError),
    ):
        return NetworkUnavailableError(f"{prefix}{exc}")
    message = str(exc)
    if any(hint in message.lower() for hint in _NETWORK_HINTS):
        return NetworkUnavailableError(f"{prefix}{message}")
    return AssetSyncError(f"{prefix}{message}")


__all__ = [
    "AssetSyncError",
    "AuthExpiredError",
    "ConfigurationMissingError",
    "NetworkUnavailableError",
    "NoDataFoundError",
    "RemoteRejectedError",
    "http_status",
    "translate_error",
]
