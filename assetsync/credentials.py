"""OAuth user credentials for the Sheets and Drive APIs.

The authorised-user payload is cached in the local store under
``google_access_token`` so a restart can reuse it.  Expired tokens are
refreshed silently when a refresh token is available; otherwise the caller
has to run the interactive desktop flow again.
"""

from __future__ import annotations

import json
import logging
import os
from typing import List, Optional, Sequence

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from assetsync.errors import AuthExpiredError, ConfigurationMissingError, translate_error
from assetsync.local_store import GOOGLE_ACCESS_TOKEN, LocalStore

logger = logging.getLogger(__name__)

SCOPES: Sequence[str] = (
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
)


class CredentialProvider:
    """Owns the current OAuth credential and its persistence."""

    def __init__(
        self,
        store: Optional[LocalStore] = None,
        client_secret_path: str = "",
        scopes: Optional[Sequence[str]] = None,
        *,
        credentials: Optional[Credentials] = None,
    ) -> None:
        self._store = store
        self._client_secret_path = client_secret_path
        self._scopes: List[str] = list(scopes or SCOPES)
        self._credentials = credentials
        if self._credentials is None:
            self._credentials = self._load_cached()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _load_cached(self) -> Optional[Credentials]:
        if self._store is None:
            return None
        payload = self._store.get(GOOGLE_ACCESS_TOKEN)
        if not payload:
            return None
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except ValueError:
                logger.warning("Cached credential is not valid JSON; ignoring it")
                return None
        try:
            return Credentials.from_authorized_user_info(payload, self._scopes)
        except (TypeError, ValueError) as exc:
            logger.warning("Cached credential could not be loaded: %s", exc)
            return None

    def _persist(self) -> None:
        if self._store is None or self._credentials is None:
            return
        self._store.set(GOOGLE_ACCESS_TOKEN, json.loads(self._credentials.to_json()))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def credentials(self) -> Optional[Credentials]:
        return self._credentials

    @property
    def has_credentials(self) -> bool:
        return self._credentials is not None

    def sign_in(self) -> Credentials:
        """Run the installed-app consent flow and cache the result."""

        secret_path = self._client_secret_path
        if not secret_path:
            raise ConfigurationMissingError("OAuth client secret path is not configured")
        if not os.path.exists(secret_path):
            raise ConfigurationMissingError(f"Client secret file not found: {secret_path}")
        flow = InstalledAppFlow.from_client_secrets_file(secret_path, self._scopes)
        self._credentials = flow.run_local_server(port=0)
        self._persist()
        logger.info("Signed in with Google account")
        return self._credentials

    def ensure_valid(self) -> Credentials:
        """Return a usable credential, refreshing it silently if needed."""

        credentials = self._credentials
        if credentials is None:
            raise AuthExpiredError("Not signed in")
        if credentials.valid:
            return credentials
        self.refresh()
        return self._credentials

    def refresh(self) -> Credentials:
        """Refresh the credential without user interaction."""

        credentials = self._credentials
        if credentials is None or not credentials.refresh_token:
            raise AuthExpiredError("No refresh token available; sign in again")
        try:
            credentials.refresh(Request())
        except Exception as exc:
            raise translate_error(exc, "credential refresh") from exc
        self._persist()
        logger.info("Access token refreshed")
        return credentials

    def purge(self) -> None:
        """Forget the credential both in memory and in the local store."""

        self._credentials = None
        if self._store is not None:
            self._store.remove(GOOGLE_ACCESS_TOKEN)
        logger.info("Stored credential removed")


__all__ = ["CredentialProvider", "SCOPES"]
