"""Inspection session controller.

:class:`InspectionController` ties the pure pieces together: it loads
sessions through the remote client, keeps the session state behind one lock,
records edits, hands persistence to the :class:`SyncScheduler` and mirrors
everything into the local store so a restart can resume from the cache.

All remote failures end at :meth:`InspectionController._handle_error`, which
attempts a silent credential refresh for auth failures and reports the rest
through the ``notify`` callback.  Local state is never rolled back.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional

from assetsync import local_store as keys
from assetsync.classifier import Relation
from assetsync.credentials import CredentialProvider
from assetsync.errors import (
    AssetSyncError,
    AuthExpiredError,
    NetworkUnavailableError,
    NoDataFoundError,
    translate_error,
)
from assetsync.google_client import GoogleWorkspaceClient
from assetsync.join import build_users, is_terminated, load_relations, partition
from assetsync.local_store import LocalStore
from assetsync.merge import MergeResult, keep_local_inspection, merge_master
from assetsync.models import Asset, InspectionStatus, RemoteFile, Session, TradeLogEntry, User
from assetsync.scheduler import Clock, SyncScheduler, SyncState, master_sync_due
from assetsync.trade_log import TradeLogGroup, aggregate
from settings import SyncSettings

logger = logging.getLogger(__name__)

ALL_DEPARTMENTS = "전체"
UNKNOWN_HOLDER = "unknown"
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S"

# Asset attributes a scan may update alongside the inspection state.
SCAN_CHANGES = frozenset(
    {"note", "category", "model_name", "serial_number", "holder_id", "holder_name", "department"}
)

NotifyCallback = Callable[[str, str], None]


@dataclass
class Progress:
    total: int
    done: int
    percent: int


def backup_name(name: str, now: datetime) -> str:
    return f"{name}_BK_{now.strftime(BACKUP_TIMESTAMP_FORMAT)}"


def _parse_timestamp(value: object) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        logger.warning("Ignoring unreadable master sync timestamp %r", value)
        return None


class InspectionController:
    """Single writer for the active inspection session."""

    def __init__(
        self,
        client: GoogleWorkspaceClient,
        store: LocalStore,
        credentials: Optional[CredentialProvider] = None,
        *,
        settings: Optional[SyncSettings] = None,
        clock: Optional[Clock] = None,
        notify: Optional[NotifyCallback] = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._client = client
        self._store = store
        self._credentials = credentials
        self._settings = settings or SyncSettings()
        self._notify_callback = notify
        self._now = now
        self._lock = threading.RLock()
        self._generation = 0
        self._mutations = 0
        self._loader: Optional[threading.Thread] = None

        self._session: Optional[Session] = None
        self._users: List[User] = []
        self._trade_logs: List[TradeLogEntry] = []
        self._global_trade_logs: List[TradeLogEntry] = []
        self._last_master_sync: Optional[datetime] = None
        self.master_files: List[RemoteFile] = []
        self.session_files: List[RemoteFile] = []
        self.last_error: Optional[str] = None
        self.last_saved_at: Optional[datetime] = None

        pending = self._restore_cache()
        self._scheduler = SyncScheduler(
            self._save_session,
            refresh_credentials=self._refresh_credentials,
            purge_credentials=self._purge_credentials,
            delay=self._settings.debounce_seconds,
            clock=clock,
            status_callback=self._on_sync_status,
            dirty=pending,
        )

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------
    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def users(self) -> List[User]:
        return list(self._users)

    @property
    def global_trade_logs(self) -> List[TradeLogEntry]:
        return list(self._global_trade_logs)

    @property
    def last_master_sync(self) -> Optional[datetime]:
        return self._last_master_sync

    @property
    def scheduler(self) -> SyncScheduler:
        return self._scheduler

    @property
    def is_authenticated(self) -> bool:
        if self._credentials is not None and not self._credentials.has_credentials:
            return False
        return self._scheduler.authenticated

    @property
    def is_online(self) -> bool:
        return self._scheduler.online

    @property
    def has_pending_sync(self) -> bool:
        return self._scheduler.dirty

    # ------------------------------------------------------------------
    # Local cache
    # ------------------------------------------------------------------
    def _restore_cache(self) -> bool:
        store = self._store
        try:
            self._users = [User.from_dict(item) for item in store.get(keys.CACHED_USERS, [])]
            self._trade_logs = [
                TradeLogEntry.from_dict(item) for item in store.get(keys.CACHED_TRADE_LOGS, [])
            ]
            self._global_trade_logs = [
                TradeLogEntry.from_dict(item)
                for item in store.get(keys.CACHED_GLOBAL_TRADE_LOGS, [])
            ]
        except (TypeError, AttributeError):
            logger.warning("Cached reference data is malformed; starting without it")
            self._users, self._trade_logs, self._global_trade_logs = [], [], []
        self._last_master_sync = _parse_timestamp(store.get(keys.LAST_MASTER_SYNC))

        file_payload = store.get(keys.CURRENT_SESSION_FILE)
        pending = bool(store.get(keys.HAS_PENDING_SYNC, False))
        if not isinstance(file_payload, dict):
            return False
        try:
            assets = [Asset.from_dict(item) for item in store.get(keys.CACHED_ASSETS, [])]
        except (TypeError, AttributeError):
            logger.warning("Cached assets are malformed; session will be reloaded from remote")
            assets = []
        scanned = [str(item) for item in store.get(keys.CACHED_SCANNED_IDS, []) or []]
        self._session = Session(
            file=RemoteFile.from_dict(file_payload),
            assets=assets,
            scanned_ids=scanned,
            dirty=pending,
            last_master_sync=self._last_master_sync,
        )
        logger.info(
            "Restored cached session %s with %d assets", self._session.file.name, len(assets)
        )
        return pending

    def _persist_session(self) -> None:
        session = self._session
        values: Dict[str, object] = {
            keys.CACHED_SCANNED_IDS: list(session.scanned_ids) if session else [],
            keys.CACHED_ASSETS: [asset.to_dict() for asset in session.assets] if session else [],
            keys.HAS_PENDING_SYNC: bool(session and session.dirty),
        }
        if session is not None:
            values[keys.CURRENT_SESSION_FILE] = session.file.to_dict()
        self._store.update(values)

    def _persist_reference(self) -> None:
        values: Dict[str, object] = {
            keys.CACHED_USERS: [user.to_dict() for user in self._users],
            keys.CACHED_TRADE_LOGS: [entry.to_dict() for entry in self._trade_logs],
            keys.CACHED_GLOBAL_TRADE_LOGS: [entry.to_dict() for entry in self._global_trade_logs],
        }
        if self._last_master_sync is not None:
            values[keys.LAST_MASTER_SYNC] = self._last_master_sync.isoformat()
        self._store.update(values)

    # ------------------------------------------------------------------
    # Bootstrap and listings
    # ------------------------------------------------------------------
    def initialize(self) -> bool:
        """Fetch masters, sessions and the global trade log in parallel."""

        executor = ThreadPoolExecutor(max_workers=3, thread_name_prefix="assetsync-bootstrap")
        futures = [
            executor.submit(self.refresh_masters),
            executor.submit(self.refresh_sessions),
            executor.submit(self._load_global_trade_logs),
        ]
        try:
            for future in as_completed(futures):
                future.result()
        except Exception as exc:  # first failure wins
            for future in futures:
                future.cancel()
            self._handle_error(exc)
            return False
        finally:
            executor.shutdown(wait=False)
        logger.info(
            "Found %d masters and %d existing sessions",
            len(self.master_files),
            len(self.session_files),
        )
        return True

    def sign_in(self) -> bool:
        if self._credentials is None:
            raise AssetSyncError("No credential provider configured")
        try:
            self._credentials.sign_in()
        except Exception as exc:
            self._handle_error(exc)
            return False
        self._client.reset_services()
        self._scheduler.reset_authentication()
        return self.initialize()

    def refresh_masters(self) -> List[RemoteFile]:
        files = self._client.list_master_files()
        self.master_files = files
        return files

    def refresh_sessions(self) -> List[RemoteFile]:
        files = self._client.list_session_files()
        self.session_files = files
        return files

    def _load_global_trade_logs(self) -> List[TradeLogEntry]:
        logs = self._client.fetch_global_trade_logs()
        if logs:
            with self._lock:
                self._global_trade_logs = logs
                self._persist_reference()
        else:
            logger.warning("Global trade log returned no entries")
        return logs

    def refresh_global_trade_logs(self) -> List[TradeLogEntry]:
        try:
            return self._load_global_trade_logs()
        except AssetSyncError as exc:
            logger.error("Failed to fetch global trade logs: %s", exc)
            return []

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    def start_session(self, master_file: RemoteFile, name: str) -> Optional[RemoteFile]:
        """Create a session spreadsheet from ``master_file`` and load it."""

        try:
            result = self._client.fetch_tabular_data(master_file.id)
            rows = [record for record in result.of(Relation.ASSETS) if not is_terminated(record)]
            logger.info("Master %s has %d live asset rows", master_file.name, len(rows))
            if not rows:
                raise NoDataFoundError(f"No asset rows found in master {master_file.name!r}")
            remote = self._client.create_file(name, rows)
            self.refresh_sessions()
        except Exception as exc:
            self._handle_error(exc)
            return None
        self.load_session(remote, background=False)
        return remote

    def load_session(self, file: RemoteFile, *, background: bool = True) -> Session:
        """Show ``file`` from cache immediately and refresh it from the remote store."""

        with self._lock:
            current = self._session
            if current is None or current.file.id != file.id:
                self._session = Session(file=file, last_master_sync=self._last_master_sync)
            else:
                self._session.file = file
            self._generation += 1
            generation = self._generation
            mutations = self._mutations
            self.last_error = None
            self._persist_session()
            session = self._session

        if background:
            self._loader = threading.Thread(
                target=self._refresh_loaded_session,
                args=(file, generation, mutations),
                name="assetsync-session-loader",
                daemon=True,
            )
            self._loader.start()
        else:
            self._refresh_loaded_session(file, generation, mutations)
        return session

    def wait_for_load(self, timeout: Optional[float] = None) -> None:
        loader = self._loader
        if loader is not None:
            loader.join(timeout)

    def _refresh_loaded_session(self, file: RemoteFile, generation: int, mutations: int) -> None:
        if self._fetch_session(file, generation, mutations):
            self.check_and_sync_master()
            self.refresh_global_trade_logs()

    def _fetch_session(self, file: RemoteFile, generation: int, mutations: int) -> bool:
        try:
            result = self._client.fetch_tabular_data(file.id)
        except Exception as exc:
            logger.error("Background session refresh failed: %s", exc)
            self._handle_error(exc)
            return False

        joined = load_relations(result.records, previous_users=self._users)
        with self._lock:
            if generation != self._generation or self._session is None:
                logger.info("Discarding stale data for %s", file.name)
                return False
            if mutations != self._mutations:
                logger.info("Local edits happened during refresh of %s; keeping local state", file.name)
                return True
            if self._session.dirty:
                logger.info("Session %s has unsaved edits; keeping its inspection state", file.name)
                self._session.assets = keep_local_inspection(joined.assets, self._session.assets)
            else:
                self._session.assets = joined.assets
            if joined.users_replaced:
                self._users = joined.users
            if joined.trade:
                self._trade_logs = joined.trade
            self._persist_session()
            self._persist_reference()
        logger.info("Session data updated from remote for %s", file.name)
        return True

    def backup_and_save(self) -> Optional[RemoteFile]:
        """Write the session, then copy it to a timestamped backup spreadsheet.

        The write goes through the scheduler, so edits made while it is in
        flight stay pending and a successful write clears the offline state.
        """

        if not self.save():
            logger.warning("Session not saved; backup skipped")
            return None
        with self._lock:
            session = self._session
            if session is None:
                return None
            file = session.file
            records = self._asset_records(session)
        try:
            backup = self._client.create_file(backup_name(file.name, self._now()), records)
        except Exception as exc:
            self._handle_error(exc)
            return None
        logger.info("Backup %s created and session %s updated", backup.name, file.name)
        return backup

    def save(self) -> bool:
        """Write the session now, bypassing the debounce window."""

        if self._session is None:
            return False
        self._scheduler.cancel()
        self._scheduler.mark_dirty()
        return self._scheduler.flush()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def _mutate(self, asset_number: str, change: Callable[[Session, Asset], Asset]) -> Optional[Asset]:
        with self._lock:
            session = self._session
            if session is None:
                logger.warning("No session loaded; ignoring edit of %s", asset_number)
                return None
            for index, asset in enumerate(session.assets):
                if asset.asset_number == asset_number:
                    break
            else:
                logger.warning("Asset %s is not part of session %s", asset_number, session.file.name)
                return None
            updated = change(session, asset)
            session.assets[index] = updated
            session.dirty = True
            self._mutations += 1
            self._persist_session()
        self._scheduler.notify_mutation()
        return updated

    def scan_asset(self, asset_number: str, **changes: str) -> Optional[Asset]:
        """Mark ``asset_number`` checked now and move it to the top of the scanned list."""

        unknown = set(changes) - SCAN_CHANGES
        if unknown:
            raise ValueError(f"Unsupported asset fields: {', '.join(sorted(unknown))}")
        timestamp = self._now().strftime(TIME_FORMAT)

        def change(session: Session, asset: Asset) -> Asset:
            session.mark_scanned(asset.asset_number)
            return replace(
                asset,
                status=InspectionStatus.CHECKED,
                inspection_time=timestamp,
                edit_order=session.next_edit_order(),
                **changes,
            )

        return self._mutate(asset_number, change)

    def cancel_check(self, asset_number: str) -> Optional[Asset]:
        def change(session: Session, asset: Asset) -> Asset:
            session.unmark_scanned(asset.asset_number)
            return replace(asset, status=InspectionStatus.PENDING, inspection_time=None)

        updated = self._mutate(asset_number, change)
        if updated is not None:
            self._notify("success", f"Check of {asset_number} cancelled")
        return updated

    def update_note(self, asset_number: str, note: str) -> Optional[Asset]:
        return self._mutate(asset_number, lambda session, asset: replace(asset, note=note))

    def clear_scanned(self) -> None:
        with self._lock:
            if self._session is None:
                return
            self._session.scanned_ids = []
            self._persist_session()

    def sign_out(self) -> None:
        """Forget the session, the reference data and the credential."""

        self._scheduler.reset()
        with self._lock:
            self._generation += 1
            self._session = None
            self._users = []
            self._trade_logs = []
            self._global_trade_logs = []
            self._last_master_sync = None
            self.master_files = []
            self.session_files = []
            self._store.clear()
        if self._credentials is not None:
            self._credentials.purge()
        self._client.reset_services()
        logger.info("Signed out; local state cleared")

    # ------------------------------------------------------------------
    # Master refresh and trade log
    # ------------------------------------------------------------------
    def refresh_master(self) -> Optional[MergeResult]:
        """Pull the newest master and fold it into the reference data and session."""

        try:
            if self._session is not None and self._scheduler.dirty:
                self.save()

            latest = self._client.latest_master_file()
            if latest is None:
                logger.info("No master files available")
                return None
            result = self._client.fetch_tabular_data(latest.id)
            buckets = partition(result.records)
            logger.info("Master read from %s: %s", latest.name, result.counts())

            users = build_users(buckets.users)
            with self._lock:
                if users:
                    self._users = users
                self._trade_logs = []
                self._persist_reference()
            if buckets.trade:
                self._client.sync_master_trade_to_global(buckets.trade)
            self.refresh_global_trade_logs()

            merged: Optional[MergeResult] = None
            with self._lock:
                session = self._session
                if buckets.assets and session is not None:
                    merged = merge_master(session.assets, buckets.assets, self._users)
                    session.assets = merged.assets
                    if merged.changed:
                        session.dirty = True
                        self._mutations += 1
                    self._persist_session()
            if merged is not None and merged.changed:
                self._scheduler.mark_dirty()
                self._scheduler.flush()

            with self._lock:
                self._last_master_sync = self._now()
                if self._session is not None:
                    self._session.last_master_sync = self._last_master_sync
                self._persist_reference()
        except Exception as exc:
            self._handle_error(exc)
            return None
        self._notify("success", "Master data synchronised")
        return merged

    def check_and_sync_master(self, now: Optional[datetime] = None) -> bool:
        """Run :meth:`refresh_master` when the daily threshold has passed."""

        if not self.is_authenticated:
            return False
        now = now or self._now()
        due = master_sync_due(
            now,
            self._last_master_sync,
            has_users=bool(self._users),
            hour=self._settings.master_sync_hour,
        )
        if not due:
            logger.info("Master sync not needed (last %s)", self._last_master_sync)
            return False
        logger.info("Master sync required (last %s)", self._last_master_sync)
        self.refresh_master()
        return True

    def log_asset_change(
        self,
        asset_number: str,
        new_holder_id: str,
        prior_holder_id: str,
        note: str = "",
    ) -> Optional[TradeLogEntry]:
        """Append a holder change to the global trade log."""

        entry = TradeLogEntry(
            date=self._now().date().isoformat(),
            asset_number=asset_number,
            holder_id=new_holder_id,
            prior_holder_id=prior_holder_id,
            note=note,
        )
        try:
            self._client.append_global_trade_log(entry)
        except AssetSyncError as exc:
            logger.error("Failed to log asset change globally: %s", exc)
            self._notify("error", "Recording the change history failed")
            return None
        with self._lock:
            self._global_trade_logs.append(entry)
            self._persist_reference()
        logger.info("Global trade log appended for %s", asset_number)
        return entry

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    def scanned_assets(self, query: str = "") -> List[Asset]:
        """Scanned assets, most recently scanned first."""

        with self._lock:
            session = self._session
            if session is None:
                return []
            by_number = {asset.asset_number: asset for asset in session.assets}
            result = [by_number[number] for number in reversed(session.scanned_ids) if number in by_number]
        if query:
            needle = query.lower()
            result = [asset for asset in result if needle in asset.asset_number.lower()]
        return result

    def filtered_assets(self, department: str = ALL_DEPARTMENTS, query: str = "") -> List[Asset]:
        with self._lock:
            result = list(self._session.assets) if self._session else []
        if department and department != ALL_DEPARTMENTS:
            result = [asset for asset in result if asset.department == department]
        if query:
            needle = query.lower()
            result = [
                asset
                for asset in result
                if any(
                    needle in (value or "").lower()
                    for value in (
                        asset.asset_number,
                        asset.holder_name,
                        asset.holder_id,
                        asset.model_name,
                        asset.serial_number,
                    )
                )
            ]
        return result

    def departments(self) -> List[str]:
        with self._lock:
            assets = list(self._session.assets) if self._session else []
        return [ALL_DEPARTMENTS] + sorted({asset.department for asset in assets if asset.department})

    def user_stats(self) -> Dict[str, Dict[str, int]]:
        stats: Dict[str, Dict[str, int]] = {}
        with self._lock:
            assets = list(self._session.assets) if self._session else []
        for asset in assets:
            bucket = stats.setdefault(asset.holder_id or UNKNOWN_HOLDER, {"done": 0, "total": 0})
            bucket["total"] += 1
            if asset.is_checked:
                bucket["done"] += 1
        return stats

    def progress(self) -> Progress:
        with self._lock:
            assets = list(self._session.assets) if self._session else []
        total = len(assets)
        done = sum(1 for asset in assets if asset.is_checked)
        percent = int(done * 100 / total + 0.5) if total else 0
        return Progress(total=total, done=done, percent=percent)

    def trade_history(self, query: str = "") -> List[TradeLogGroup]:
        with self._lock:
            entries = list(self._global_trade_logs)
            users = list(self._users)
        return aggregate(entries, users, limit=self._settings.reference_limit, query=query or None)

    # ------------------------------------------------------------------
    # Sync plumbing
    # ------------------------------------------------------------------
    @staticmethod
    def _asset_records(session: Session):
        return [
            asset.to_record()
            for asset in session.assets
            if asset.source.relation is Relation.ASSETS
        ]

    def _save_session(self) -> None:
        with self._lock:
            session = self._session
            if session is None:
                return
            file_id = session.file.id
            records = self._asset_records(session)
        self._client.write_tabular_data(file_id, records)

    def _on_sync_status(self, state: SyncState, payload: Dict[str, object]) -> None:
        if payload.get("saved"):
            with self._lock:
                self.last_saved_at = self._now()
                if self._session is not None and not self._scheduler.dirty:
                    self._session.dirty = False
                    self._persist_session()
            logger.info("Background save completed at %s", self.last_saved_at)
            return
        error = payload.get("error")
        if error:
            self.last_error = str(error)
            if state is SyncState.OFFLINE:
                self._notify("warning", "Offline; changes will be saved on the next attempt")
            elif not self._scheduler.authenticated:
                self._notify("error", "Authentication expired; please sign in again")
            elif state is not SyncState.AUTH_RETRY:
                self._notify("error", f"Save failed: {error}")

    def _refresh_credentials(self) -> None:
        if self._credentials is None:
            raise AuthExpiredError("No credential provider configured")
        self._credentials.refresh()

    def _purge_credentials(self) -> None:
        if self._credentials is not None:
            self._credentials.purge()
        else:
            self._store.remove(keys.GOOGLE_ACCESS_TOKEN)

    def _handle_error(self, exc: BaseException) -> None:
        error = translate_error(exc)
        self.last_error = str(error)
        if isinstance(error, AuthExpiredError):
            logger.warning("Auth expired, attempting silent recovery")
            try:
                self._refresh_credentials()
            except Exception as retry_exc:  # any refresh failure means signing in again
                logger.error("Silent recovery failed: %s", retry_exc)
                self._purge_credentials()
                self._notify("error", "Authentication expired; please sign in again")
                return
            self.last_error = None
            logger.info("Silent recovery succeeded")
            self._notify("info", "Connection re-established")
            return
        if isinstance(error, NetworkUnavailableError):
            logger.warning("Network unavailable: %s", error)
        else:
            logger.error("API error: %s", error)
        self._notify("error", str(error))

    def _notify(self, level: str, message: str) -> None:
        if self._notify_callback:
            try:
                self._notify_callback(level, message)
            except Exception:  # pragma: no cover - UI callback guard
                logger.debug("Notify callback failed", exc_info=True)


__all__ = [
    "ALL_DEPARTMENTS",
    "InspectionController",
    "NotifyCallback",
    "Progress",
    "backup_name",
]
