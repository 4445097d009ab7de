"""Google Sheets and Drive access for inspection workbooks.

This module centralises all direct interactions with the Google APIs used by
assetsync.  The rest of the package works with :class:`RawRecord` lists and
:class:`RemoteFile` descriptors and never sees HTTP requests or
googleapiclient internals.

* Worksheet titles are quoted according to A1 notation so localized titles
  (``시트1``, ``HR 인사``) never produce "Unable to parse range" errors.
* Every request goes through :meth:`GoogleWorkspaceClient._execute`, which maps
  library failures onto :mod:`assetsync.errors`.
* The Sheets and Drive services are built lazily from the credential provider
  unless they are injected, which is what the tests do.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from googleapiclient.discovery import build

from assetsync.classifier import Relation, classify_titles
from assetsync.codec import DEFAULT_SHEET_TITLE, RawRecord, decode_block, encode_records, group_by_sheet
from assetsync.credentials import CredentialProvider
from assetsync.errors import AssetSyncError, ConfigurationMissingError, translate_error
from assetsync.join import build_trade_log
from assetsync.models import RemoteFile, TradeLogEntry

logger = logging.getLogger(__name__)

SPREADSHEET_MIME_TYPE = "application/vnd.google-apps.spreadsheet"
DEFAULT_TRADE_LOG_FILE_NAME = "Global_Trade_Log"
TRADE_LOG_SHEET_TITLE = "Global_Trade"
TRADE_LOG_HEADERS: Sequence[str] = ("date", "asset_number", "cj_id", "ex_user", "note")
VALUE_INPUT_OPTION = "USER_ENTERED"
READ_COLUMNS = "A:ZZ"


def quote_title(title: str) -> str:
    """Return a worksheet title quoted according to A1 notation rules."""

    safe = (title or "").strip() or DEFAULT_SHEET_TITLE
    return "'" + safe.replace("'", "''") + "'"


def a1_range(title: str, cells: str = READ_COLUMNS) -> str:
    return f"{quote_title(title)}!{cells}"


@dataclass
class FetchResult:
    """Records decoded from one spreadsheet plus the titles that were skipped."""

    records: List[RawRecord] = field(default_factory=list)
    skipped_titles: List[str] = field(default_factory=list)

    def of(self, relation: Relation) -> List[RawRecord]:
        return [record for record in self.records if record.relation is relation]

    def counts(self) -> Dict[str, int]:
        totals: Dict[str, int] = {}
        for record in self.records:
            totals[record.relation.value] = totals.get(record.relation.value, 0) + 1
        return totals


class GoogleWorkspaceClient:
    """Remote store for master, session and trade-log spreadsheets."""

    def __init__(
        self,
        credentials: Optional[CredentialProvider] = None,
        *,
        master_folder_id: str = "",
        backup_folder_id: str = "",
        trade_log_file_name: str = DEFAULT_TRADE_LOG_FILE_NAME,
        sheets_service=None,
        drive_service=None,
    ) -> None:
        self._credentials = credentials
        self.master_folder_id = master_folder_id
        self.backup_folder_id = backup_folder_id
        self.trade_log_file_name = trade_log_file_name or DEFAULT_TRADE_LOG_FILE_NAME
        self._sheets_service = sheets_service
        self._drive_service = drive_service
        self._services_injected = sheets_service is not None or drive_service is not None
        self._trade_log_file: Optional[RemoteFile] = None

    @classmethod
    def from_settings(cls, settings, credentials: CredentialProvider) -> "GoogleWorkspaceClient":
        return cls(
            credentials,
            master_folder_id=settings.master_folder_id,
            backup_folder_id=settings.backup_folder_id,
            trade_log_file_name=settings.trade_log_file_name,
        )

    # ------------------------------------------------------------------
    # Service plumbing
    # ------------------------------------------------------------------
    def _authorised(self):
        if self._credentials is None:
            return None
        try:
            return self._credentials.ensure_valid()
        except AssetSyncError:
            raise
        except Exception as exc:
            raise translate_error(exc, "credential") from exc

    def _sheets(self):
        credentials = self._authorised()
        if self._sheets_service is None:
            self._sheets_service = build("sheets", "v4", credentials=credentials, cache_discovery=False)
        return self._sheets_service

    def _drive(self):
        credentials = self._authorised()
        if self._drive_service is None:
            self._drive_service = build("drive", "v3", credentials=credentials, cache_discovery=False)
        return self._drive_service

    def reset_services(self) -> None:
        """Drop built services so the next call picks up a new credential."""

        if not self._services_injected:
            self._sheets_service = None
            self._drive_service = None
        self._trade_log_file = None

    @staticmethod
    def _execute(request, context: str) -> Dict[str, Any]:
        try:
            return request.execute() or {}
        except Exception as exc:
            raise translate_error(exc, context) from exc

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------
    def list_files(self, folder_id: str) -> List[RemoteFile]:
        """Return spreadsheets inside ``folder_id``, most recently modified first."""

        if not folder_id:
            raise ConfigurationMissingError("Folder id is not configured")
        drive = self._drive()
        query = (
            f"'{folder_id}' in parents and mimeType='{SPREADSHEET_MIME_TYPE}' and trashed=false"
        )
        files: List[RemoteFile] = []
        page_token: Optional[str] = None
        while True:
            response = self._execute(
                drive.files().list(
                    q=query,
                    spaces="drive",
                    orderBy="modifiedTime desc",
                    fields="nextPageToken, files(id, name, modifiedTime)",
                    pageToken=page_token,
                ),
                "file listing",
            )
            files.extend(RemoteFile.from_dict(item) for item in response.get("files", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        files.sort(key=lambda item: item.modified_time or "", reverse=True)
        logger.debug("Listed %d spreadsheets in folder %s", len(files), folder_id)
        return files

    def list_master_files(self) -> List[RemoteFile]:
        return self.list_files(self.master_folder_id)

    def list_session_files(self) -> List[RemoteFile]:
        """Return inspection session files, without the global trade log."""

        files = self.list_files(self.backup_folder_id)
        return [item for item in files if item.name != self.trade_log_file_name]

    def latest_master_file(self) -> Optional[RemoteFile]:
        files = self.list_master_files()
        return files[0] if files else None

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------
    def sheet_titles(self, file_id: str) -> List[str]:
        metadata = self._execute(
            self._sheets().spreadsheets().get(
                spreadsheetId=file_id, fields="sheets(properties(title))"
            ),
            "spreadsheet metadata",
        )
        return [
            sheet.get("properties", {}).get("title", "")
            for sheet in metadata.get("sheets", [])
        ]

    def fetch_tabular_data(self, file_id: str) -> FetchResult:
        """Read every recognised worksheet of ``file_id`` into tagged records."""

        titles = self.sheet_titles(file_id)
        logger.info("Spreadsheet %s has sheets: %s", file_id, ", ".join(titles))
        recognised, skipped = classify_titles(titles)
        result = FetchResult(skipped_titles=skipped)
        if not recognised:
            logger.warning("No recognised sheets in spreadsheet %s", file_id)
            return result

        response = self._execute(
            self._sheets()
            .spreadsheets()
            .values()
            .batchGet(
                spreadsheetId=file_id,
                ranges=[a1_range(title) for title, _ in recognised],
                majorDimension="ROWS",
            ),
            "sheet values",
        )
        value_ranges: Sequence[Mapping[str, Any]] = response.get("valueRanges", [])
        for (title, relation), payload in zip(recognised, value_ranges):
            records = decode_block(payload.get("values", []), title, relation)
            logger.info("Parsed %d records from %r as %s", len(records), title, relation.value)
            result.records.extend(records)

        if result.records:
            logger.info("Fetched %s from %s", result.counts(), file_id)
        else:
            logger.warning("No records found in any recognised sheet of %s", file_id)
        return result

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------
    def write_tabular_data(self, file_id: str, records: Sequence[RawRecord]) -> None:
        """Write ``records`` back, one full block per originating sheet."""

        values_api = self._sheets().spreadsheets().values()
        for title, group in group_by_sheet(records).items():
            matrix = encode_records(group)
            if not matrix:
                continue
            body = {
                "valueInputOption": VALUE_INPUT_OPTION,
                "data": [{"range": a1_range(title, "A1"), "values": matrix, "majorDimension": "ROWS"}],
            }
            self._execute(
                values_api.batchUpdate(spreadsheetId=file_id, body=body),
                f"update of sheet {title!r}",
            )
            logger.info("Wrote %d rows to sheet %r of %s", len(matrix) - 1, title, file_id)

    def _create_spreadsheet(self, name: str, sheet_title: Optional[str] = None) -> Dict[str, Any]:
        if not self.backup_folder_id:
            raise ConfigurationMissingError("Backup folder id is not configured")
        body: Dict[str, Any] = {"properties": {"title": name}}
        if sheet_title:
            body["sheets"] = [{"properties": {"title": sheet_title}}]
        created = self._execute(
            self._sheets().spreadsheets().create(
                body=body, fields="spreadsheetId,sheets(properties(title))"
            ),
            f"creation of {name!r}",
        )
        file_id = created.get("spreadsheetId", "")
        self._execute(
            self._drive().files().update(
                fileId=file_id,
                addParents=self.backup_folder_id,
                removeParents="root",
                fields="id, parents",
            ),
            f"move of {name!r}",
        )
        return created

    def create_file(self, name: str, records: Sequence[RawRecord]) -> RemoteFile:
        """Create a spreadsheet in the backup folder holding ``records``.

        All records land in the first worksheet under one union header, with
        the survey columns appended when missing.
        """

        created = self._create_spreadsheet(name)
        file_id = created.get("spreadsheetId", "")
        sheets = created.get("sheets") or [{}]
        first_title = sheets[0].get("properties", {}).get("title") or DEFAULT_SHEET_TITLE
        logger.info("Created spreadsheet %s (%s), first sheet %r", name, file_id, first_title)

        matrix = encode_records(list(records))
        if matrix:
            self._execute(
                self._sheets()
                .spreadsheets()
                .values()
                .update(
                    spreadsheetId=file_id,
                    range=a1_range(first_title, "A1"),
                    valueInputOption=VALUE_INPUT_OPTION,
                    body={"values": matrix},
                ),
                f"initial write of {name!r}",
            )
            logger.info("Wrote %d rows with headers: %s", len(matrix) - 1, ", ".join(matrix[0]))
        return RemoteFile(id=file_id, name=name)

    # ------------------------------------------------------------------
    # Global trade log
    # ------------------------------------------------------------------
    def find_trade_log_file(self) -> Optional[RemoteFile]:
        if self._trade_log_file is not None:
            return self._trade_log_file
        for item in self.list_files(self.backup_folder_id):
            if item.name == self.trade_log_file_name:
                self._trade_log_file = item
                return item
        return None

    def _ensure_trade_log_file(self) -> RemoteFile:
        existing = self.find_trade_log_file()
        if existing is not None:
            return existing
        created = self._create_spreadsheet(self.trade_log_file_name, TRADE_LOG_SHEET_TITLE)
        remote = RemoteFile(id=created.get("spreadsheetId", ""), name=self.trade_log_file_name)
        self._execute(
            self._sheets()
            .spreadsheets()
            .values()
            .update(
                spreadsheetId=remote.id,
                range=a1_range(TRADE_LOG_SHEET_TITLE, "A1"),
                valueInputOption=VALUE_INPUT_OPTION,
                body={"values": [list(TRADE_LOG_HEADERS)]},
            ),
            "trade log header",
        )
        logger.info("Created global trade log %s", remote.id)
        self._trade_log_file = remote
        return remote

    def _trade_log_title(self, file_id: str) -> str:
        titles = self.sheet_titles(file_id)
        return titles[0] if titles else TRADE_LOG_SHEET_TITLE

    def fetch_global_trade_logs(self) -> List[TradeLogEntry]:
        """Return every entry of the global trade log; empty when it does not exist."""

        remote = self.find_trade_log_file()
        if remote is None:
            logger.info("Global trade log %r not found", self.trade_log_file_name)
            return []
        title = self._trade_log_title(remote.id)
        response = self._execute(
            self._sheets()
            .spreadsheets()
            .values()
            .get(spreadsheetId=remote.id, range=a1_range(title), majorDimension="ROWS"),
            "trade log values",
        )
        records = decode_block(response.get("values", []), title, Relation.TRADE)
        entries = build_trade_log(records)
        logger.info("Loaded %d global trade log entries", len(entries))
        return entries

    def _append_rows(self, remote: RemoteFile, rows: List[List[str]]) -> None:
        title = self._trade_log_title(remote.id)
        self._execute(
            self._sheets()
            .spreadsheets()
            .values()
            .append(
                spreadsheetId=remote.id,
                range=a1_range(title, "A1"),
                valueInputOption=VALUE_INPUT_OPTION,
                insertDataOption="INSERT_ROWS",
                body={"values": rows},
            ),
            "trade log append",
        )

    @staticmethod
    def _entry_row(entry: TradeLogEntry) -> List[str]:
        row = entry.to_row()
        return [row[column] for column in TRADE_LOG_HEADERS]

    def append_global_trade_log(self, entry: TradeLogEntry) -> None:
        remote = self._ensure_trade_log_file()
        self._append_rows(remote, [self._entry_row(entry)])
        logger.info("Appended trade log entry for asset %s", entry.asset_number)

    def sync_master_trade_to_global(self, records: Iterable[RawRecord]) -> int:
        """Append master trade rows missing from the global log; return the count."""

        incoming = build_trade_log(records)
        if not incoming:
            return 0
        remote = self._ensure_trade_log_file()
        known: Set[tuple] = {entry.key for entry in self.fetch_global_trade_logs()}
        rows: List[List[str]] = []
        for entry in incoming:
            if entry.key in known:
                continue
            known.add(entry.key)
            rows.append(self._entry_row(entry))
        if rows:
            self._append_rows(remote, rows)
        logger.info("Synced %d of %d master trade rows to the global log", len(rows), len(incoming))
        return len(rows)


__all__ = [
    "DEFAULT_TRADE_LOG_FILE_NAME",
    "FetchResult",
    "GoogleWorkspaceClient",
    "SPREADSHEET_MIME_TYPE",
    "TRADE_LOG_HEADERS",
    "TRADE_LOG_SHEET_TITLE",
    "a1_range",
    "quote_title",
]
