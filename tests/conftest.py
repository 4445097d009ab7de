from __future__ import annotations

import re
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from assetsync.errors import AuthExpiredError
from assetsync.scheduler import Clock


# ---------------------------------------------------------------------------
# Fake googleapiclient services
# ---------------------------------------------------------------------------
class _FakeRequest:
    def __init__(self, google: "FakeGoogle", operation: str, callback: Callable[[], Any]) -> None:
        self._google = google
        self._operation = operation
        self._callback = callback

    def execute(self):
        self._google.calls.append(self._operation)
        pending = self._google.failures.get(self._operation)
        if pending:
            raise pending.pop(0)
        hook = self._google.hooks.pop(self._operation, None)
        if hook is not None:
            hook()
        return self._callback()


def _split_range(range_spec: str) -> tuple:
    if "!" not in range_spec:
        return "", range_spec
    sheet, cells = range_spec.split("!", 1)
    sheet = sheet.strip()
    if sheet.startswith("'") and sheet.endswith("'") and len(sheet) >= 2:
        sheet = sheet[1:-1].replace("''", "'")
    return sheet, cells


class _FakeValues:
    def __init__(self, google: "FakeGoogle") -> None:
        self._google = google

    def batchGet(self, spreadsheetId: str, ranges: List[str], majorDimension: str = "ROWS"):  # noqa: N802
        def run():
            value_ranges = []
            for range_spec in ranges:
                title, _ = _split_range(range_spec)
                rows = self._google.workbooks[spreadsheetId].get(title, [])
                payload: Dict[str, Any] = {"range": range_spec, "majorDimension": majorDimension}
                if rows:
                    payload["values"] = [list(row) for row in rows]
                value_ranges.append(payload)
            return {"spreadsheetId": spreadsheetId, "valueRanges": value_ranges}

        return _FakeRequest(self._google, "batchGet", run)

    def get(self, spreadsheetId: str, range: str, majorDimension: str = "ROWS"):  # noqa: A002
        def run():
            title, _ = _split_range(range)
            rows = self._google.workbooks[spreadsheetId].get(title, [])
            payload: Dict[str, Any] = {"range": range}
            if rows:
                payload["values"] = [list(row) for row in rows]
            return payload

        return _FakeRequest(self._google, "get", run)

    def batchUpdate(self, spreadsheetId: str, body: Dict[str, Any]):  # noqa: N802
        def run():
            self._google.batch_updates.append((spreadsheetId, body))
            for entry in body.get("data", []):
                self._google._overwrite(spreadsheetId, entry["range"], entry["values"])
            return {}

        return _FakeRequest(self._google, "batchUpdate", run)

    def update(self, spreadsheetId: str, range: str, valueInputOption: str, body: Dict[str, Any]):  # noqa: A002,N803
        def run():
            self._google._overwrite(spreadsheetId, range, body["values"])
            return {}

        return _FakeRequest(self._google, "update", run)

    def append(
        self,
        spreadsheetId: str,
        range: str,
        valueInputOption: str,
        insertDataOption: str,
        body: Dict[str, Any],
    ):
        def run():
            title, _ = _split_range(range)
            sheet = self._google.workbooks[spreadsheetId].setdefault(title, [])
            sheet.extend(list(row) for row in body["values"])
            self._google._touch(spreadsheetId)
            return {}

        return _FakeRequest(self._google, "append", run)


class _FakeSpreadsheets:
    def __init__(self, google: "FakeGoogle") -> None:
        self._google = google

    def values(self) -> _FakeValues:
        return _FakeValues(self._google)

    def get(self, spreadsheetId: str, fields: Optional[str] = None):  # noqa: N803
        def run():
            titles = list(self._google.workbooks[spreadsheetId].keys())
            return {"sheets": [{"properties": {"title": title}} for title in titles]}

        return _FakeRequest(self._google, "spreadsheets.get", run)

    def create(self, body: Dict[str, Any], fields: Optional[str] = None):
        def run():
            sheets = body.get("sheets") or [{"properties": {"title": self._google.default_sheet_title}}]
            titles = [sheet["properties"]["title"] for sheet in sheets]
            file_id = self._google.add_file(body["properties"]["title"], "root", {title: [] for title in titles})
            return {
                "spreadsheetId": file_id,
                "sheets": [{"properties": {"title": title}} for title in titles],
            }

        return _FakeRequest(self._google, "create", run)


class _FakeFiles:
    def __init__(self, google: "FakeGoogle") -> None:
        self._google = google

    def list(self, q: str, spaces: str, orderBy: str, fields: str, pageToken: Optional[str] = None):  # noqa: N803
        def run():
            match = re.search(r"'([^']+)' in parents", q)
            folder = match.group(1) if match else ""
            files = [
                {"id": file_id, "name": meta["name"], "modifiedTime": meta["modifiedTime"]}
                for file_id, meta in self._google.drive_files.items()
                if folder in meta["parents"]
            ]
            files.sort(key=lambda item: item["modifiedTime"], reverse=True)
            start = int(pageToken or 0)
            size = self._google.page_size
            page = files[start : start + size]
            payload: Dict[str, Any] = {"files": page}
            if start + size < len(files):
                payload["nextPageToken"] = str(start + size)
            return payload

        return _FakeRequest(self._google, "files.list", run)

    def update(self, fileId: str, addParents: str, removeParents: str, fields: str):  # noqa: N803
        def run():
            meta = self._google.drive_files[fileId]
            meta["parents"] = [parent for parent in meta["parents"] if parent != removeParents]
            meta["parents"].append(addParents)
            return {"id": fileId, "parents": meta["parents"]}

        return _FakeRequest(self._google, "files.update", run)


class FakeGoogle:
    """In-memory Sheets + Drive pair speaking the request/execute protocol."""

    def __init__(self) -> None:
        self.workbooks: Dict[str, Dict[str, List[List[Any]]]] = {}
        self.drive_files: Dict[str, Dict[str, Any]] = {}
        self.failures: Dict[str, List[Exception]] = {}
        self.hooks: Dict[str, Callable[[], Any]] = {}
        self.calls: List[str] = []
        self.batch_updates: List[tuple] = []
        self.page_size = 100
        self.default_sheet_title = "Sheet1"
        self._counter = 0

    # services ---------------------------------------------------------
    def spreadsheets(self) -> _FakeSpreadsheets:
        return _FakeSpreadsheets(self)

    def files(self) -> _FakeFiles:  # Drive API surface
        return _FakeFiles(self)

    # helpers ----------------------------------------------------------
    def add_file(self, name: str, folder: str, sheets: Dict[str, List[List[Any]]]) -> str:
        self._counter += 1
        file_id = f"file-{self._counter}"
        self.workbooks[file_id] = {title: [list(row) for row in rows] for title, rows in sheets.items()}
        self.drive_files[file_id] = {"name": name, "parents": [folder], "modifiedTime": ""}
        self._touch(file_id)
        return file_id

    def fail(self, operation: str, *errors: Exception) -> None:
        self.failures.setdefault(operation, []).extend(errors)

    def sheet(self, file_id: str, title: str) -> List[List[Any]]:
        return self.workbooks[file_id][title]

    def _touch(self, file_id: str) -> None:
        self._counter += 1
        self.drive_files[file_id]["modifiedTime"] = f"2024-01-01T{self._counter:06d}Z"

    def _overwrite(self, file_id: str, range_spec: str, values: List[List[Any]]) -> None:
        title, _ = _split_range(range_spec)
        sheet = self.workbooks[file_id].setdefault(title, [])
        rows = [list(row) for row in values]
        sheet[: len(rows)] = rows
        self._touch(file_id)


# ---------------------------------------------------------------------------
# Scheduler and credential doubles
# ---------------------------------------------------------------------------
class _ManualHandle:
    def __init__(self, when: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock(Clock):
    def __init__(self) -> None:
        self._now = 0.0
        self._handles: List[_ManualHandle] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualHandle:
        handle = _ManualHandle(self._now + delay, callback)
        self._handles.append(handle)
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for handle in self._handles if not handle.cancelled)

    def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while True:
            due = [h for h in self._handles if not h.cancelled and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda item: item.when)
            self._handles.remove(handle)
            self._now = handle.when
            handle.callback()
        self._now = target


class FakeCredentialProvider:
    def __init__(self, refresh_error: Optional[Exception] = None) -> None:
        self.refresh_error = refresh_error
        self.refresh_calls = 0
        self.purged = False
        self.has_credentials = True

    def ensure_valid(self):
        if not self.has_credentials:
            raise AuthExpiredError("Not signed in")
        return object()

    def refresh(self):
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        return object()

    def purge(self) -> None:
        self.purged = True
        self.has_credentials = False

    def sign_in(self):
        self.has_credentials = True
        return object()


# ---------------------------------------------------------------------------
# Workbook fixtures
# ---------------------------------------------------------------------------
MASTER_FOLDER = "folder-masters"
BACKUP_FOLDER = "folder-backups"

MASTER_SHEETS: Dict[str, List[List[str]]] = {
    "Assets": [
        ["Asset Number", "In User", "Model Name", "Serial Number", "Category", "State"],
        ["A-001", "u1", "ThinkPad X1", "SN1", "Laptop", "use"],
        ["A-002", "u2", "Dell 24", "SN2", "Monitor", "use"],
        ["A-003", "u9", "iPad", "SN3", "Tablet", "use"],
        ["A-004", "u1", "Old PC", "SN4", "Desktop", "Termination"],
        ["A-001", "u2", "Duplicate", "SN1b", "Laptop", "use"],
    ],
    "HR_인사": [
        ["사번", "성명", "부서"],
        ["u1", "Kim", "Dev"],
        ["u2", "Lee", "Ops"],
    ],
    "거래이력": [
        ["일자", "관리번호", "사번", "이전사용자", "비고"],
        ["2024-01-02", "A-001", "u1", "u2", "handover"],
    ],
    "Notes": [["anything"], ["ignored"]],
}


@pytest.fixture
def google() -> FakeGoogle:
    fake = FakeGoogle()
    fake.add_file("Master 2024", MASTER_FOLDER, MASTER_SHEETS)
    return fake


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def credentials() -> FakeCredentialProvider:
    return FakeCredentialProvider()
