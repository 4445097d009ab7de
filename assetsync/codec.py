"""Conversion between worksheet value blocks and :class:`RawRecord` objects.

``decode_rows``
    Turn a header row plus data rows into records, keeping the header order
    and the 1-based data-row ordinal as provenance.  Repeated and blank
    header names get position-qualified keys (see :func:`column_keys`).

``encode_records``
    Turn records back into a header + rows block.  The header is the union of
    every record's retained header sequence (first-seen order) with the
    survey columns ``status``, ``inspection_time`` and ``note`` appended when
    missing, so an inspection round always has somewhere to write its state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from assetsync.classifier import Relation, relation_from_tag

SURVEY_COLUMNS: Tuple[str, ...] = ("status", "inspection_time", "note")
DEFAULT_SHEET_TITLE = "Sheet1"


@dataclass
class RawRecord:
    """One worksheet row keyed by its header text (see :func:`column_keys`)."""

    values: Dict[str, str]
    sheet_title: str = DEFAULT_SHEET_TITLE
    relation: Relation = Relation.UNKNOWN
    headers: List[str] = field(default_factory=list)
    row_number: int = 0

    def __getitem__(self, key: str) -> str:
        return self.values[key]

    def __contains__(self, key: object) -> bool:
        return key in self.values

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    def keys(self) -> Iterable[str]:
        return self.values.keys()

    def copy(self) -> "RawRecord":
        return RawRecord(
            values=dict(self.values),
            sheet_title=self.sheet_title,
            relation=self.relation,
            headers=list(self.headers),
            row_number=self.row_number,
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "values": dict(self.values),
            "sheet_title": self.sheet_title,
            "relation": self.relation.value,
            "headers": list(self.headers),
            "row_number": self.row_number,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RawRecord":
        values = payload.get("values") or {}
        return cls(
            values={str(key): _cell_text(value) for key, value in dict(values).items()},
            sheet_title=str(payload.get("sheet_title") or DEFAULT_SHEET_TITLE),
            relation=relation_from_tag(payload.get("relation")),
            headers=[str(header) for header in payload.get("headers") or []],
            row_number=int(payload.get("row_number") or 0),
        )


RecordLike = Union[RawRecord, Mapping[str, Any]]


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def column_keys(headers: Sequence[str]) -> List[str]:
    """Return a distinct value key for every header cell.

    The first column with a given name is keyed by the name itself.  Repeated
    and blank names are keyed ``<name>#<column>`` (1-based) so every cell keeps
    its own slot and its position in the header row.
    """

    keys: List[str] = []
    used = set()
    for position, name in enumerate(headers, start=1):
        key = name
        if not name.strip() or key in used:
            key = f"{name}#{position}"
        while key in used:
            key = f"{key}#"
        used.add(key)
        keys.append(key)
    return keys


def decode_rows(
    header: Sequence[Any],
    rows: Sequence[Sequence[Any]],
    sheet_title: str,
    relation: Relation,
) -> List[RawRecord]:
    """Return one :class:`RawRecord` per data row.

    Missing trailing cells become ``""``; cells beyond the header are ignored.
    ``headers`` keeps the header row as written, repeats included.
    """

    headers = [_cell_text(cell) for cell in header]
    if not headers:
        return []
    keys = column_keys(headers)
    records: List[RawRecord] = []
    for ordinal, row in enumerate(rows, start=1):
        row = list(row) if row is not None else []
        values: Dict[str, str] = {}
        for index, key in enumerate(keys):
            cell = row[index] if index < len(row) else ""
            values[key] = _cell_text(cell)
        records.append(
            RawRecord(
                values=values,
                sheet_title=sheet_title,
                relation=relation,
                headers=list(headers),
                row_number=ordinal,
            )
        )
    return records


def decode_block(
    values: Sequence[Sequence[Any]], sheet_title: str, relation: Relation
) -> List[RawRecord]:
    """Decode a block whose first row is the header."""

    if not values:
        return []
    return decode_rows(values[0], values[1:], sheet_title, relation)


def _record_columns(record: RecordLike) -> List[Tuple[str, str]]:
    """Return ``(value key, header text)`` pairs in column order."""

    headers = getattr(record, "headers", None)
    if headers:
        return list(zip(column_keys(headers), headers))
    mapping = record.values if isinstance(record, RawRecord) else record
    return [(str(key), str(key)) for key in mapping.keys() if not str(key).startswith("_")]


def _record_mapping(record: RecordLike) -> Mapping[str, Any]:
    return record.values if isinstance(record, RawRecord) else record


def _union_columns(records: Iterable[RecordLike]) -> List[Tuple[str, str]]:
    columns: List[Tuple[str, str]] = []
    seen = set()
    for record in records:
        for key, text in _record_columns(record):
            if key in seen:
                continue
            seen.add(key)
            columns.append((key, text))
    lowered = {text.lower() for _, text in columns}
    for column in SURVEY_COLUMNS:
        if column not in lowered:
            columns.append((column, column))
    return columns


def union_headers(records: Iterable[RecordLike]) -> List[str]:
    """Return the first-seen union of headers plus any missing survey columns."""

    return [text for _, text in _union_columns(records)]


def _lookup(mapping: Mapping[str, Any], header: str) -> str:
    if header in mapping:
        return _cell_text(mapping[header])
    lowered = header.lower()
    for key, value in mapping.items():
        if str(key).lower() == lowered:
            return _cell_text(value)
    return ""


def encode_records(records: Sequence[RecordLike]) -> List[List[str]]:
    """Return ``[header, *rows]`` for ``records``; empty input gives ``[]``."""

    if not records:
        return []
    columns = _union_columns(records)
    matrix: List[List[str]] = [[text for _, text in columns]]
    for record in records:
        mapping = _record_mapping(record)
        matrix.append([_lookup(mapping, key) for key, _ in columns])
    return matrix


def group_by_sheet(records: Iterable[RawRecord]) -> Dict[str, List[RawRecord]]:
    """Group records by originating sheet title, preserving first-seen order."""

    groups: Dict[str, List[RawRecord]] = {}
    for record in records:
        title = record.sheet_title or DEFAULT_SHEET_TITLE
        groups.setdefault(title, []).append(record)
    return groups


def first_sheet_title(records: Iterable[RawRecord]) -> Optional[str]:
    for record in records:
        if record.sheet_title:
            return record.sheet_title
    return None


__all__ = [
    "DEFAULT_SHEET_TITLE",
    "RawRecord",
    "SURVEY_COLUMNS",
    "column_keys",
    "decode_block",
    "decode_rows",
    "encode_records",
    "first_sheet_title",
    "group_by_sheet",
    "union_headers",
]
