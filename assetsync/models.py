"""Canonical domain records built from raw worksheet rows."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from assetsync.codec import RawRecord
from assetsync.fields import CanonicalField, resolve_key

TERMINATION_STATE = "termination"


class InspectionStatus(str, Enum):
    PENDING = "pending"
    CHECKED = "checked"
    MISSING = "missing"

    @classmethod
    def parse(cls, value: Any) -> "InspectionStatus":
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return cls.PENDING


INSPECTION_COLUMNS: Mapping[CanonicalField, str] = {
    CanonicalField.STATUS: "status",
    CanonicalField.INSPECTION_TIME: "inspection_time",
    CanonicalField.NOTE: "note",
}


@dataclass
class Asset:
    asset_number: str
    category: str = ""
    model_name: str = ""
    serial_number: str = ""
    holder_id: str = ""
    holder_name: str = ""
    department: str = ""
    status: InspectionStatus = InspectionStatus.PENDING
    inspection_time: Optional[str] = None
    note: str = ""
    source: RawRecord = field(default_factory=lambda: RawRecord(values={}))
    edit_order: int = 0

    @property
    def is_checked(self) -> bool:
        return self.status is InspectionStatus.CHECKED

    def to_record(self) -> RawRecord:
        """Return the source row with this asset's inspection state written in.

        Inspection values go into whichever column the source already uses
        for them (``실사상태``, ``비고`` ...) and into the canonical survey
        column otherwise.
        """

        record = self.source.copy()
        inspection_values = {
            CanonicalField.STATUS: self.status.value,
            CanonicalField.INSPECTION_TIME: self.inspection_time or "",
            CanonicalField.NOTE: self.note or "",
        }
        for canonical, value in inspection_values.items():
            column = resolve_key(record, canonical) or INSPECTION_COLUMNS[canonical]
            record.values[column] = value
        return record

    def to_dict(self) -> Dict[str, object]:
        return {
            "asset_number": self.asset_number,
            "category": self.category,
            "model_name": self.model_name,
            "serial_number": self.serial_number,
            "holder_id": self.holder_id,
            "holder_name": self.holder_name,
            "department": self.department,
            "status": self.status.value,
            "inspection_time": self.inspection_time,
            "note": self.note,
            "source": self.source.to_dict(),
            "edit_order": self.edit_order,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Asset":
        source = payload.get("source")
        return cls(
            asset_number=str(payload.get("asset_number") or ""),
            category=str(payload.get("category") or ""),
            model_name=str(payload.get("model_name") or ""),
            serial_number=str(payload.get("serial_number") or ""),
            holder_id=str(payload.get("holder_id") or ""),
            holder_name=str(payload.get("holder_name") or ""),
            department=str(payload.get("department") or ""),
            status=InspectionStatus.parse(payload.get("status")),
            inspection_time=payload.get("inspection_time") or None,
            note=str(payload.get("note") or ""),
            source=RawRecord.from_dict(source) if isinstance(source, Mapping) else RawRecord(values={}),
            edit_order=int(payload.get("edit_order") or 0),
        )


@dataclass
class User:
    user_id: str
    name: str = ""
    department: str = ""
    source: Optional[RawRecord] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "department": self.department,
            "source": self.source.to_dict() if self.source is not None else None,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "User":
        return cls(
            user_id=str(payload.get("user_id") or ""),
            name=str(payload.get("name") or ""),
            department=str(payload.get("department") or ""),
            source=_optional_record(payload.get("source")),
        )


def _optional_record(payload: Any) -> Optional[RawRecord]:
    if isinstance(payload, Mapping):
        return RawRecord.from_dict(payload)
    return None


@dataclass
class TradeLogEntry:
    date: str
    asset_number: str
    holder_id: str = ""
    prior_holder_id: str = ""
    note: str = ""
    source: Optional[RawRecord] = None

    @property
    def key(self) -> tuple:
        return (self.date, self.asset_number, self.holder_id)

    def to_row(self) -> Dict[str, str]:
        return {
            "date": self.date,
            "asset_number": self.asset_number,
            "cj_id": self.holder_id,
            "ex_user": self.prior_holder_id,
            "note": self.note,
        }

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "date": self.date,
            "asset_number": self.asset_number,
            "holder_id": self.holder_id,
            "prior_holder_id": self.prior_holder_id,
            "note": self.note,
        }
        if self.source is not None:
            payload["source"] = self.source.to_dict()
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TradeLogEntry":
        return cls(
            date=str(payload.get("date") or "0000-00-00"),
            asset_number=str(payload.get("asset_number") or "Unknown"),
            holder_id=str(payload.get("holder_id") or ""),
            prior_holder_id=str(payload.get("prior_holder_id") or ""),
            note=str(payload.get("note") or ""),
            source=_optional_record(payload.get("source")),
        )


@dataclass
class RemoteFile:
    id: str
    name: str
    modified_time: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"id": self.id, "name": self.name, "modifiedTime": self.modified_time}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RemoteFile":
        return cls(
            id=str(payload.get("id") or ""),
            name=str(payload.get("name") or ""),
            modified_time=payload.get("modifiedTime") or payload.get("modified_time"),
        )


@dataclass
class Session:
    """One inspection round bound to a remote output file."""

    file: RemoteFile
    assets: List[Asset] = field(default_factory=list)
    scanned_ids: List[str] = field(default_factory=list)
    dirty: bool = False
    last_master_sync: Optional[datetime] = None

    def find(self, asset_number: str) -> Optional[Asset]:
        for asset in self.assets:
            if asset.asset_number == asset_number:
                return asset
        return None

    def mark_scanned(self, asset_number: str) -> None:
        """Append ``asset_number`` to the scanned list, moving it to the tail."""

        self.scanned_ids = [item for item in self.scanned_ids if item != asset_number]
        self.scanned_ids.append(asset_number)

    def unmark_scanned(self, asset_number: str) -> None:
        self.scanned_ids = [item for item in self.scanned_ids if item != asset_number]

    def next_edit_order(self) -> int:
        return max((asset.edit_order for asset in self.assets), default=0) + 1


__all__ = [
    "Asset",
    "INSPECTION_COLUMNS",
    "InspectionStatus",
    "RemoteFile",
    "Session",
    "TERMINATION_STATE",
    "TradeLogEntry",
    "User",
]
