"""Merge an updated master snapshot into an in-progress inspection session.

Field ownership is spelled out in :data:`MERGE_POLICY`: metadata comes from
the master, inspection state belongs to the session.  Assets that disappear
from the master are kept as they are.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from assetsync.codec import RawRecord, column_keys, first_sheet_title
from assetsync.fields import CanonicalField, resolve_key, resolve_text
from assetsync.join import asset_metadata, index_users, iter_live_asset_rows
from assetsync.models import Asset, InspectionStatus, User

logger = logging.getLogger(__name__)


class Owner(Enum):
    MASTER = "master"
    LOCAL = "local"


MERGE_POLICY: Mapping[str, Owner] = {
    "category": Owner.MASTER,
    "model_name": Owner.MASTER,
    "serial_number": Owner.MASTER,
    "holder_id": Owner.MASTER,
    "holder_name": Owner.MASTER,
    "department": Owner.MASTER,
    "status": Owner.LOCAL,
    "inspection_time": Owner.LOCAL,
    "note": Owner.LOCAL,
    "edit_order": Owner.LOCAL,
}

_LOCAL_COLUMNS = (CanonicalField.STATUS, CanonicalField.INSPECTION_TIME, CanonicalField.NOTE)


@dataclass
class MergeResult:
    assets: List[Asset]
    added: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    unchanged: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated)


def _master_fields() -> List[str]:
    return [name for name, owner in MERGE_POLICY.items() if owner is Owner.MASTER]


def _overlay_source(local: RawRecord, master: RawRecord) -> RawRecord:
    """Return ``local`` with master cell values laid over it.

    Columns that hold session-owned inspection state keep the local value,
    and the record keeps its session provenance so write-back targets the
    session sheet.
    """

    merged = local.copy()
    protected = {
        key
        for key in (resolve_key(local, canonical) for canonical in _LOCAL_COLUMNS)
        if key is not None
    }
    protected.update(
        key
        for key in (resolve_key(master, canonical) for canonical in _LOCAL_COLUMNS)
        if key is not None
    )
    known = set(column_keys(merged.headers))
    for key, value in master.values.items():
        if key in protected:
            continue
        merged.values[key] = value
        if merged.headers and key not in known:
            merged.headers.append(key)
            known.add(key)
    return merged


def _retarget(master: RawRecord, sheet_title: Optional[str]) -> RawRecord:
    record = master.copy()
    if sheet_title:
        record.sheet_title = sheet_title
    record.row_number = 0
    for canonical in _LOCAL_COLUMNS:
        key = resolve_key(record, canonical)
        if key is not None:
            record.values[key] = ""
    return record


def merge_master(
    current: Sequence[Asset],
    master_records: Iterable[RawRecord],
    users: Iterable[User],
) -> MergeResult:
    """Return the session asset list updated with ``master_records``.

    ``current`` is not modified; the caller swaps the returned list in.
    """

    user_index = index_users(users)
    merged: Dict[str, Asset] = {}
    for asset in current:
        if asset.asset_number and asset.asset_number not in merged:
            merged[asset.asset_number] = asset

    session_sheet = first_sheet_title(asset.source for asset in current)
    result = MergeResult(assets=[])
    master_fields = _master_fields()

    for record in iter_live_asset_rows(master_records):
        number = resolve_text(record, CanonicalField.ASSET_NUMBER)
        metadata = asset_metadata(record, user_index)
        existing = merged.get(number)
        if existing is None:
            merged[number] = Asset(
                asset_number=number,
                status=InspectionStatus.PENDING,
                inspection_time=None,
                note="",
                source=_retarget(record, session_sheet),
                **metadata,
            )
            result.added.append(number)
            continue

        updates = {name: metadata[name] for name in master_fields}
        source = _overlay_source(existing.source, record)
        metadata_changed = any(getattr(existing, name) != value for name, value in updates.items())
        if metadata_changed or source.values != existing.source.values:
            merged[number] = replace(existing, source=source, **updates)
            result.updated.append(number)
        else:
            result.unchanged += 1

    result.assets = list(merged.values())
    logger.info(
        "Master merge: %d added, %d updated, %d unchanged, %d total",
        len(result.added),
        len(result.updated),
        result.unchanged,
        len(result.assets),
    )
    return result


def keep_local_inspection(remote: Sequence[Asset], local: Sequence[Asset]) -> List[Asset]:
    """Return ``remote`` with the locally owned fields of ``local`` laid over it.

    Used when a session is re-read while it still holds unsaved edits: the
    remote copy supplies metadata, the session keeps its inspection state.
    Local assets missing from ``remote`` are kept at the end.
    """

    local_fields = [name for name, owner in MERGE_POLICY.items() if owner is Owner.LOCAL]
    pending: Dict[str, Asset] = {}
    for asset in local:
        pending.setdefault(asset.asset_number, asset)

    merged: List[Asset] = []
    for asset in remote:
        mine = pending.pop(asset.asset_number, None)
        if mine is not None:
            asset = replace(asset, **{name: getattr(mine, name) for name in local_fields})
        merged.append(asset)
    merged.extend(pending.values())
    return merged


__all__ = ["MERGE_POLICY", "MergeResult", "Owner", "keep_local_inspection", "merge_master"]
