"""Join and deduplication of raw worksheet records into canonical entities."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from assetsync.classifier import Relation
from assetsync.codec import RawRecord
from assetsync.fields import CanonicalField, resolve_text
from assetsync.models import TERMINATION_STATE, Asset, InspectionStatus, TradeLogEntry, User

logger = logging.getLogger(__name__)


@dataclass
class Partition:
    assets: List[RawRecord] = field(default_factory=list)
    users: List[RawRecord] = field(default_factory=list)
    trade: List[RawRecord] = field(default_factory=list)
    unknown: List[RawRecord] = field(default_factory=list)


def partition(records: Iterable[RawRecord]) -> Partition:
    """Bucket ``records`` by relation tag, keeping the original order."""

    buckets = Partition()
    targets = {
        Relation.ASSETS: buckets.assets,
        Relation.USERS: buckets.users,
        Relation.TRADE: buckets.trade,
    }
    for record in records:
        targets.get(record.relation, buckets.unknown).append(record)
    if buckets.unknown:
        logger.info("Ignoring %d records from unclassified sheets", len(buckets.unknown))
    return buckets


def is_terminated(record: RawRecord) -> bool:
    return resolve_text(record, CanonicalField.STATE).lower() == TERMINATION_STATE


def build_users(records: Iterable[RawRecord]) -> List[User]:
    users: List[User] = []
    for record in records:
        user_id = resolve_text(record, CanonicalField.USER_ID)
        if not user_id:
            continue
        users.append(
            User(
                user_id=user_id,
                name=resolve_text(record, CanonicalField.HOLDER_NAME),
                department=resolve_text(record, CanonicalField.DEPARTMENT),
                source=record,
            )
        )
    return users


def index_users(users: Iterable[User]) -> Dict[str, User]:
    """Return users keyed by trimmed id; the first user with a given id wins."""

    index: Dict[str, User] = {}
    for user in users:
        key = str(user.user_id).strip()
        if key and key not in index:
            index[key] = user
    return index


def lookup_user(users: Dict[str, User], holder_id: object) -> Optional[User]:
    if holder_id is None:
        return None
    key = str(holder_id).strip()
    if not key:
        return None
    return users.get(key)


def asset_metadata(record: RawRecord, users: Dict[str, User]) -> Dict[str, str]:
    """Return the master-owned attributes of an asset row, joined with its holder."""

    holder_id = resolve_text(record, CanonicalField.HOLDER_ID)
    user = lookup_user(users, holder_id)
    if user is not None:
        holder_name = user.name
        department = user.department
    else:
        holder_name = resolve_text(record, CanonicalField.HOLDER_NAME) or holder_id
        department = resolve_text(record, CanonicalField.DEPARTMENT)
    return {
        "category": resolve_text(record, CanonicalField.CATEGORY),
        "model_name": resolve_text(record, CanonicalField.MODEL_NAME)
        or resolve_text(record, CanonicalField.MODEL),
        "serial_number": resolve_text(record, CanonicalField.SERIAL_NUMBER),
        "holder_id": holder_id,
        "holder_name": holder_name,
        "department": department,
    }


def iter_live_asset_rows(records: Iterable[RawRecord]) -> Iterable[RawRecord]:
    """Yield asset rows that have a number, are not terminated and not repeated."""

    seen = set()
    for record in records:
        number = resolve_text(record, CanonicalField.ASSET_NUMBER)
        if not number or number in seen:
            continue
        if is_terminated(record):
            continue
        seen.add(number)
        yield record


def build_assets(records: Sequence[RawRecord], users: Iterable[User]) -> List[Asset]:
    """Return canonical assets for the asset rows in ``records``."""

    user_index = index_users(users)
    assets: List[Asset] = []
    for record in iter_live_asset_rows(records):
        metadata = asset_metadata(record, user_index)
        inspection_time = resolve_text(record, CanonicalField.INSPECTION_TIME)
        assets.append(
            Asset(
                asset_number=resolve_text(record, CanonicalField.ASSET_NUMBER),
                status=InspectionStatus.parse(resolve_text(record, CanonicalField.STATUS)),
                inspection_time=inspection_time or None,
                note=resolve_text(record, CanonicalField.NOTE),
                source=record,
                **metadata,
            )
        )
    logger.debug("Joined %d asset rows into %d assets", len(records), len(assets))
    return assets


def build_trade_log(records: Iterable[RawRecord]) -> List[TradeLogEntry]:
    entries: List[TradeLogEntry] = []
    for record in records:
        entries.append(
            TradeLogEntry(
                date=resolve_text(record, CanonicalField.DATE) or "0000-00-00",
                asset_number=resolve_text(record, CanonicalField.ASSET_NUMBER) or "Unknown",
                holder_id=resolve_text(record, CanonicalField.USER_ID),
                prior_holder_id=resolve_text(record, CanonicalField.PRIOR_HOLDER_ID),
                note=resolve_text(record, CanonicalField.NOTE),
                source=record,
            )
        )
    return entries


def load_relations(records: Sequence[RawRecord], previous_users: Sequence[User] = ()) -> "JoinResult":
    """Partition a fetched workbook and build every relation in one pass.

    When the workbook carries no user sheet the ``previous_users`` are kept,
    so a session file (assets only) can still be joined against the master's
    user list.
    """

    buckets = partition(records)
    users = build_users(buckets.users) if buckets.users else list(previous_users)
    assets = build_assets(buckets.assets, users)
    trade = build_trade_log(buckets.trade)
    logger.info(
        "Raw mapping: assets=%d users=%d trade=%d -> %d assets",
        len(buckets.assets),
        len(buckets.users),
        len(buckets.trade),
        len(assets),
    )
    return JoinResult(assets=assets, users=users, trade=trade, users_replaced=bool(buckets.users))


@dataclass
class JoinResult:
    assets: List[Asset]
    users: List[User]
    trade: List[TradeLogEntry]
    users_replaced: bool = False


__all__ = [
    "JoinResult",
    "Partition",
    "asset_metadata",
    "build_assets",
    "build_trade_log",
    "build_users",
    "index_users",
    "is_terminated",
    "iter_live_asset_rows",
    "load_relations",
    "lookup_user",
    "partition",
]
