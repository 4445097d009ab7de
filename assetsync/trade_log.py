"""Movement history grouping for display."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from assetsync.join import index_users, lookup_user
from assetsync.models import TradeLogEntry, User

DEFAULT_LIMIT = 20


@dataclass
class TradeLogView:
    entry: TradeLogEntry
    holder_name: str = ""
    holder_department: str = ""
    prior_holder_name: str = ""
    prior_holder_department: str = ""


@dataclass
class TradeLogGroup:
    asset_number: str
    entries: List[TradeLogView] = field(default_factory=list)

    @property
    def last_update(self) -> str:
        return max((view.entry.date for view in self.entries), default="")


def dedupe(entries: Iterable[TradeLogEntry]) -> List[TradeLogEntry]:
    """Drop entries whose ``(date, asset, holder)`` key was already seen."""

    unique: Dict[tuple, TradeLogEntry] = {}
    for entry in entries:
        unique.setdefault(entry.key, entry)
    return list(unique.values())


def _matches(entry: TradeLogEntry, query: str) -> bool:
    haystack = [entry.date, entry.asset_number, entry.holder_id, entry.prior_holder_id, entry.note]
    if entry.source is not None:
        haystack.extend(str(value) for value in entry.source.values.values())
    return any(query in (value or "").lower() for value in haystack)


def _annotate(entry: TradeLogEntry, users: Dict[str, User]) -> TradeLogView:
    holder = lookup_user(users, entry.holder_id)
    prior = lookup_user(users, entry.prior_holder_id)
    return TradeLogView(
        entry=entry,
        holder_name=holder.name if holder else entry.holder_id,
        holder_department=holder.department if holder else "",
        prior_holder_name=prior.name if prior else entry.prior_holder_id,
        prior_holder_department=prior.department if prior else "",
    )


def aggregate(
    entries: Iterable[TradeLogEntry],
    users: Iterable[User] = (),
    *,
    limit: int = DEFAULT_LIMIT,
    query: Optional[str] = None,
) -> List[TradeLogGroup]:
    """Return per-asset history groups, most recently updated first."""

    user_index = index_users(users)
    unique = dedupe(entries)
    if query:
        needle = query.lower()
        unique = [entry for entry in unique if _matches(entry, needle)]

    groups: Dict[str, TradeLogGroup] = {}
    for entry in unique:
        group = groups.setdefault(entry.asset_number, TradeLogGroup(asset_number=entry.asset_number))
        group.entries.append(_annotate(entry, user_index))

    for group in groups.values():
        group.entries.sort(key=lambda view: view.entry.date)

    ordered = sorted(groups.values(), key=lambda group: group.last_update, reverse=True)
    return ordered[: max(0, limit)]


__all__ = ["DEFAULT_LIMIT", "TradeLogGroup", "TradeLogView", "aggregate", "dedupe"]
