"""Worksheet title classification.

A workbook may hold any number of tabs; only three semantic shapes are
understood.  Titles are normalised (lower-cased, whitespace removed) and
tested in a fixed priority order: Users keywords, Trade keywords, then the
exact Assets aliases.  The substring checks run first so that a tab such as
``"users"`` or ``"거래이력"`` is never swallowed by the catch-all asset names.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Iterable, List, Tuple

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s")


class Relation(str, Enum):
    ASSETS = "assets"
    USERS = "users"
    TRADE = "trade"
    UNKNOWN = "unknown"


ASSET_TITLES: Tuple[str, ...] = ("assets", "자산현황", "자산", "현황", "sheet1", "시트1")
USER_KEYWORDS: Tuple[str, ...] = ("user", "인사", "사용자", "사원")
TRADE_KEYWORDS: Tuple[str, ...] = ("trade", "거래", "변동", "이력")


def normalise_title(title: str) -> str:
    return _WHITESPACE_RE.sub("", (title or "").lower())


def classify_title(title: str) -> Relation:
    """Return the relation represented by a worksheet ``title``."""

    normalised = normalise_title(title)
    if not normalised:
        return Relation.UNKNOWN
    if any(keyword in normalised for keyword in USER_KEYWORDS):
        return Relation.USERS
    if any(keyword in normalised for keyword in TRADE_KEYWORDS):
        return Relation.TRADE
    if normalised in ASSET_TITLES:
        return Relation.ASSETS
    return Relation.UNKNOWN


def classify_titles(titles: Iterable[str]) -> Tuple[List[Tuple[str, Relation]], List[str]]:
    """Split ``titles`` into ``(recognised, skipped)``.

    Skipped titles are logged so that a renamed tab shows up in the log
    instead of silently dropping its rows.
    """

    recognised: List[Tuple[str, Relation]] = []
    skipped: List[str] = []
    for title in titles:
        relation = classify_title(title)
        if relation is Relation.UNKNOWN:
            logger.info("Skipping sheet %r (no relation matched)", title)
            skipped.append(title)
            continue
        logger.debug("Sheet %r classified as %s", title, relation.value)
        recognised.append((title, relation))
    return recognised, skipped


def relation_from_tag(tag: object) -> Relation:
    try:
        return Relation(str(tag))
    except ValueError:
        return Relation.UNKNOWN


__all__ = [
    "ASSET_TITLES",
    "Relation",
    "TRADE_KEYWORDS",
    "USER_KEYWORDS",
    "classify_title",
    "classify_titles",
    "normalise_title",
    "relation_from_tag",
]
