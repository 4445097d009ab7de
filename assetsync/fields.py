"""Canonical field registry and the alias resolver.

Spreadsheet columns are edited by hand and carry localized, inconsistently
spelled headers.  Every logical attribute the engine cares about is listed in
:class:`CanonicalField` and owns an ordered alias tuple in
:data:`FIELD_ALIASES`.  Lookups go through :func:`resolve` only, so adding a
new spelling is a data change rather than a code change.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

_STRIP_RE = re.compile(r"[\s_]")


class CanonicalField(Enum):
    ASSET_NUMBER = "asset_number"
    HOLDER_ID = "in_user"
    USER_ID = "cj_id"
    HOLDER_NAME = "user_name"
    DEPARTMENT = "department"
    MODEL_NAME = "model_name"
    MODEL = "model"
    SERIAL_NUMBER = "serial_number"
    CATEGORY = "category"
    STATE = "state"
    STATUS = "status"
    INSPECTION_TIME = "inspection_time"
    NOTE = "note"
    DATE = "date"
    PRIOR_HOLDER_ID = "ex_user"


FIELD_ALIASES: Dict[CanonicalField, Tuple[str, ...]] = {
    CanonicalField.ASSET_NUMBER: ("assetnumber", "자산번호", "관리번호", "assetno", "no", "관리no"),
    CanonicalField.HOLDER_ID: ("inuser", "사용자id", "사번", "id", "cjid", "user_id", "인사번호", "in_user"),
    CanonicalField.USER_ID: ("cjid", "사번", "id", "cj_id"),
    CanonicalField.HOLDER_NAME: ("username", "사용자", "성함", "성명", "이름", "name", "user"),
    CanonicalField.DEPARTMENT: ("department", "부서", "소속", "part", "팀", "팀명", "부서명"),
    CanonicalField.MODEL_NAME: ("modelname", "모델명", "모델", "품명", "자산명", "기종", "모델코드", "model"),
    CanonicalField.SERIAL_NUMBER: ("serialnumber", "sn", "s/n", "시리얼", "제조번호", "serial_number"),
    CanonicalField.CATEGORY: ("category", "카테고리", "분류", "자산분류"),
    CanonicalField.STATE: ("state", "상태", "구분", "자산구분"),
    CanonicalField.STATUS: ("status", "실사상태", "진행상태"),
    CanonicalField.INSPECTION_TIME: ("inspectiontime", "실사시간", "점검시간", "시간"),
    CanonicalField.NOTE: ("note", "메모", "비고", "사항"),
    CanonicalField.DATE: ("date", "업무일자", "일자", "날짜", "timestamp"),
    CanonicalField.PRIOR_HOLDER_ID: ("ex_user", "이전에사용하던사람", "이전사용자", "asset_in_user", "prev_user"),
}

_ALIAS_CACHE: Dict[CanonicalField, FrozenSet[str]] = {}


def normalise_key(key: Any) -> str:
    """Lower-case ``key`` and drop whitespace and underscores."""

    return _STRIP_RE.sub("", str(key).lower())


def alias_set(field: CanonicalField) -> FrozenSet[str]:
    """Return the normalised alias set for ``field``."""

    cached = _ALIAS_CACHE.get(field)
    if cached is not None:
        return cached
    aliases = FIELD_ALIASES.get(field) or (field.value.lower(),)
    normalised = frozenset(normalise_key(alias) for alias in aliases)
    _ALIAS_CACHE[field] = normalised
    return normalised


def _as_mapping(record: Any) -> Optional[Mapping[str, Any]]:
    values = getattr(record, "values", None)
    if isinstance(values, Mapping):
        return values
    if isinstance(record, Mapping):
        return record
    return None


def resolve_key(record: Any, field: CanonicalField) -> Optional[str]:
    """Return the actual column name in ``record`` that holds ``field``."""

    mapping = _as_mapping(record)
    if mapping is None:
        return None
    targets = alias_set(field)
    for key in mapping.keys():
        if normalise_key(key) in targets:
            return key
    return None


def resolve(record: Any, field: CanonicalField) -> Optional[Any]:
    """Return the value stored under any alias of ``field`` in ``record``.

    ``record`` may be a plain mapping or a :class:`~assetsync.codec.RawRecord`.
    ``None`` is returned when no key matches or the record is not a mapping.
    """

    key = resolve_key(record, field)
    if key is None:
        return None
    mapping = _as_mapping(record)
    return mapping[key] if mapping is not None else None


def resolve_text(record: Any, field: CanonicalField) -> str:
    """Like :func:`resolve` but coerces to a stripped string, ``""`` when absent."""

    value = resolve(record, field)
    if value is None:
        return ""
    return str(value).strip()


__all__ = [
    "CanonicalField",
    "FIELD_ALIASES",
    "alias_set",
    "normalise_key",
    "resolve",
    "resolve_key",
    "resolve_text",
]
