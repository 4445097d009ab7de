from __future__ import annotations

import sys
from pathlib import Path
from typing import List

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from assetsync.classifier import Relation
from assetsync.codec import RawRecord, decode_block
from assetsync.join import build_assets, build_trade_log, build_users, load_relations, partition
from assetsync.models import InspectionStatus


def _assets(rows: List[List[str]]) -> List[RawRecord]:
    return decode_block(rows, "Assets", Relation.ASSETS)


USERS = build_users(
    decode_block([["사번", "성명", "부서"], [" u1 ", "Kim", "Dev"], ["u2", "Lee", "Ops"]], "HR", Relation.USERS)
)


def test_duplicates_keep_the_first_row() -> None:
    records = _assets(
        [
            ["자산번호", "사번", "모델명"],
            ["A-1", "u1", "first"],
            ["A-1", "u2", "second"],
            ["A-2", "u2", "other"],
        ]
    )

    assets = build_assets(records, USERS)

    assert [asset.asset_number for asset in assets] == ["A-1", "A-2"]
    assert assets[0].model_name == "first"


def test_dedup_is_idempotent() -> None:
    records = _assets([["No", "사번"], ["A-1", "u1"], ["A-1", "u1"], ["A-2", "u2"]])

    once = build_assets(records, USERS)
    twice = build_assets([asset.source for asset in once], USERS)

    assert [asset.asset_number for asset in twice] == [asset.asset_number for asset in once]


def test_terminated_and_numberless_rows_are_excluded() -> None:
    records = _assets(
        [
            ["관리번호", "상태"],
            ["A-1", "TERMINATION"],
            ["", "use"],
            ["A-2", "use"],
        ]
    )

    assert [asset.asset_number for asset in build_assets(records, USERS)] == ["A-2"]


def test_terminated_duplicate_does_not_hide_a_later_live_row() -> None:
    records = _assets([["No", "State"], ["A-1", "termination"], ["A-1", "use"]])

    assert [asset.asset_number for asset in build_assets(records, USERS)] == ["A-1"]


def test_holder_join_uses_trimmed_user_id() -> None:
    records = _assets([["No", "In User"], ["A-1", "u1 "]])

    asset = build_assets(records, USERS)[0]

    assert asset.holder_id == "u1"
    assert asset.holder_name == "Kim"
    assert asset.department == "Dev"


def test_unmatched_holder_falls_back_to_raw_fields_then_id() -> None:
    records = _assets(
        [
            ["No", "사번", "성명", "부서"],
            ["A-1", "u7", "Park", "Sales"],
            ["A-2", "u8", "", ""],
        ]
    )

    first, second = build_assets(records, USERS)

    assert (first.holder_name, first.department) == ("Park", "Sales")
    assert (second.holder_name, second.department) == ("u8", "")


def test_status_is_normalised_and_defaults_to_pending() -> None:
    records = _assets(
        [
            ["No", "실사상태", "실사시간", "메모"],
            ["A-1", "Checked", "2024-01-01 10:00", "ok"],
            ["A-2", "", "", ""],
            ["A-3", "lost?", "", ""],
        ]
    )

    first, second, third = build_assets(records, USERS)

    assert first.status is InspectionStatus.CHECKED
    assert first.inspection_time == "2024-01-01 10:00"
    assert first.note == "ok"
    assert second.status is InspectionStatus.PENDING
    assert second.inspection_time is None
    assert third.status is InspectionStatus.PENDING


def test_model_name_falls_back_to_model_column() -> None:
    records = _assets([["No", "Model"], ["A-1", "X1"]])

    assert build_assets(records, USERS)[0].model_name == "X1"


def test_trade_log_defaults_missing_date_and_asset() -> None:
    records = decode_block(
        [["일자", "관리번호", "사번", "이전사용자", "비고"], ["", "", "u1", "u2", "moved"]],
        "거래이력",
        Relation.TRADE,
    )

    entry = build_trade_log(records)[0]

    assert (entry.date, entry.asset_number) == ("0000-00-00", "Unknown")
    assert (entry.holder_id, entry.prior_holder_id, entry.note) == ("u1", "u2", "moved")


def test_partition_and_load_relations_keep_previous_users_without_user_sheet() -> None:
    records = _assets([["No", "사번"], ["A-1", "u2"]]) + [
        RawRecord(values={"x": "y"}, relation=Relation.UNKNOWN)
    ]

    buckets = partition(records)
    joined = load_relations(records, previous_users=USERS)

    assert len(buckets.assets) == 1 and len(buckets.unknown) == 1
    assert joined.users_replaced is False
    assert joined.users == USERS
    assert joined.assets[0].holder_name == "Lee"
