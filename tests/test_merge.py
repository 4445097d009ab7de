from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from assetsync.classifier import Relation
from assetsync.codec import decode_block
from assetsync.join import build_assets, build_users
from assetsync.merge import MERGE_POLICY, Owner, keep_local_inspection, merge_master
from assetsync.models import InspectionStatus

USERS = build_users(
    decode_block([["사번", "성명", "부서"], ["u1", "Kim", "Dev"], ["u2", "Lee", "Ops"]], "HR", Relation.USERS)
)


def _session_assets():
    records = decode_block(
        [
            ["자산번호", "사번", "모델명", "status", "inspection_time", "note"],
            ["A-1", "u1", "X1", "checked", "2024-01-01 09:00", "desk 3"],
            ["A-2", "u2", "Dell", "pending", "", ""],
        ],
        "Sheet1",
        Relation.ASSETS,
    )
    assets = build_assets(records, USERS)
    assets[0] = replace(assets[0], edit_order=7)
    return assets


def _master(rows):
    header = ["Asset Number", "In User", "Model Name", "State", "Status", "Note"]
    return decode_block([header, *rows], "Assets", Relation.ASSETS)


def test_policy_table_splits_metadata_and_inspection_fields() -> None:
    assert MERGE_POLICY["department"] is Owner.MASTER
    assert MERGE_POLICY["status"] is Owner.LOCAL
    assert MERGE_POLICY["note"] is Owner.LOCAL


def test_merge_updates_metadata_and_keeps_local_inspection_state() -> None:
    current = _session_assets()
    master = _master([["A-1", "u2", "X1 Carbon", "use", "pending", "master note"]])

    result = merge_master(current, master, USERS)

    merged = result.assets[0]
    assert merged.model_name == "X1 Carbon"
    assert (merged.holder_id, merged.holder_name, merged.department) == ("u2", "Lee", "Ops")
    assert merged.status is InspectionStatus.CHECKED
    assert merged.inspection_time == "2024-01-01 09:00"
    assert merged.note == "desk 3"
    assert merged.edit_order == 7
    assert result.updated == ["A-1"]


def test_merge_overlays_source_values_but_protects_inspection_columns() -> None:
    current = _session_assets()
    master = _master([["A-1", "u2", "X1 Carbon", "use", "pending", "master note"]])

    source = merge_master(current, master, USERS).assets[0].source

    assert source.sheet_title == "Sheet1"
    assert source.values["Model Name"] == "X1 Carbon"
    assert source.values["status"] == "checked"
    assert source.values["note"] == "desk 3"
    assert "Status" not in source.values and "Note" not in source.values


def test_merge_never_deletes_local_assets() -> None:
    current = _session_assets()

    result = merge_master(current, _master([]), USERS)

    assert [asset.asset_number for asset in result.assets] == ["A-1", "A-2"]
    assert result.changed is False


def test_merge_adds_new_assets_as_pending_on_the_session_sheet() -> None:
    current = _session_assets()
    master = _master(
        [
            ["A-3", "u1", "iPad", "use", "checked", "from master"],
            ["A-4", "u1", "Gone", "termination", "", ""],
        ]
    )

    result = merge_master(current, master, USERS)

    assert result.added == ["A-3"]
    added = result.assets[-1]
    assert added.asset_number == "A-3"
    assert added.status is InspectionStatus.PENDING
    assert added.inspection_time is None and added.note == ""
    assert added.holder_name == "Kim"
    assert added.source.sheet_title == "Sheet1"
    assert added.source.values["Status"] == "" and added.source.values["Note"] == ""


def test_merge_does_not_modify_the_current_list() -> None:
    current = _session_assets()
    snapshot = list(current)

    merge_master(current, _master([["A-1", "u2", "Other", "use", "", ""]]), USERS)

    assert current == snapshot
    assert current[0].model_name == "X1"


def test_unchanged_rows_are_counted() -> None:
    current = _session_assets()
    master = _master([["A-2", "u2", "Dell", "use", "", ""]])

    first = merge_master(current, master, USERS)
    second = merge_master(first.assets, master, USERS)

    assert second.unchanged == 1
    assert second.changed is False


def test_keep_local_inspection_takes_metadata_from_the_remote_copy() -> None:
    local = _session_assets()
    remote = [
        replace(local[0], holder_id="u2", status=InspectionStatus.PENDING, inspection_time=None, note=""),
        replace(local[1], model_name="Dell 27"),
    ]

    merged = keep_local_inspection(remote, local[:1])

    assert merged[0].holder_id == "u2"
    assert merged[0].status is InspectionStatus.CHECKED
    assert (merged[0].inspection_time, merged[0].note, merged[0].edit_order) == ("2024-01-01 09:00", "desk 3", 7)
    assert merged[1].model_name == "Dell 27"


def test_keep_local_inspection_keeps_assets_missing_remotely() -> None:
    local = _session_assets()

    merged = keep_local_inspection(local[1:], local)

    assert [asset.asset_number for asset in merged] == ["A-2", "A-1"]


def test_merge_overlay_keeps_repeated_header_columns() -> None:
    current = build_assets(
        decode_block(
            [["자산번호", "사번", "memo", "memo"], ["A-1", "u1", "left", "right"]], "Sheet1", Relation.ASSETS
        ),
        USERS,
    )
    master = decode_block(
        [["Asset Number", "In User", "memo", "memo"], ["A-1", "u1", "left", "moved"]], "Assets", Relation.ASSETS
    )

    source = merge_master(current, master, USERS).assets[0].source

    assert source.values["memo#4"] == "moved"
    assert source.headers == ["자산번호", "사번", "memo", "memo", "Asset Number", "In User"]
