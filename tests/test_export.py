from __future__ import annotations

import json
from datetime import datetime, timezone

from cloud_monitor.claims.pool import CapellaSnapshot, RegionSnapshot
from cloud_monitor.claims.reconcile import reconcile
from cloud_monitor.export.jsonl import write_json, write_jsonl
from cloud_monitor.export.records import (
    forest,
    resource_key,
    resource_record,
    run_summary,
    unclaimed_records,
)
from cloud_monitor.model.resources import (
    BlockDeviceMapping,
    Instance,
    ManagedDbAccount,
    ManagedDbCluster,
    StackDeployment,
    Volume,
)

COLLECTED_AT = "2024-06-01T00:00:00+00:00"


def _global_ctx():
    snapshot = RegionSnapshot(
        account="111",
        region="us-east-1",
        volumes=[Volume(id="vol-1", region="us-east-1", account="111"), Volume(id="vol-2", account="111", region="us-east-1")],
        instances=[
            Instance(
                id="i-db",
                account="111",
                region="us-east-1",
                tags={"DatabaseID": "db-1"},
                block_device_mappings=[BlockDeviceMapping("/dev/xvda", "vol-1")],
            )
        ],
        stacks=[
            StackDeployment(
                id="arn:stack/secrets",
                account="111",
                region="us-east-1",
                parameters={"DbPassword": "hunter2", "Env": "dev"},
            )
        ],
    )
    capella = CapellaSnapshot(
        db_accounts=[ManagedDbAccount(id="cloud-1")],
        db_clusters=[ManagedDbCluster(id="db-1", name="prod")],
    )
    return reconcile([snapshot], capella, pool_mode="region")


def test_resource_key_scopes_regional_kinds_only() -> None:
    assert resource_key(Volume(id="vol-1", account="111", region="us-east-1")) == "volume:111/us-east-1:vol-1"
    assert resource_key(ManagedDbCluster(id="db-1", region="us-east-1")) == "db_cluster:db-1"


def test_resource_record_sanitizes_values() -> None:
    created = datetime(2024, 1, 2, tzinfo=timezone.utc)
    stack = StackDeployment(id="arn:stack/1", name="vpc", created_at=created, parameters={"DbPassword": "x", "Env": "dev"})

    record = resource_record(stack, COLLECTED_AT)

    assert record["createdAt"] == "2024-01-02T00:00:00+00:00"
    assert record["details"]["parameters"] == {"DbPassword": "<redacted>", "Env": "dev"}
    assert record["collectedAt"] == COLLECTED_AT


def test_unclaimed_records_cover_every_orphan_sorted_by_key() -> None:
    records = unclaimed_records(_global_ctx(), COLLECTED_AT)

    keys = [r["resourceKey"] for r in records]
    assert keys == sorted(keys)
    assert keys == [
        "db_account:cloud-1",
        "db_cluster:db-1",
        "stack:111/us-east-1:arn:stack/secrets",
        "volume:111/us-east-1:vol-2",
    ]
    db = next(r for r in records if r["kind"] == "db_cluster")
    assert db["details"]["claimedInstances"] == ["i-db"]


def test_forest_nests_claimed_children_under_roots() -> None:
    trees = forest(_global_ctx())

    [root] = trees["111/us-east-1"]
    assert root["id"] == "db-1"
    [instance] = root["children"]
    assert instance["id"] == "i-db"
    assert [v["id"] for v in instance["children"]] == ["vol-1"]


def test_run_summary_counts_and_stages() -> None:
    summary = run_summary(_global_ctx())

    assert summary["pool_mode"] == "region"
    assert summary["totals"]["volume"] == {"claimed": 1, "unclaimed": 1}
    assert summary["totals"]["instance"] == {"claimed": 1, "unclaimed": 0}
    region = summary["regions"]["111/us-east-1"]
    assert region["db_cluster"] == {"claimed": 0, "unclaimed": 1}
    assert [s["name"] for s in region["stages"]][0] == "instance_volumes"
    assert region["stages"][0]["drained"] == {"volume": 1}


def test_writers_are_deterministic(tmp_path) -> None:
    records = unclaimed_records(_global_ctx(), COLLECTED_AT)
    a = tmp_path / "a" / "unclaimed.jsonl"
    b = tmp_path / "b" / "unclaimed.jsonl"

    write_jsonl(records, a)
    write_jsonl(list(reversed(records)), b)
    write_json({"b": 1, "a": [1]}, tmp_path / "summary.json")

    assert a.read_text(encoding="utf-8") == b.read_text(encoding="utf-8")
    lines = a.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 4
    assert "hunter2" not in a.read_text(encoding="utf-8")
    assert json.loads((tmp_path / "summary.json").read_text(encoding="utf-8")) == {"a": [1], "b": 1}
