from __future__ import annotations

import io
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import pytest
from rich.console import Console
from slack_sdk.errors import SlackApiError

from cloud_monitor.claims.pool import CapellaSnapshot, RegionSnapshot
from cloud_monitor.claims.reconcile import reconcile
from cloud_monitor.model.kinds import ResourceKind
from cloud_monitor.model.resources import (
    Instance,
    ManagedCluster,
    ManagedDbAccount,
    ManagedDbCluster,
    StackDeployment,
    Volume,
)
from cloud_monitor.report.console import render_console_report, section_table
from cloud_monitor.report.sections import (
    HEADER_TEXT,
    ReportSection,
    build_report_sections,
    instance_fields,
    render_fields,
    stack_fields,
    volume_fields,
)
from cloud_monitor.report.slack import SlackReporter
from cloud_monitor.util.errors import ReportError


def _global_ctx():
    snapshot = RegionSnapshot(
        account="111",
        region="us-east-1",
        volumes=[Volume(id="vol-1", region="us-east-1", size_gib=20, volume_type="gp3", state="available")],
        instances=[
            Instance(id="i-db", region="us-east-1", tags={"DatabaseID": "db-1", "cluster": "eks-a"}),
            Instance(id="i-orphan", region="us-east-1", instance_type="t3.micro", key_name="ops"),
        ],
        managed_clusters=[ManagedCluster(id="eks-a", name="eks-a", region="us-east-1", tags={"CloudID": "cloud-1"})],
        stacks=[StackDeployment(id="arn:stack/old", name="old", region="us-east-1", age=timedelta(days=3))],
    )
    capella = CapellaSnapshot(
        db_accounts=[ManagedDbAccount(id="cloud-1", name="main", provider="aws")],
        db_clusters=[
            ManagedDbCluster(id="db-1", name="prod", node_count=3, services=["data"]),
            ManagedDbCluster(id="db-2", name="idle"),
        ],
    )
    return reconcile([snapshot], capella, pool_mode="region")


def test_sections_follow_report_order() -> None:
    sections = build_report_sections(_global_ctx())

    assert [s.kind for s in sections] == [
        ResourceKind.DB_ACCOUNT,
        ResourceKind.DB_CLUSTER,
        ResourceKind.STACK,
        ResourceKind.MANAGED_CLUSTER,
        ResourceKind.INSTANCE,
        ResourceKind.VOLUME,
    ]
    assert sections[0].title == "Couchbase Clouds"
    assert sections[0].emoji == ":thought_balloon:"


def test_cluster_section_lists_orphans_and_clusters_nested_under_clouds() -> None:
    sections = {s.kind: s for s in build_report_sections(_global_ctx())}

    cluster_names = [item["Name"] for item in sections[ResourceKind.DB_CLUSTER].items]
    assert cluster_names == ["idle", "prod"]
    [account] = sections[ResourceKind.DB_ACCOUNT].items
    assert account["EKS clusters"] == "1"
    assert [item.get("Name") or item.get("ID") for item in sections[ResourceKind.INSTANCE].items] == ["i-orphan"]
    # eks-a is owned by cloud-1 so it is not an orphan
    assert sections[ResourceKind.MANAGED_CLUSTER].items == []


def test_field_builders_prefer_name_over_id() -> None:
    named = instance_fields(Instance(id="i-1", tags={"Name": "bastion"}, key_name="ops"))
    unnamed = volume_fields(Volume(id="vol-1"))

    assert named["Name"] == "bastion"
    assert named["Key Name"] == "ops"
    assert "Platform" not in named
    assert unnamed["ID"] == "vol-1"
    assert unnamed["Type"] == "unknown"


def test_stack_fields_render_age_and_creation_time() -> None:
    created = datetime(2024, 3, 5, 15, 4, tzinfo=timezone.utc)
    fields = stack_fields(StackDeployment(id="arn:stack/1", name="vpc", created_at=created, age=timedelta(days=2, hours=1)))

    assert fields["Name"] == "vpc"
    assert fields["Age"] == "2d 1h 0m"
    assert fields["Created"] == "5 Mar, 2024 at 3:04pm (UTC)"
    assert "EC2 Instances" not in fields


def test_render_fields_uses_slack_markdown() -> None:
    assert render_fields({"Name": "vpc", "Region": "us-east-1"}) == "*Name*: `vpc`\n*Region*: `us-east-1`\n"


def test_console_report_renders_every_section() -> None:
    console = Console(file=io.StringIO(), width=200)
    sections = build_report_sections(_global_ctx())

    render_console_report(sections, console=console)

    output = console.file.getvalue()
    assert "Couchbase Clouds (1)" in output
    assert "EBS Volumes (1)" in output
    assert "i-orphan" in output


def test_section_table_unions_columns() -> None:
    section = ReportSection(kind=ResourceKind.INSTANCE, items=[{"ID": "i-1"}, {"Name": "web", "Key Name": "ops"}])

    table = section_table(section)

    assert [c.header for c in table.columns] == ["ID", "Name", "Key Name"]
    assert table.row_count == 2


class _FakeWebClient:
    def __init__(self, fail_parent: bool = False, fail_reply: bool = False) -> None:
        self.messages: List[Dict[str, Any]] = []
        self._fail_parent = fail_parent
        self._fail_reply = fail_reply

    def chat_postMessage(self, **kwargs: Any) -> Dict[str, Any]:
        if "thread_ts" in kwargs and self._fail_reply:
            raise SlackApiError("rate limited", {"error": "ratelimited"})
        if "thread_ts" not in kwargs and self._fail_parent:
            raise SlackApiError("invalid auth", {"error": "invalid_auth"})
        self.messages.append(kwargs)
        return {"ok": True, "ts": f"100.{len(self.messages)}"}


def _sections() -> List[ReportSection]:
    return [
        ReportSection(kind=ResourceKind.STACK, items=[{"Name": "vpc"}, {"Name": "db"}]),
        ReportSection(kind=ResourceKind.VOLUME, items=[{"ID": "vol-1"}]),
    ]


def test_slack_posts_parents_before_threaded_replies() -> None:
    client = _FakeWebClient()
    sleeps: List[float] = []
    reporter = SlackReporter("xoxb-token", "C123", throttle_seconds=0.5, client=client, sleep=sleeps.append)

    thread_ts = reporter.post(_sections())

    parents = [m for m in client.messages if "thread_ts" not in m]
    replies = [m for m in client.messages if "thread_ts" in m]
    assert len(parents) == 3
    assert parents[0]["blocks"][0]["text"]["text"] == HEADER_TEXT
    assert client.messages[:3] == parents
    assert thread_ts == {"Cloudformation Stacks": "100.2", "EBS Volumes": "100.3"}
    assert [r["thread_ts"] for r in replies] == ["100.2", "100.2", "100.3"]
    assert replies[0]["text"] == "*Name*: `vpc`\n"
    assert all(m["channel"] == "C123" for m in client.messages)
    assert sleeps == [0.5, 0.5, 0.5]


def test_slack_parent_failure_is_a_report_error() -> None:
    reporter = SlackReporter("xoxb-token", "C123", client=_FakeWebClient(fail_parent=True), sleep=lambda s: None)

    with pytest.raises(ReportError) as excinfo:
        reporter.post(_sections())
    assert "invalid_auth" in str(excinfo.value)


def test_slack_reply_failure_is_logged_and_skipped(caplog) -> None:
    client = _FakeWebClient(fail_reply=True)
    reporter = SlackReporter("xoxb-token", "C123", throttle_seconds=0, client=client, sleep=lambda s: None)

    with caplog.at_level(logging.WARNING):
        reporter.post(_sections())

    assert len(client.messages) == 3
    assert sum("Unable to send Slack reply" in r.getMessage() for r in caplog.records) == 3


def test_slack_reporter_requires_token_and_channel() -> None:
    with pytest.raises(ReportError):
        SlackReporter(None, "C123", client=_FakeWebClient())
    with pytest.raises(ReportError):
        SlackReporter("xoxb-token", None, client=_FakeWebClient())
