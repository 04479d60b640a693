from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List

from ..claims.context import GlobalContext
from ..model.kinds import KIND_LABELS, ResourceKind
from ..model.resources import (
    CloudResource,
    Instance,
    ManagedCluster,
    ManagedDbAccount,
    ManagedDbCluster,
    StackDeployment,
    Volume,
)
from ..util.time import format_age, format_report_time

HEADER_TEXT = (
    "Below is a *cascading* report of all of our cloud infrastructure in AWS. "
    "If you have a cloud resource in the below list please take the time to consider if it is "
    "currently being used or will be used again today. If the answer is no, please delete the resource.\n\n"
    "If you do have a need to keep a resource please try and ensure you are using as few resources as possible!\n"
)

SECTION_EMOJI = {
    ResourceKind.DB_ACCOUNT: ":thought_balloon:",
    ResourceKind.DB_CLUSTER: ":snow_cloud:",
    ResourceKind.STACK: ":dango:",
    ResourceKind.MANAGED_CLUSTER: ":dizzy:",
    ResourceKind.INSTANCE: ":zap:",
    ResourceKind.VOLUME: ":orange_book:",
}

# Report order, top-down.
SECTION_ORDER = (
    ResourceKind.DB_ACCOUNT,
    ResourceKind.DB_CLUSTER,
    ResourceKind.STACK,
    ResourceKind.MANAGED_CLUSTER,
    ResourceKind.INSTANCE,
    ResourceKind.VOLUME,
)

Fields = Dict[str, str]


@dataclass
class ReportSection:
    kind: ResourceKind
    items: List[Fields] = field(default_factory=list)

    @property
    def title(self) -> str:
        return KIND_LABELS[self.kind]

    @property
    def emoji(self) -> str:
        return SECTION_EMOJI[self.kind]


def _name_or_id(resource: CloudResource) -> Fields:
    if resource.name and resource.name != resource.id:
        return {"Name": resource.name}
    return {"ID": resource.id}


def db_account_fields(account: ManagedDbAccount) -> Fields:
    return {
        "Name": account.name,
        "Provider": account.provider,
        "Region": account.region,
        "Virtual Network CIDR": account.network_cidr,
        "EKS clusters": str(len(account.managed_clusters)),
        "Status": account.status,
    }


def db_cluster_fields(cluster: ManagedDbCluster) -> Fields:
    return {
        "Name": cluster.name,
        "Node Count": str(cluster.node_count),
        "Services": ", ".join(cluster.services),
    }


def stack_fields(stack: StackDeployment) -> Fields:
    out = _name_or_id(stack)
    out["Region"] = stack.region
    out["Resource Count"] = str(len(stack.declared_resources))
    out["Age"] = format_age(stack.age)
    if stack.instances:
        out["EC2 Instances"] = str(len(stack.instances))
    out["Created"] = format_report_time(stack.created_at)
    return out


def managed_cluster_fields(cluster: ManagedCluster) -> Fields:
    return {
        "Name": cluster.name,
        "Worker Nodes": str(len(cluster.instances)),
        "Subnets": str(len(cluster.subnet_ids)),
        "Age": format_age(cluster.age),
        "Created": format_report_time(cluster.created_at),
    }


def instance_fields(instance: Instance) -> Fields:
    out = _name_or_id(instance)
    out["Region"] = instance.region
    out["Type"] = instance.instance_type
    if instance.platform:
        out["Platform"] = instance.platform
    if instance.key_name:
        out["Key Name"] = instance.key_name
    out["Launch Time"] = format_report_time(instance.created_at)
    return out


def volume_fields(volume: Volume) -> Fields:
    out = _name_or_id(volume)
    out["Region"] = volume.region
    out["Type"] = volume.volume_type or "unknown"
    out["Size GiB"] = str(volume.size_gib)
    out["State"] = volume.state
    out["Created"] = format_report_time(volume.created_at)
    return out


FIELD_BUILDERS: Dict[ResourceKind, Callable[..., Fields]] = {
    ResourceKind.DB_ACCOUNT: db_account_fields,
    ResourceKind.DB_CLUSTER: db_cluster_fields,
    ResourceKind.STACK: stack_fields,
    ResourceKind.MANAGED_CLUSTER: managed_cluster_fields,
    ResourceKind.INSTANCE: instance_fields,
    ResourceKind.VOLUME: volume_fields,
}


def nested_db_clusters(accounts: List[ManagedDbAccount]) -> List[ManagedDbCluster]:
    """
    Capella clusters owned through a Capella cloud and one of its EKS clusters.
    """
    out: List[ManagedDbCluster] = []
    for account in accounts:
        for managed in account.managed_clusters.values():
            out.extend(managed.db_clusters[key] for key in sorted(managed.db_clusters))
    return out


def build_report_sections(global_ctx: GlobalContext) -> List[ReportSection]:
    sections: List[ReportSection] = []
    accounts = global_ctx.unclaimed(ResourceKind.DB_ACCOUNT)
    for kind in SECTION_ORDER:
        resources: List[CloudResource] = list(global_ctx.unclaimed(kind))
        if kind is ResourceKind.DB_CLUSTER:
            listed = {r.id for r in resources}
            for cluster in nested_db_clusters(accounts):  # type: ignore[arg-type]
                if cluster.id not in listed:
                    listed.add(cluster.id)
                    resources.append(cluster)
        builder = FIELD_BUILDERS[kind]
        sections.append(ReportSection(kind=kind, items=[builder(r) for r in resources]))
    return sections


def render_fields(fields: Fields) -> str:
    """Slack mrkdwn body: one '*Field*: `value`' line per field."""
    return "".join(f"*{key}*: `{value}`\n" for key, value in fields.items())
