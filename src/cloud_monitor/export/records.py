from __future__ import annotations

from typing import Any, Callable, Dict, List

from ..claims.context import GlobalContext
from ..model.kinds import ResourceKind
from ..model.resources import (
    CloudResource,
    Instance,
    ManagedCluster,
    ManagedDbAccount,
    ManagedDbCluster,
    StackDeployment,
    Volume,
)
from ..util.serialization import sanitize_for_json

Record = Dict[str, Any]

RECORD_FIELDS = (
    "resourceKey",
    "kind",
    "id",
    "name",
    "account",
    "region",
    "createdAt",
    "tags",
    "details",
    "collectedAt",
)


def resource_key(resource: CloudResource) -> str:
    """
    Stable identity across runs. Capella entries are not bound to an AWS
    account or region, so their key is kind and ID only.
    """
    if resource.kind.process_wide:
        return f"{resource.kind.value}:{resource.id}"
    return f"{resource.kind.value}:{resource.account}/{resource.region}:{resource.id}"


def _volume_details(v: Volume) -> Dict[str, Any]:
    return {"sizeGiB": v.size_gib, "volumeType": v.volume_type, "state": v.state}


def _instance_details(i: Instance) -> Dict[str, Any]:
    return {
        "subnetId": i.subnet_id,
        "instanceType": i.instance_type,
        "keyName": i.key_name,
        "platform": i.platform,
        "volumeIds": sorted(m.volume_id for m in i.block_device_mappings),
        "claimedVolumes": sorted(i.volumes),
    }


def _db_cluster_details(c: ManagedDbCluster) -> Dict[str, Any]:
    return {
        "nodeCount": c.node_count,
        "services": list(c.services),
        "environment": c.environment,
        "linkedClusterName": c.linked_cluster_name,
        "claimedInstances": sorted(i.id for i in c.instances.values()),
    }


def _managed_cluster_details(c: ManagedCluster) -> Dict[str, Any]:
    return {
        "networkId": c.network_id,
        "subnetIds": list(c.subnet_ids),
        "claimedInstances": sorted(c.instances),
        "claimedDbClusters": sorted(c.db_clusters),
    }


def _stack_details(s: StackDeployment) -> Dict[str, Any]:
    return {
        "parameters": dict(s.parameters),
        "resourceCount": len(s.declared_resources),
        "claimedInstances": sorted(s.instances),
    }


def _db_account_details(a: ManagedDbAccount) -> Dict[str, Any]:
    return {
        "provider": a.provider,
        "status": a.status,
        "networkCidr": a.network_cidr,
        "networkId": a.network_id,
        "claimedManagedClusters": sorted(m.id for m in a.managed_clusters.values()),
        "claimedStack": a.stack.id if a.stack is not None else None,
    }


DETAIL_BUILDERS: Dict[ResourceKind, Callable[[Any], Dict[str, Any]]] = {
    ResourceKind.VOLUME: _volume_details,
    ResourceKind.INSTANCE: _instance_details,
    ResourceKind.DB_CLUSTER: _db_cluster_details,
    ResourceKind.MANAGED_CLUSTER: _managed_cluster_details,
    ResourceKind.STACK: _stack_details,
    ResourceKind.DB_ACCOUNT: _db_account_details,
}


def resource_record(resource: CloudResource, collected_at: str) -> Record:
    return sanitize_for_json(
        {
            "resourceKey": resource_key(resource),
            "kind": resource.kind.value,
            "id": resource.id,
            "name": resource.name,
            "account": resource.account,
            "region": resource.region,
            "createdAt": resource.created_at,
            "tags": dict(resource.tags),
            "details": DETAIL_BUILDERS[resource.kind](resource),
            "collectedAt": collected_at,
        }
    )


def unclaimed_records(global_ctx: GlobalContext, collected_at: str) -> List[Record]:
    records: List[Record] = []
    for kind in ResourceKind:
        records.extend(resource_record(r, collected_at) for r in global_ctx.unclaimed(kind))
    return sorted(records, key=lambda r: str(r["resourceKey"]))


def forest_node(resource: CloudResource) -> Dict[str, Any]:
    return {
        "kind": resource.kind.value,
        "id": resource.id,
        "name": resource.name,
        "children": [forest_node(child) for child in resource.children()],
    }


def forest(global_ctx: GlobalContext) -> Dict[str, List[Dict[str, Any]]]:
    """
    Claimed trees per region, keyed by region key.
    """
    out: Dict[str, List[Dict[str, Any]]] = {}
    for ctx in global_ctx.contexts():
        out[ctx.key] = [forest_node(root) for root in ctx.roots()]
    return out


def run_summary(global_ctx: GlobalContext) -> Dict[str, Any]:
    regions: Dict[str, Any] = {}
    for ctx in global_ctx.contexts():
        claimed = ctx.claimed_counts()
        unclaimed = ctx.unclaimed_counts()
        regions[ctx.key] = {
            kind.value: {"claimed": claimed.get(kind, 0), "unclaimed": unclaimed.get(kind, 0)}
            for kind in ResourceKind
        }
        regions[ctx.key]["stages"] = [
            {"name": r.name, "drained": {k.value: n for k, n in r.drained.items()}} for r in ctx.stage_results
        ]
    return {
        "pool_mode": global_ctx.pool_mode,
        "totals": {kind.value: counts for kind, counts in global_ctx.totals().items()},
        "regions": regions,
    }
