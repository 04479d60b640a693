from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ..logging import get_logger
from ..model.kinds import ResourceKind
from ..util.errors import PoolFrozenError
from .indices import (
    INSTANCE_CLUSTER_NAME_TAG,
    db_clusters_by_linked_cluster_name,
    instances_by_cluster_tag,
    instances_by_subnet,
    managed_clusters_by_account_id,
    stacks_by_account_id,
)
from .pool import ResourcePool

LOG = get_logger(__name__)

STACK_INSTANCE_RESOURCE_TYPES = frozenset({"AWS::EC2::Instance"})


@dataclass(frozen=True)
class StageResult:
    name: str
    drained: Dict[ResourceKind, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.drained.values())


@dataclass(frozen=True)
class ClaimStage:
    name: str
    run: Callable[[ResourcePool], None]
    drains: Tuple[ResourceKind, ...]
    description: str


def claim_instance_volumes(pool: ResourcePool) -> None:
    for instance in pool.instances:
        for mapping in instance.block_device_mappings:
            instance.claim_volume(pool.volumes, mapping.volume_id)


def claim_db_cluster_instances(pool: ResourcePool) -> None:
    by_cluster_id = instances_by_cluster_tag(pool)
    for cluster in pool.db_clusters:
        for instance in by_cluster_id.get(cluster.id, []):
            linked_name = instance.tags.get(INSTANCE_CLUSTER_NAME_TAG)
            if linked_name is not None:
                if cluster.linked_cluster_name and cluster.linked_cluster_name != linked_name:
                    LOG.warning(
                        "Instances disagree on the EKS cluster of a Couchbase cluster; last one wins",
                        extra={
                            "step": "claims",
                            "phase": "warning",
                            "db_cluster": cluster.id,
                            "previous": cluster.linked_cluster_name,
                            "current": linked_name,
                            "instance": instance.id,
                        },
                    )
                cluster.linked_cluster_name = linked_name
            cluster.claim_instance(pool.instances, instance.id)


def claim_managed_cluster_children(pool: ResourcePool) -> None:
    by_linked_name = db_clusters_by_linked_cluster_name(pool)
    by_subnet = instances_by_subnet(pool)
    for cluster in pool.managed_clusters:
        for db_cluster in by_linked_name.get(cluster.name, []):
            cluster.claim_db_cluster(pool.db_clusters, db_cluster.id)

        # Node membership is not visible without Kubernetes permissions, so every
        # instance in a subnet of the cluster is treated as one of its nodes.
        for subnet_id in cluster.subnet_ids:
            for instance in by_subnet.get(subnet_id, []):
                cluster.claim_instance(pool.instances, instance.id)


def claim_stack_instances(pool: ResourcePool) -> None:
    for stack in pool.stacks:
        for declared in stack.declared_resources:
            if declared.resource_type in STACK_INSTANCE_RESOURCE_TYPES:
                stack.claim_instance(pool.instances, declared.physical_id)


def claim_db_account_children(pool: ResourcePool) -> None:
    clusters_by_account = managed_clusters_by_account_id(pool)
    stacks_by_account = stacks_by_account_id(pool)
    for account in pool.db_accounts:
        for cluster in clusters_by_account.get(account.id, []):
            account.claim_managed_cluster(pool.managed_clusters, cluster.id)

        stacks = stacks_by_account.get(account.id, [])
        if not stacks:
            continue
        if len(stacks) > 1:
            LOG.warning(
                "Several stacks reference one Couchbase cloud; claiming the last",
                extra={
                    "step": "claims",
                    "phase": "warning",
                    "db_account": account.id,
                    "stacks": [s.id for s in stacks],
                },
            )
        account.claim_stack(pool.stacks, stacks[-1].id)


CLAIM_STAGES: Tuple[ClaimStage, ...] = (
    ClaimStage(
        name="instance_volumes",
        run=claim_instance_volumes,
        drains=(ResourceKind.VOLUME,),
        description="EC2 claims",
    ),
    ClaimStage(
        name="db_cluster_instances",
        run=claim_db_cluster_instances,
        drains=(ResourceKind.INSTANCE,),
        description="Couchbase Cloud Cluster claims",
    ),
    ClaimStage(
        name="managed_cluster_children",
        run=claim_managed_cluster_children,
        drains=(ResourceKind.INSTANCE, ResourceKind.DB_CLUSTER),
        description="EKS Cluster claims",
    ),
    ClaimStage(
        name="stack_instances",
        run=claim_stack_instances,
        drains=(ResourceKind.INSTANCE,),
        description="Cloudformation Stack claims",
    ),
    ClaimStage(
        name="db_account_children",
        run=claim_db_account_children,
        drains=(ResourceKind.MANAGED_CLUSTER, ResourceKind.STACK),
        description="Couchbase Cloud claims",
    ),
)


def run_stage(pool: ResourcePool, stage: ClaimStage, *, region: Optional[str] = None) -> StageResult:
    before = {kind: len(pool.arena(kind)) for kind in stage.drains}
    stage.run(pool)
    drained = {kind: before[kind] - len(pool.arena(kind)) for kind in stage.drains}
    summary = ", ".join(f"{count} {kind.value}" for kind, count in drained.items())
    LOG.info(
        "Processed %s (%s)",
        stage.description,
        summary,
        extra={
            "step": "claims",
            "phase": "complete",
            "stage": stage.name,
            "region": region,
            "drained": {kind.value: count for kind, count in drained.items()},
        },
    )
    return StageResult(name=stage.name, drained=drained)


def run_claim_stages(pool: ResourcePool, *, region: Optional[str] = None, freeze: bool = True) -> List[StageResult]:
    """
    Run the five claim stages in their fixed order. Each stage rebuilds the
    indices it needs from the pool as the previous stages left it.

    The pool is frozen afterwards unless the caller still has to settle shared
    entries first.
    """
    if pool.frozen:
        raise PoolFrozenError(f"Claim stages already ran for {region or 'this pool'}")
    results = [run_stage(pool, stage, region=region) for stage in CLAIM_STAGES]
    if freeze:
        pool.freeze()
    return results
