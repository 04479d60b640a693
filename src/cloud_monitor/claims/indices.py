from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional, TypeVar

from ..model.resources import Instance, ManagedCluster, ManagedDbCluster, StackDeployment
from .pool import ResourcePool

# Tag on EC2 instances naming the Capella cluster they serve.
INSTANCE_DB_CLUSTER_ID_TAG = "DatabaseID"
# Tag on EC2 instances naming the EKS cluster they were launched for.
INSTANCE_CLUSTER_NAME_TAG = "cluster"
# Tag on EKS clusters naming the owning Capella cloud.
MANAGED_CLUSTER_ACCOUNT_ID_TAG = "CloudID"
# Parameter on CloudFormation stacks naming the owning Capella cloud.
STACK_ACCOUNT_ID_PARAMETER = "CloudID"

T = TypeVar("T")


def _group_by(items: Iterable[T], key: Callable[[T], Optional[str]]) -> Dict[str, List[T]]:
    grouped: Dict[str, List[T]] = {}
    for item in items:
        value = key(item)
        if value is None:
            continue
        grouped.setdefault(value, []).append(item)
    return grouped


def instances_by_cluster_tag(pool: ResourcePool) -> Dict[str, List[Instance]]:
    return _group_by(pool.instances, lambda i: i.tags.get(INSTANCE_DB_CLUSTER_ID_TAG))


def instances_by_subnet(pool: ResourcePool) -> Dict[str, List[Instance]]:
    return _group_by(pool.instances, lambda i: i.subnet_id)


def db_clusters_by_linked_cluster_name(pool: ResourcePool) -> Dict[str, List[ManagedDbCluster]]:
    return _group_by(pool.db_clusters, lambda c: c.linked_cluster_name or None)


def managed_clusters_by_account_id(pool: ResourcePool) -> Dict[str, List[ManagedCluster]]:
    return _group_by(pool.managed_clusters, lambda c: c.tags.get(MANAGED_CLUSTER_ACCOUNT_ID_TAG))


def stacks_by_account_id(pool: ResourcePool) -> Dict[str, List[StackDeployment]]:
    return _group_by(pool.stacks, lambda s: s.parameters.get(STACK_ACCOUNT_ID_PARAMETER))
