from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import ClassVar, Dict, Iterable, List, Optional, Union

from .arena import Arena
from .kinds import ResourceKind

NAME_TAG = "Name"


def _sorted_values(items: Dict[str, "CloudResource"]) -> List["CloudResource"]:
    return [items[key] for key in sorted(items)]


def _located_key(resource: "CloudResource") -> str:
    return f"{resource.account}/{resource.region}:{resource.id}"


@dataclass
class CloudResource:
    id: str
    name: str = ""
    account: str = ""
    region: str = ""
    tags: Dict[str, str] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    kind: ClassVar[ResourceKind]

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.tags.get(NAME_TAG) or self.id

    def children(self) -> List[CloudResource]:
        """Direct owned children, ordered by kind then ID."""
        return []

    def descendants(self) -> List[CloudResource]:
        out: List[CloudResource] = []
        for child in self.children():
            out.append(child)
            out.extend(child.descendants())
        return out


@dataclass
class Volume(CloudResource):
    size_gib: int = 0
    volume_type: Optional[str] = None
    state: str = ""

    kind: ClassVar[ResourceKind] = ResourceKind.VOLUME


@dataclass(frozen=True)
class BlockDeviceMapping:
    device_name: str
    volume_id: str


@dataclass
class Instance(CloudResource):
    subnet_id: str = ""
    instance_type: str = ""
    key_name: str = ""
    platform: str = ""
    block_device_mappings: List[BlockDeviceMapping] = field(default_factory=list)
    volumes: Dict[str, Volume] = field(default_factory=dict)

    kind: ClassVar[ResourceKind] = ResourceKind.INSTANCE

    def claim_volume(self, pool: Arena[Volume], volume_id: str) -> Optional[Volume]:
        volume = pool.take(volume_id)
        if volume is not None:
            self.volumes[volume.id] = volume
        return volume

    def children(self) -> List[CloudResource]:
        return _sorted_values(self.volumes)


@dataclass
class ManagedDbCluster(CloudResource):
    """A Couchbase Capella cluster."""

    node_count: int = 0
    services: List[str] = field(default_factory=list)
    environment: str = ""
    linked_cluster_name: str = ""
    instances: Dict[str, Instance] = field(default_factory=dict)
    seen: bool = False

    kind: ClassVar[ResourceKind] = ResourceKind.DB_CLUSTER

    def claim_instance(self, pool: Arena[Instance], instance_id: str) -> Optional[Instance]:
        instance = pool.take(instance_id)
        if instance is not None:
            self.instances[instance.id] = instance
            self.seen = True
        return instance

    def merged_with(self, others: Iterable["ManagedDbCluster"]) -> "ManagedDbCluster":
        """
        Copy of this cluster holding the instances claimed by every regional
        copy. Instances are keyed by account/region and ID in the copy.
        """
        merged = copy.copy(self)
        merged.instances = {_located_key(i): i for i in self.instances.values()}
        for other in others:
            merged.instances.update((_located_key(i), i) for i in other.instances.values())
            merged.seen = merged.seen or other.seen
        return merged

    def children(self) -> List[CloudResource]:
        return _sorted_values(self.instances)


@dataclass
class ManagedCluster(CloudResource):
    """An EKS cluster. Its ID is the cluster name."""

    network_id: str = ""
    subnet_ids: List[str] = field(default_factory=list)
    age: Optional[timedelta] = None
    instances: Dict[str, Instance] = field(default_factory=dict)
    db_clusters: Dict[str, ManagedDbCluster] = field(default_factory=dict)

    kind: ClassVar[ResourceKind] = ResourceKind.MANAGED_CLUSTER

    def claim_instance(self, pool: Arena[Instance], instance_id: str) -> Optional[Instance]:
        instance = pool.take(instance_id)
        if instance is not None:
            self.instances[instance.id] = instance
        return instance

    def claim_db_cluster(self, pool: Arena[ManagedDbCluster], cluster_id: str) -> Optional[ManagedDbCluster]:
        cluster = pool.take(cluster_id)
        if cluster is not None:
            self.db_clusters[cluster.id] = cluster
        return cluster

    def children(self) -> List[CloudResource]:
        return _sorted_values(self.db_clusters) + _sorted_values(self.instances)


@dataclass(frozen=True)
class DeclaredResource:
    physical_id: str
    resource_type: str
    logical_id: str = ""


@dataclass
class StackDeployment(CloudResource):
    """A CloudFormation stack. Its ID is the stack ARN."""

    parameters: Dict[str, str] = field(default_factory=dict)
    declared_resources: List[DeclaredResource] = field(default_factory=list)
    age: Optional[timedelta] = None
    instances: Dict[str, Instance] = field(default_factory=dict)

    kind: ClassVar[ResourceKind] = ResourceKind.STACK

    def claim_instance(self, pool: Arena[Instance], instance_id: str) -> Optional[Instance]:
        instance = pool.take(instance_id)
        if instance is not None:
            self.instances[instance.id] = instance
        return instance

    def children(self) -> List[CloudResource]:
        return _sorted_values(self.instances)


@dataclass
class ManagedDbAccount(CloudResource):
    """A Couchbase Capella cloud: the account-level construct clusters run in."""

    provider: str = ""
    status: str = ""
    network_cidr: str = ""
    network_id: str = ""
    managed_clusters: Dict[str, ManagedCluster] = field(default_factory=dict)
    stack: Optional[StackDeployment] = None
    seen: bool = False

    kind: ClassVar[ResourceKind] = ResourceKind.DB_ACCOUNT

    def claim_managed_cluster(self, pool: Arena[ManagedCluster], cluster_id: str) -> Optional[ManagedCluster]:
        cluster = pool.take(cluster_id)
        if cluster is not None:
            self.managed_clusters[cluster.id] = cluster
            self.seen = True
        return cluster

    def claim_stack(self, pool: Arena[StackDeployment], stack_id: str) -> Optional[StackDeployment]:
        """
        Claim into the single stack slot. Callers must not claim a second stack
        for the same account: the first would leave the pool and be overwritten.
        """
        stack = pool.take(stack_id)
        if stack is not None:
            self.stack = stack
            self.seen = True
        return stack

    def merged_with(self, others: Iterable["ManagedDbAccount"]) -> "ManagedDbAccount":
        """
        Copy of this account holding the EKS clusters claimed by every regional
        copy. The stack slot keeps this copy's stack, or else the first one found.
        """
        merged = copy.copy(self)
        merged.managed_clusters = {_located_key(c): c for c in self.managed_clusters.values()}
        for other in others:
            merged.managed_clusters.update((_located_key(c), c) for c in other.managed_clusters.values())
            if merged.stack is None:
                merged.stack = other.stack
            merged.seen = merged.seen or other.seen
        return merged

    def children(self) -> List[CloudResource]:
        out = _sorted_values(self.managed_clusters)
        if self.stack is not None:
            out.append(self.stack)
        return out


Resource = Union[Volume, Instance, ManagedDbCluster, ManagedCluster, StackDeployment, ManagedDbAccount]
