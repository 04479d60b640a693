from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Sequence, Tuple

from ..model.arena import Arena
from ..model.kinds import ResourceKind
from ..model.resources import (
    Instance,
    ManagedCluster,
    ManagedDbAccount,
    ManagedDbCluster,
    StackDeployment,
    Volume,
)


@dataclass
class RegionSnapshot:
    """Flat AWS inventory for one (account, region) as returned by the fetchers."""

    account: str
    region: str
    volumes: List[Volume] = field(default_factory=list)
    instances: List[Instance] = field(default_factory=list)
    managed_clusters: List[ManagedCluster] = field(default_factory=list)
    stacks: List[StackDeployment] = field(default_factory=list)

    @property
    def key(self) -> str:
        return region_key(self.account, self.region)


@dataclass
class CapellaSnapshot:
    """Process-wide Capella inventory, listed once per run."""

    db_accounts: List[ManagedDbAccount] = field(default_factory=list)
    db_clusters: List[ManagedDbCluster] = field(default_factory=list)


def region_key(account: str, region: str) -> str:
    return f"{account}/{region}" if account else region


class ResourcePool:
    """
    Unclaimed resources of one (account, region), one arena per kind.

    Created when the snapshot is loaded, drained by the claim stages and frozen
    once they complete.
    """

    def __init__(
        self,
        *,
        volumes: Sequence[Volume] = (),
        instances: Sequence[Instance] = (),
        db_clusters: Arena[ManagedDbCluster] | Sequence[ManagedDbCluster] = (),
        managed_clusters: Sequence[ManagedCluster] = (),
        stacks: Sequence[StackDeployment] = (),
        db_accounts: Arena[ManagedDbAccount] | Sequence[ManagedDbAccount] = (),
    ) -> None:
        self.volumes: Arena[Volume] = Arena(ResourceKind.VOLUME, volumes)
        self.instances: Arena[Instance] = Arena(ResourceKind.INSTANCE, instances)
        self.db_clusters: Arena[ManagedDbCluster] = (
            db_clusters if isinstance(db_clusters, Arena) else Arena(ResourceKind.DB_CLUSTER, db_clusters)
        )
        self.managed_clusters: Arena[ManagedCluster] = Arena(ResourceKind.MANAGED_CLUSTER, managed_clusters)
        self.stacks: Arena[StackDeployment] = Arena(ResourceKind.STACK, stacks)
        self.db_accounts: Arena[ManagedDbAccount] = (
            db_accounts if isinstance(db_accounts, Arena) else Arena(ResourceKind.DB_ACCOUNT, db_accounts)
        )

    @classmethod
    def from_snapshot(
        cls,
        snapshot: RegionSnapshot,
        *,
        db_accounts: Arena[ManagedDbAccount] | Sequence[ManagedDbAccount] = (),
        db_clusters: Arena[ManagedDbCluster] | Sequence[ManagedDbCluster] = (),
    ) -> ResourcePool:
        return cls(
            volumes=snapshot.volumes,
            instances=snapshot.instances,
            db_clusters=db_clusters,
            managed_clusters=snapshot.managed_clusters,
            stacks=snapshot.stacks,
            db_accounts=db_accounts,
        )

    def arenas(self) -> Dict[ResourceKind, Arena]:
        return {
            ResourceKind.VOLUME: self.volumes,
            ResourceKind.INSTANCE: self.instances,
            ResourceKind.DB_CLUSTER: self.db_clusters,
            ResourceKind.MANAGED_CLUSTER: self.managed_clusters,
            ResourceKind.STACK: self.stacks,
            ResourceKind.DB_ACCOUNT: self.db_accounts,
        }

    def arena(self, kind: ResourceKind) -> Arena:
        return self.arenas()[kind]

    def counts(self) -> Dict[ResourceKind, int]:
        return {kind: len(arena) for kind, arena in self.arenas().items()}

    def freeze(self) -> None:
        for arena in self.arenas().values():
            arena.freeze()

    @property
    def frozen(self) -> bool:
        return all(arena.frozen for arena in self.arenas().values())


class SharedPools:
    """
    Capella accounts and clusters shared by every region of a run.

    A region checks out a view of whatever is still unclaimed, runs its claim
    stages against that view, and settles on exit: entries the region claimed
    or marked as seen leave the shared pool; the rest return to it for the next
    region. The lock makes each checkout a single writer.
    """

    def __init__(self, snapshot: CapellaSnapshot) -> None:
        self.db_accounts: Arena[ManagedDbAccount] = Arena(ResourceKind.DB_ACCOUNT, snapshot.db_accounts)
        self.db_clusters: Arena[ManagedDbCluster] = Arena(ResourceKind.DB_CLUSTER, snapshot.db_clusters)
        self._lock = threading.Lock()

    @contextmanager
    def checkout(self) -> Iterator[Tuple[Arena[ManagedDbAccount], Arena[ManagedDbCluster]]]:
        with self._lock:
            accounts: Arena[ManagedDbAccount] = Arena(ResourceKind.DB_ACCOUNT, self.db_accounts)
            clusters: Arena[ManagedDbCluster] = Arena(ResourceKind.DB_CLUSTER, self.db_clusters)
            yield accounts, clusters
            _settle(self.db_accounts, accounts)
            _settle(self.db_clusters, clusters)

    def freeze(self) -> None:
        self.db_accounts.freeze()
        self.db_clusters.freeze()


def _settle(shared: Arena, regional: Arena) -> None:
    for resource_id in shared.ids():
        item = regional.get(resource_id)
        if item is None:
            # claimed by a parent inside the region
            shared.take(resource_id)
        elif item.seen:
            shared.take(resource_id)
        else:
            regional.release(resource_id)
