from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from ..model.kinds import ResourceKind
from ..model.resources import CloudResource
from ..util.errors import DuplicateRegionError
from .pool import ResourcePool, SharedPools, region_key
from .stages import StageResult

POOL_MODE_REGION = "region"
POOL_MODE_SHARED = "shared"
POOL_MODES = (POOL_MODE_REGION, POOL_MODE_SHARED)

# Top-down order used when listing roots of the claimed forest.
ROOT_KIND_ORDER: Tuple[ResourceKind, ...] = (
    ResourceKind.DB_ACCOUNT,
    ResourceKind.STACK,
    ResourceKind.MANAGED_CLUSTER,
    ResourceKind.DB_CLUSTER,
    ResourceKind.INSTANCE,
)


@dataclass
class RegionalContext:
    account: str
    region: str
    pool: ResourcePool
    stage_results: List[StageResult] = field(default_factory=list)

    @property
    def key(self) -> str:
        return region_key(self.account, self.region)

    def unclaimed(self, kind: ResourceKind) -> List[CloudResource]:
        return self.pool.arena(kind).values()

    def unclaimed_counts(self) -> Dict[ResourceKind, int]:
        return self.pool.counts()

    def claimed_counts(self) -> Dict[ResourceKind, int]:
        return {kind: len(arena.claimed_ids) for kind, arena in self.pool.arenas().items()}

    def roots(self) -> List[CloudResource]:
        """
        Residual entries that own a subtree. Leaves with nothing claimed under
        them are still orphans but are not roots of the forest.
        """
        out: List[CloudResource] = []
        for kind in ROOT_KIND_ORDER:
            out.extend(r for r in self.pool.arena(kind) if r.children())
        return out


@dataclass
class GlobalContext:
    pool_mode: str = POOL_MODE_REGION
    regional: Dict[str, RegionalContext] = field(default_factory=dict)
    shared: Optional[SharedPools] = None

    def add(self, ctx: RegionalContext) -> None:
        if ctx.key in self.regional:
            raise DuplicateRegionError(f"Region {ctx.key} was already reconciled")
        self.regional[ctx.key] = ctx

    def contexts(self) -> List[RegionalContext]:
        return list(self.regional.values())

    def _claimed_ids(self, kind: ResourceKind) -> Set[str]:
        ids: Set[str] = set()
        for ctx in self.regional.values():
            ids.update(ctx.pool.arena(kind).claimed_ids)
        return ids

    def unclaimed(self, kind: ResourceKind) -> List[CloudResource]:
        """
        Orphans of one kind across the run.

        Capella kinds are listed once per run but appear in several regions: an
        ID claimed in any region is dropped, and a copy that claimed children is
        preferred over an idle one. The entry returned carries the children
        claimed by every regional copy.
        """
        if not kind.process_wide:
            out: List[CloudResource] = []
            for ctx in self.regional.values():
                out.extend(ctx.unclaimed(kind))
            return out

        claimed = self._claimed_ids(kind)
        chosen: Dict[str, CloudResource] = {}
        candidates: List[CloudResource] = []
        for ctx in self.regional.values():
            candidates.extend(ctx.unclaimed(kind))
        if self.shared is not None:
            shared_arena = self.shared.db_accounts if kind is ResourceKind.DB_ACCOUNT else self.shared.db_clusters
            candidates.extend(shared_arena.values())
        copies: Dict[str, List[CloudResource]] = {}
        for item in candidates:
            if item.id in claimed:
                continue
            copies.setdefault(item.id, []).append(item)
            current = chosen.get(item.id)
            if current is None or (getattr(item, "seen", False) and not getattr(current, "seen", False)):
                chosen[item.id] = item
        out = []
        for key in sorted(chosen):
            best = chosen[key]
            others = [c for c in copies[key] if c is not best and getattr(c, "seen", False)]
            out.append(best.merged_with(others))  # type: ignore[attr-defined]
        return out

    def claimed_count(self, kind: ResourceKind) -> int:
        if kind.process_wide:
            return len(self._claimed_ids(kind))
        return sum(len(ctx.pool.arena(kind).claimed_ids) for ctx in self.regional.values())

    def totals(self) -> Dict[ResourceKind, Dict[str, int]]:
        return {
            kind: {"claimed": self.claimed_count(kind), "unclaimed": len(self.unclaimed(kind))}
            for kind in ResourceKind
        }

    def roots(self) -> List[Tuple[RegionalContext, CloudResource]]:
        out: List[Tuple[RegionalContext, CloudResource]] = []
        for ctx in self.regional.values():
            out.extend((ctx, root) for root in ctx.roots())
        return out
