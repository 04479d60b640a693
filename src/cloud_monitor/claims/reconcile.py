from __future__ import annotations

import copy
from typing import Sequence

from ..logging import get_logger
from ..util.concurrency import parallel_map_ordered
from ..util.errors import ConfigError, DuplicateRegionError
from .context import POOL_MODE_REGION, POOL_MODE_SHARED, POOL_MODES, GlobalContext, RegionalContext
from .pool import CapellaSnapshot, RegionSnapshot, ResourcePool, SharedPools
from .stages import run_claim_stages

LOG = get_logger(__name__)


def reconcile_region(snapshot: RegionSnapshot, capella: CapellaSnapshot) -> RegionalContext:
    """
    Reconcile one region against its own copy of the Capella inventory.
    """
    pool = ResourcePool.from_snapshot(
        snapshot,
        db_accounts=copy.deepcopy(capella.db_accounts),
        db_clusters=copy.deepcopy(capella.db_clusters),
    )
    results = run_claim_stages(pool, region=snapshot.key)
    return RegionalContext(account=snapshot.account, region=snapshot.region, pool=pool, stage_results=results)


def reconcile_shared_region(snapshot: RegionSnapshot, shared: SharedPools) -> RegionalContext:
    """
    Reconcile one region against whatever the shared Capella pool still holds.
    Must be called for one region at a time, in the run's region order.
    """
    with shared.checkout() as (accounts, clusters):
        pool = ResourcePool.from_snapshot(snapshot, db_accounts=accounts, db_clusters=clusters)
        results = run_claim_stages(pool, region=snapshot.key, freeze=False)
    pool.freeze()
    return RegionalContext(account=snapshot.account, region=snapshot.region, pool=pool, stage_results=results)


def reconcile(
    snapshots: Sequence[RegionSnapshot],
    capella: CapellaSnapshot,
    *,
    pool_mode: str = POOL_MODE_REGION,
    max_workers: int = 1,
) -> GlobalContext:
    """
    Run the claim stages for every region snapshot and aggregate the results.

    In shared mode regions are processed strictly in the order given: the first
    region to claim a Capella entry keeps it.
    """
    if pool_mode not in POOL_MODES:
        raise ConfigError(f"Unknown pool mode: {pool_mode}")
    keys = [s.key for s in snapshots]
    repeated = sorted({k for k in keys if keys.count(k) > 1})
    if repeated:
        raise DuplicateRegionError(f"Region snapshots repeated: {', '.join(repeated)}")

    global_ctx = GlobalContext(pool_mode=pool_mode)
    if pool_mode == POOL_MODE_SHARED:
        shared = SharedPools(capella)
        for snapshot in snapshots:
            global_ctx.add(reconcile_shared_region(snapshot, shared))
        shared.freeze()
        global_ctx.shared = shared
    else:
        contexts = parallel_map_ordered(
            lambda s: reconcile_region(s, capella),
            snapshots,
            max_workers=max_workers,
            thread_name_prefix="reconcile",
        )
        for ctx in contexts:
            global_ctx.add(ctx)

    LOG.info(
        "Reconciled %d regions",
        len(global_ctx.regional),
        extra={"step": "claims", "phase": "summary", "pool_mode": pool_mode},
    )
    return global_ctx
