from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from ..claims.pool import CapellaSnapshot
from ..logging import get_logger
from ..model.resources import ManagedDbAccount, ManagedDbCluster
from ..util.errors import ConfigError
from .client import CapellaClient

LOG = get_logger(__name__)


def _services(raw: Any) -> List[str]:
    # v2 lists either plain service names or {"type": ...} objects
    out: List[str] = []
    for item in raw or []:
        if isinstance(item, str):
            out.append(item)
        elif isinstance(item, dict):
            name = item.get("type") or item.get("name")
            if name:
                out.append(str(name))
    return out


def db_account_from_api(raw: Dict[str, Any]) -> ManagedDbAccount:
    return ManagedDbAccount(
        id=raw["id"],
        name=raw.get("name") or "",
        region=raw.get("region") or "",
        provider=str(raw.get("provider") or ""),
        status=str(raw.get("status") or ""),
        network_cidr=raw.get("virtualNetworkCIDR") or "",
        network_id=raw.get("virtualNetworkID") or "",
    )


def db_cluster_from_api(raw: Dict[str, Any]) -> ManagedDbCluster:
    return ManagedDbCluster(
        id=raw["id"],
        name=raw.get("name") or "",
        node_count=int(raw.get("nodes") or 0),
        services=_services(raw.get("services")),
        environment=raw.get("environment") or "",
    )


def fetch_with_client(
    client: CapellaClient,
    accounts: Dict[str, ManagedDbAccount],
    clusters: Dict[str, ManagedDbCluster],
) -> None:
    """
    Add everything one key pair can see. Hosted (v3) clusters only fill gaps
    left by the v2 listing.
    """
    cloud_count = 0
    for raw in client.list_clouds():
        accounts[raw["id"]] = db_account_from_api(raw)
        cloud_count += 1
    LOG.info("Found %d Couchbase Clouds", cloud_count, extra={"step": "fetch", "phase": "capella"})

    cluster_count = 0
    for raw in client.list_clusters():
        clusters[raw["id"]] = db_cluster_from_api(raw)
        cluster_count += 1
    LOG.info("Found %d Couchbase Clusters", cluster_count, extra={"step": "fetch", "phase": "capella"})

    hosted_count = 0
    for raw in client.list_hosted_clusters():
        if raw["id"] in clusters:
            continue
        clusters[raw["id"]] = db_cluster_from_api(raw)
        hosted_count += 1
    LOG.info("Found %d Hosted Couchbase Clusters", hosted_count, extra={"step": "fetch", "phase": "capella"})


def fetch_capella_snapshot(
    access_keys: Sequence[str],
    secret_keys: Sequence[str],
    base_url: str,
    *,
    client_factory: Optional[Any] = None,
) -> CapellaSnapshot:
    """
    Inventory every Capella organisation reachable with the configured key pairs.
    """
    if len(access_keys) != len(secret_keys):
        raise ConfigError("Incorrect configuration for Couchbase Cloud API keys: access and secret key counts differ")
    if not access_keys:
        LOG.warning(
            "No Couchbase Cloud API keys configured; Capella inventory is empty",
            extra={"step": "fetch", "phase": "capella"},
        )
        return CapellaSnapshot()

    factory = client_factory or CapellaClient
    accounts: Dict[str, ManagedDbAccount] = {}
    clusters: Dict[str, ManagedDbCluster] = {}
    for access_key, secret_key in zip(access_keys, secret_keys):
        fetch_with_client(factory(access_key, secret_key, base_url), accounts, clusters)

    return CapellaSnapshot(
        db_accounts=[accounts[key] for key in sorted(accounts)],
        db_clusters=[clusters[key] for key in sorted(clusters)],
    )
