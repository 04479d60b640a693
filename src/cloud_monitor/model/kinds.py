from __future__ import annotations

from enum import Enum


class ResourceKind(str, Enum):
    VOLUME = "volume"
    INSTANCE = "instance"
    DB_CLUSTER = "db_cluster"
    MANAGED_CLUSTER = "managed_cluster"
    STACK = "stack"
    DB_ACCOUNT = "db_account"

    @property
    def process_wide(self) -> bool:
        # Capella resources are listed once per run, not per AWS region.
        return self in (ResourceKind.DB_CLUSTER, ResourceKind.DB_ACCOUNT)


KIND_LABELS = {
    ResourceKind.VOLUME: "EBS Volumes",
    ResourceKind.INSTANCE: "EC2 Instances",
    ResourceKind.DB_CLUSTER: "Couchbase Cloud Clusters",
    ResourceKind.MANAGED_CLUSTER: "EKS Clusters",
    ResourceKind.STACK: "Cloudformation Stacks",
    ResourceKind.DB_ACCOUNT: "Couchbase Clouds",
}
