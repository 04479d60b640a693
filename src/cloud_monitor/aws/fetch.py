from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..claims.pool import RegionSnapshot
from ..logging import get_logger
from ..model.resources import (
    BlockDeviceMapping,
    DeclaredResource,
    Instance,
    ManagedCluster,
    StackDeployment,
    Volume,
)
from ..util.errors import map_aws_error
from ..util.time import age_since, ensure_utc, utc_now
from .auth import AccountContext
from .clients import get_client

LOG = get_logger(__name__)

PAGE_SIZE = 100


def _tags(raw: Optional[Iterable[Dict[str, Any]]]) -> Dict[str, str]:
    """
    Flatten EC2-style [{"Key": k, "Value": v}] tag lists.
    """
    out: Dict[str, str] = {}
    for tag in raw or []:
        if not tag or tag.get("Key") is None:
            continue
        out[str(tag["Key"])] = str(tag.get("Value") or "")
    return out


def volume_from_api(raw: Dict[str, Any], account: str, region: str) -> Volume:
    return Volume(
        id=raw["VolumeId"],
        account=account,
        region=region,
        tags=_tags(raw.get("Tags")),
        created_at=ensure_utc(raw.get("CreateTime")),
        size_gib=int(raw.get("Size") or 0),
        volume_type=raw.get("VolumeType"),
        state=raw.get("State") or "",
    )


def instance_from_api(raw: Dict[str, Any], account: str, region: str) -> Instance:
    mappings: List[BlockDeviceMapping] = []
    for mapping in raw.get("BlockDeviceMappings") or []:
        volume_id = (mapping.get("Ebs") or {}).get("VolumeId")
        if volume_id:
            mappings.append(BlockDeviceMapping(device_name=mapping.get("DeviceName") or "", volume_id=volume_id))
    return Instance(
        id=raw["InstanceId"],
        account=account,
        region=region,
        tags=_tags(raw.get("Tags")),
        created_at=ensure_utc(raw.get("LaunchTime")),
        subnet_id=raw.get("SubnetId") or "",
        instance_type=raw.get("InstanceType") or "",
        key_name=raw.get("KeyName") or "",
        platform=raw.get("Platform") or "",
        block_device_mappings=mappings,
    )


def managed_cluster_from_api(
    raw: Dict[str, Any], account: str, region: str, now: Optional[datetime] = None
) -> ManagedCluster:
    vpc = raw.get("resourcesVpcConfig") or {}
    created_at = ensure_utc(raw.get("createdAt"))
    return ManagedCluster(
        id=raw["name"],
        name=raw["name"],
        account=account,
        region=region,
        tags={str(k): str(v) for k, v in (raw.get("tags") or {}).items()},
        created_at=created_at,
        network_id=vpc.get("vpcId") or "",
        subnet_ids=list(vpc.get("subnetIds") or []),
        age=age_since(created_at, now),
    )


def stack_from_api(
    raw: Dict[str, Any],
    account: str,
    region: str,
    resources: List[Dict[str, Any]],
    now: Optional[datetime] = None,
) -> StackDeployment:
    created_at = ensure_utc(raw.get("CreationTime"))
    parameters: Dict[str, str] = {}
    for param in raw.get("Parameters") or []:
        if not param or param.get("ParameterKey") is None:
            continue
        parameters[str(param["ParameterKey"])] = str(param.get("ParameterValue") or "")
    declared = [
        DeclaredResource(
            physical_id=r.get("PhysicalResourceId") or "",
            resource_type=r.get("ResourceType") or "",
            logical_id=r.get("LogicalResourceId") or "",
        )
        for r in resources
    ]
    return StackDeployment(
        id=raw["StackId"],
        name=raw.get("StackName") or "",
        account=account,
        region=region,
        tags=_tags(raw.get("Tags")),
        created_at=created_at,
        parameters=parameters,
        declared_resources=declared,
        age=age_since(created_at, now),
    )


def fetch_volumes(ec2: Any, account: str, region: str) -> List[Volume]:
    out: List[Volume] = []
    try:
        for page in ec2.get_paginator("describe_volumes").paginate(PaginationConfig={"PageSize": PAGE_SIZE}):
            out.extend(volume_from_api(v, account, region) for v in page.get("Volumes") or [])
    except Exception as e:
        mapped = map_aws_error(e, f"Unable to get EBS volumes in account {account}, region {region}")
        if mapped:
            raise mapped from e
        raise
    LOG.info("Found %d EBS volumes", len(out), extra={"step": "fetch", "phase": "volumes", "region": region})
    return out


def fetch_instances(ec2: Any, account: str, region: str) -> List[Instance]:
    out: List[Instance] = []
    try:
        for page in ec2.get_paginator("describe_instances").paginate(PaginationConfig={"PageSize": PAGE_SIZE}):
            for reservation in page.get("Reservations") or []:
                out.extend(instance_from_api(i, account, region) for i in reservation.get("Instances") or [])
    except Exception as e:
        mapped = map_aws_error(e, f"Unable to get EC2 instances in account {account}, region {region}")
        if mapped:
            raise mapped from e
        raise
    LOG.info("Found %d EC2 instances", len(out), extra={"step": "fetch", "phase": "instances", "region": region})
    return out


def fetch_managed_clusters(
    eks: Any, account: str, region: str, now: Optional[datetime] = None
) -> List[ManagedCluster]:
    names: List[str] = []
    try:
        for page in eks.get_paginator("list_clusters").paginate():
            names.extend(page.get("clusters") or [])
    except Exception as e:
        mapped = map_aws_error(e, f"Unable to get EKS clusters in account {account}, region {region}")
        if mapped:
            raise mapped from e
        raise

    out: List[ManagedCluster] = []
    for name in names:
        try:
            described = eks.describe_cluster(name=name)["cluster"]
        except Exception as e:
            LOG.warning(
                "Unable to describe EKS cluster %s in %s: %s",
                name,
                region,
                e,
                extra={"step": "fetch", "phase": "warning", "region": region},
            )
            continue
        cluster = managed_cluster_from_api(described, account, region, now)
        LOG.info(
            "Found EKS cluster: %s in %s",
            cluster.name,
            cluster.network_id,
            extra={"step": "fetch", "phase": "managed_clusters", "region": region},
        )
        out.append(cluster)
    return out


def _stack_resources(cfn: Any, stack_name: str) -> List[Dict[str, Any]]:
    resources: List[Dict[str, Any]] = []
    for page in cfn.get_paginator("list_stack_resources").paginate(StackName=stack_name):
        resources.extend(page.get("StackResourceSummaries") or [])
    return resources


def fetch_stacks(cfn: Any, account: str, region: str, now: Optional[datetime] = None) -> List[StackDeployment]:
    described: List[Dict[str, Any]] = []
    try:
        for page in cfn.get_paginator("describe_stacks").paginate():
            described.extend(page.get("Stacks") or [])
    except Exception as e:
        mapped = map_aws_error(e, f"Unable to get Cloudformation stacks in account {account}, region {region}")
        if mapped:
            raise mapped from e
        raise

    out: List[StackDeployment] = []
    for raw in described:
        stack_name = raw.get("StackName") or raw["StackId"]
        try:
            resources = _stack_resources(cfn, stack_name)
        except Exception as e:
            LOG.warning(
                "Unable to list resources of Cloudformation stack %s: %s",
                stack_name,
                e,
                extra={"step": "fetch", "phase": "warning", "region": region},
            )
            resources = []
        out.append(stack_from_api(raw, account, region, resources, now))
    LOG.info("Found %d Cloudformation stacks", len(out), extra={"step": "fetch", "phase": "stacks", "region": region})
    return out


def fetch_region_snapshot(session: Any, ctx: AccountContext, region: str) -> RegionSnapshot:
    """
    Collect the flat AWS inventory of one (account, region). Any fetch failure
    aborts the region; describe/list failures of single items only log.
    """
    now = utc_now()
    LOG.info("Analysing AWS %s", region, extra={"step": "fetch", "phase": "start", "region": region})
    ec2 = get_client(session, ctx, "ec2", region)
    return RegionSnapshot(
        account=ctx.account,
        region=region,
        volumes=fetch_volumes(ec2, ctx.account, region),
        instances=fetch_instances(ec2, ctx.account, region),
        managed_clusters=fetch_managed_clusters(get_client(session, ctx, "eks", region), ctx.account, region, now),
        stacks=fetch_stacks(get_client(session, ctx, "cloudformation", region), ctx.account, region, now),
    )
