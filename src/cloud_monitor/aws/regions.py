from __future__ import annotations

from typing import Any, List, Sequence

from ..util.errors import map_aws_error
from .auth import AccountContext
from .clients import get_client

# Region used to ask EC2 which regions the account has enabled.
DISCOVERY_REGION = "us-east-1"


def list_enabled_regions(session: Any, ctx: AccountContext) -> List[str]:
    """
    Return sorted region names the account has opted into.
    """
    ec2 = get_client(session, ctx, "ec2", DISCOVERY_REGION)
    try:
        response = ec2.describe_regions(AllRegions=False)
    except Exception as e:
        mapped = map_aws_error(e, f"AWS SDK error while listing regions for account {ctx.account}")
        if mapped:
            raise mapped from e
        raise
    return sorted({r["RegionName"] for r in response.get("Regions") or [] if r.get("RegionName")})


def unavailable_regions(requested: Sequence[str], enabled: Sequence[str]) -> List[str]:
    """Requested regions the account cannot reach, in request order."""
    enabled_set = set(enabled)
    return [r for r in requested if r not in enabled_set]
