from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..logging import get_logger
from ..util.errors import AuthResolutionError, map_aws_error

try:
    import boto3  # type: ignore
except Exception:  # pragma: no cover - import error surfaced at runtime/CI
    boto3 = None  # type: ignore

LOG = get_logger(__name__)

SESSION_NAME_PREFIX = "cloud-monitor"
ASSUME_ROLE_DURATION_SECONDS = 3600


@dataclass(frozen=True)
class AccountContext:
    """
    Credentials for one monitored account. `credentials` is None when the base
    session is used directly (no role to assume).
    """

    account: str
    role_arn: Optional[str]
    credentials: Optional[Dict[str, str]]
    profile: Optional[str] = None

    def client_kwargs(self) -> Dict[str, Any]:
        if self.credentials is None:
            return {}
        return {
            "aws_access_key_id": self.credentials["AccessKeyId"],
            "aws_secret_access_key": self.credentials["SecretAccessKey"],
            "aws_session_token": self.credentials["SessionToken"],
        }


def _require_boto3() -> None:
    if boto3 is None:
        raise AuthResolutionError(
            "boto3 not installed. Install dependencies and try again: pip install ."
        )


def make_session(profile: Optional[str] = None) -> Any:
    _require_boto3()
    try:
        if profile:
            return boto3.session.Session(profile_name=profile)  # type: ignore[union-attr]
        return boto3.session.Session()  # type: ignore[union-attr]
    except Exception as e:
        mapped = map_aws_error(e, "AWS SDK error while loading profile")
        if mapped:
            raise AuthResolutionError(str(mapped)) from e
        raise AuthResolutionError(f"Failed to create AWS session: {e}") from e


def account_from_arn(arn: str) -> str:
    """
    Account ID of an ARN such as arn:aws:iam::123456789012:role/monitor.
    """
    parts = arn.split(":")
    if len(parts) < 6 or parts[0] != "arn" or not parts[4]:
        raise AuthResolutionError(f"Not an account-scoped ARN: {arn}")
    return parts[4]


def caller_identity(session: Any) -> Dict[str, str]:
    sts = session.client("sts")
    try:
        return sts.get_caller_identity()
    except Exception as e:
        raise AuthResolutionError(f"Unable to get AWS caller identity: {e}") from e


def caller_name(identity: Dict[str, str]) -> str:
    """
    Last path segment of the caller ARN, used to tag assumed-role sessions.
    """
    arn = identity.get("Arn") or ""
    name = arn.rsplit("/", 1)[-1] if "/" in arn else identity.get("UserId", "")
    return name or "unknown"


def assume_role(session: Any, role_arn: str, session_name: str) -> Dict[str, str]:
    sts = session.client("sts")
    try:
        response = sts.assume_role(
            RoleArn=role_arn,
            RoleSessionName=session_name[:64],
            DurationSeconds=ASSUME_ROLE_DURATION_SECONDS,
        )
    except Exception as e:
        raise AuthResolutionError(f"Unable to assume AWS role {role_arn}: {e}") from e
    return response["Credentials"]


def resolve_accounts(session: Any, role_arns: List[str], profile: Optional[str] = None) -> List[AccountContext]:
    """
    Assume every configured role in order. Without roles the session's own
    account is monitored.
    """
    identity = caller_identity(session)
    if not role_arns:
        account = identity.get("Account") or ""
        LOG.info("Using session account %s", account, extra={"step": "auth", "phase": "resolve"})
        return [AccountContext(account=account, role_arn=None, credentials=None, profile=profile)]

    session_name = f"{SESSION_NAME_PREFIX}-{caller_name(identity)}"
    contexts: List[AccountContext] = []
    for role_arn in role_arns:
        LOG.info("Assuming role %s", role_arn, extra={"step": "auth", "phase": "assume_role"})
        credentials = assume_role(session, role_arn, session_name)
        contexts.append(
            AccountContext(
                account=account_from_arn(role_arn),
                role_arn=role_arn,
                credentials=credentials,
                profile=profile,
            )
        )
    return contexts
