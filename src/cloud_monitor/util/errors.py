from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    OK = 0
    CONFIG_ERROR = 2
    AUTH_ERROR = 3
    AWS_ERROR = 4
    RUNTIME_ERROR = 5
    CAPELLA_ERROR = 6
    REPORT_ERROR = 7


class MonitorError(Exception):
    """Base error for the monitoring pipeline."""


class ConfigError(MonitorError):
    """Raised for configuration or argument issues."""


class AuthResolutionError(MonitorError):
    """Raised when AWS credentials or role assumption cannot be resolved."""


class AWSClientError(MonitorError):
    """Raised when AWS SDK operations fail in a non-retriable way."""


class CapellaClientError(MonitorError):
    """Raised when the Couchbase Capella API cannot be read."""


class ReportError(MonitorError):
    """Raised when the report cannot be delivered."""


class ExportError(MonitorError):
    """Raised when exporting artifacts fails."""


class DuplicateResourceError(MonitorError):
    """Raised when a snapshot repeats a resource ID within one kind."""


class DuplicateRegionError(MonitorError):
    """Raised when one account/region is reconciled more than once in a run."""


class PoolFrozenError(MonitorError):
    """Raised when a pool is mutated after its claim stages completed."""


def as_exit_code(exc: BaseException) -> int:
    if isinstance(exc, (ConfigError, ValueError)):
        return int(ExitCode.CONFIG_ERROR)
    if isinstance(exc, AuthResolutionError):
        return int(ExitCode.AUTH_ERROR)
    if isinstance(exc, AWSClientError):
        return int(ExitCode.AWS_ERROR)
    if isinstance(exc, CapellaClientError):
        return int(ExitCode.CAPELLA_ERROR)
    if isinstance(exc, ReportError):
        return int(ExitCode.REPORT_ERROR)
    if isinstance(exc, MonitorError):
        return int(ExitCode.RUNTIME_ERROR)
    return 1


def _aws_error_types() -> tuple[type[BaseException], ...]:
    try:
        from botocore.exceptions import BotoCoreError, ClientError  # type: ignore
    except Exception:
        return ()
    return (ClientError, BotoCoreError)


def is_aws_error(exc: BaseException) -> bool:
    """
    Return True if the exception looks like a boto3/botocore error.
    """
    aws_types = _aws_error_types()
    if aws_types and isinstance(exc, aws_types):
        return True
    module = exc.__class__.__module__
    return module.startswith("botocore.") or module.startswith("boto3.")


def map_aws_error(exc: BaseException, context: str) -> AWSClientError | None:
    """
    Wrap AWS SDK errors with AWSClientError for consistent exit codes.
    """
    if not is_aws_error(exc):
        return None
    return AWSClientError(f"{context}: {exc}")
