from __future__ import annotations

import argparse
import json
import os
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

# --------
# Defaults
# --------
DEFAULT_REGIONS: Tuple[str, ...] = (
    "us-east-1",
    "us-east-2",
    "us-west-2",
    "eu-west-1",
    "eu-west-2",
    "eu-west-3",
    "eu-central-1",
    "eu-north-1",
    "ca-central-1",
    "us-west-1",
    "ap-south-1",
    "ap-northeast-2",
    "ap-southeast-1",
    "ap-southeast-2",
    "ap-northeast-1",
)
DEFAULT_WORKERS_REGION = 6
DEFAULT_CAPELLA_API_URL = "https://cloudapi.cloud.couchbase.com"
DEFAULT_SLACK_THROTTLE_SECONDS = 1.0
POOL_MODES = {"region", "shared"}
REPORT_TARGETS = {"console", "slack", "none"}
ALLOWED_CONFIG_KEYS = {
    "outdir",
    "parquet",
    "regions",
    "role_arns",
    "profile",
    "pool_mode",
    "report",
    "slack_channel",
    "slack_throttle_seconds",
    "capella_api_url",
    "workers_region",
    "json_logs",
    "log_level",
}
BOOL_CONFIG_KEYS = {"parquet", "json_logs"}
INT_CONFIG_KEYS = {"workers_region"}
FLOAT_CONFIG_KEYS = {"slack_throttle_seconds"}
LIST_CONFIG_KEYS = {"regions", "role_arns"}
PATH_CONFIG_KEYS = {"outdir"}
STR_CONFIG_KEYS = {"profile", "pool_mode", "report", "slack_channel", "capella_api_url", "log_level"}
CHOICE_CONFIG_KEYS = {"pool_mode": POOL_MODES, "report": REPORT_TARGETS}


@dataclass(frozen=True)
class RunConfig:
    # General
    outdir: Path
    parquet: bool = False
    json_logs: bool = False
    log_level: str = "INFO"

    # Scope
    regions: List[str] = field(default_factory=lambda: list(DEFAULT_REGIONS))
    role_arns: List[str] = field(default_factory=list)
    profile: Optional[str] = None
    pool_mode: str = "region"  # region|shared

    # Performance
    workers_region: int = DEFAULT_WORKERS_REGION

    # Capella
    capella_api_url: str = DEFAULT_CAPELLA_API_URL
    capella_access_keys: List[str] = field(default_factory=list, repr=False)
    capella_secret_keys: List[str] = field(default_factory=list, repr=False)

    # Report
    report: str = "console"  # console|slack|none
    slack_channel: Optional[str] = None
    slack_token: Optional[str] = field(default=None, repr=False)
    slack_throttle_seconds: float = DEFAULT_SLACK_THROTTLE_SECONDS

    # Internal/derived
    collected_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="seconds")
    )


def _parse_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text) or {}
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ValueError(f"Failed to parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Top-level config must be an object")
    return data


def _split_csv(raw: Optional[str]) -> Optional[List[str]]:
    if raw is None:
        return None
    items = [part.strip() for part in raw.split(",") if part.strip()]
    return items or None


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return None
    return raw


def _env_bool(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip().lower()
    if not raw:
        return None
    return raw in {"1", "true", "yes", "on"}


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw in {"1", "true", "yes", "on"}:
            return True
        if raw in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Config field '{key}' must be a boolean")


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return int(value)
        except ValueError:
            pass
    raise ValueError(f"Config field '{key}' must be an integer")


def _coerce_float(key: str, value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value)
        except ValueError:
            pass
    raise ValueError(f"Config field '{key}' must be a number")


def _coerce_list(key: str, value: Any) -> List[str]:
    if isinstance(value, str):
        return _split_csv(value) or []
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return [v.strip() for v in value if v.strip()]
    raise ValueError(f"Config field '{key}' must be a list of strings or comma-separated string")


def _normalize_config_file(data: Dict[str, Any]) -> Dict[str, Any]:
    unknown = sorted(set(data.keys()) - ALLOWED_CONFIG_KEYS)
    if unknown:
        warnings.warn(f"Unknown config keys ignored: {', '.join(unknown)}")
    normalized: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in ALLOWED_CONFIG_KEYS:
            continue
        if value is None:
            normalized[key] = None
            continue
        if key in LIST_CONFIG_KEYS:
            normalized[key] = _coerce_list(key, value)
        elif key in BOOL_CONFIG_KEYS:
            normalized[key] = _coerce_bool(key, value)
        elif key in INT_CONFIG_KEYS:
            normalized[key] = _coerce_int(key, value)
        elif key in FLOAT_CONFIG_KEYS:
            normalized[key] = _coerce_float(key, value)
        elif key in PATH_CONFIG_KEYS:
            if isinstance(value, (str, Path)):
                normalized[key] = value
            else:
                raise ValueError(f"Config field '{key}' must be a string path")
        elif key in STR_CONFIG_KEYS:
            if isinstance(value, str):
                normalized[key] = value
            else:
                raise ValueError(f"Config field '{key}' must be a string")
    for key, choices in CHOICE_CONFIG_KEYS.items():
        choice = normalized.get(key)
        if choice is None:
            continue
        choice = str(choice).lower()
        if choice not in choices:
            raise ValueError(f"Config field '{key}' must be one of: {', '.join(sorted(choices))}")
        normalized[key] = choice
    return _compact_dict(normalized)


def _compact_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Drop keys with None values so they don't override lower-precedence config.
    """
    return {k: v for k, v in data.items() if v is not None}


def _merge_dicts(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    """
    Shallow merge: values in b override a.
    """
    merged = dict(a)
    merged.update(b)
    return merged


def _timestamp_dir(base: Optional[Union[str, Path]]) -> Path:
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    if base:
        return Path(base) / ts
    return Path("out") / ts


def _as_list(raw: Any) -> Optional[List[str]]:
    """Normalize a list option, dropping repeats but keeping first-seen order."""
    if isinstance(raw, list):
        items = [str(r).strip() for r in raw if str(r).strip()]
    elif isinstance(raw, str):
        items = _split_csv(raw) or []
    else:
        return None
    return list(dict.fromkeys(items)) or None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cloud-monitor", description="Unowned cloud resource monitor")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # common flags builder
    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", type=Path, help="Optional YAML/JSON config file")
        p.add_argument(
            "--json-logs",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Enable JSON logs",
        )
        p.add_argument("--log-level", default=None, help="Log level (INFO, DEBUG, ...)")

    def add_aws(p: argparse.ArgumentParser) -> None:
        p.add_argument("--profile", default=None, help="AWS shared-config profile for the base session")
        p.add_argument(
            "--role-arns",
            default=None,
            help="Comma-separated IAM role ARNs to assume, one per monitored account",
        )
        p.add_argument(
            "--regions",
            default=None,
            help="Comma-separated list of AWS regions to analyse",
        )

    # run
    p_run = subparsers.add_parser("run", help="Inventory accounts, reconcile ownership and report orphans")
    add_common(p_run)
    add_aws(p_run)
    p_run.add_argument("--outdir", type=Path, default=None, help="Output base directory (out/TS)")
    p_run.add_argument(
        "--parquet",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Also write unclaimed resources as Parquet (pyarrow)",
    )
    p_run.add_argument(
        "--pool-mode",
        default=None,
        choices=sorted(POOL_MODES),
        help="Capella pool scope: one copy per region (default) or one pool shared by all regions",
    )
    p_run.add_argument(
        "--report",
        default=None,
        choices=sorted(REPORT_TARGETS),
        help="Where to render the report (default: console)",
    )
    p_run.add_argument("--slack-channel", default=None, help="Slack channel ID for the threaded report")
    p_run.add_argument(
        "--workers-region", type=int, default=None, help=f"Max parallel regions (default {DEFAULT_WORKERS_REGION})"
    )
    p_run.add_argument("--capella-api-url", default=None, help="Couchbase Capella API base URL")

    # validate-auth
    p_val = subparsers.add_parser("validate-auth", help="Validate AWS credentials and role assumption")
    add_common(p_val)
    add_aws(p_val)

    # list-regions
    p_lr = subparsers.add_parser("list-regions", help="List the regions a run would analyse")
    add_common(p_lr)
    add_aws(p_lr)

    return parser


def load_run_config(
    args: Optional[argparse.Namespace] = None,
    argv: Optional[list[str]] = None,
    subcommand: Optional[str] = None,
) -> Tuple[str, RunConfig]:
    """
    Build RunConfig by merging defaults, optional config file, env vars, and CLI args.
    Precedence (low -> high): defaults < config file < env < CLI.

    Secrets (Capella API keys, Slack token) are read from the environment only.

    Returns:
      (command, RunConfig) where command is the subcommand selected: run|validate-auth|list-regions
    """
    parser = build_parser()
    ns = args if args is not None else parser.parse_args(argv)
    command = ns.command if subcommand is None else subcommand

    # defaults
    base: Dict[str, Any] = {
        "outdir": None,
        "parquet": False,
        "regions": list(DEFAULT_REGIONS),
        "role_arns": [],
        "profile": None,
        "pool_mode": "region",
        "report": "console",
        "slack_channel": None,
        "slack_throttle_seconds": DEFAULT_SLACK_THROTTLE_SECONDS,
        "capella_api_url": DEFAULT_CAPELLA_API_URL,
        "workers_region": DEFAULT_WORKERS_REGION,
        "json_logs": False,
        "log_level": "INFO",
    }

    # config file
    file_cfg: Dict[str, Any] = {}
    if getattr(ns, "config", None):
        file_cfg = _normalize_config_file(_parse_config_file(Path(ns.config)))

    # env
    env_cfg: Dict[str, Any] = _compact_dict(
        {
            "outdir": _env_str("CLOUD_MON_OUTDIR"),
            "parquet": _env_bool("CLOUD_MON_PARQUET"),
            "regions": _env_str("CLOUD_MON_REGIONS"),
            "role_arns": _env_str("CLOUD_MON_AWS_ROLE_ARNS"),
            "profile": _env_str("CLOUD_MON_AWS_PROFILE"),
            "pool_mode": _env_str("CLOUD_MON_POOL_MODE"),
            "report": _env_str("CLOUD_MON_REPORT"),
            "slack_channel": _env_str("CLOUD_MON_SLACK_CHANNEL_ID"),
            "slack_throttle_seconds": _env_float("CLOUD_MON_SLACK_THROTTLE_SECONDS"),
            "capella_api_url": _env_str("CLOUD_MON_CAPELLA_API_URL"),
            "workers_region": _env_int("CLOUD_MON_WORKERS_REGION"),
            "json_logs": _env_bool("CLOUD_MON_JSON_LOGS"),
            "log_level": _env_str("CLOUD_MON_LOG_LEVEL"),
        }
    )

    # CLI
    cli_cfg: Dict[str, Any] = _compact_dict(
        {
            "outdir": getattr(ns, "outdir", None),
            "parquet": getattr(ns, "parquet", None),
            "regions": getattr(ns, "regions", None),
            "role_arns": getattr(ns, "role_arns", None),
            "profile": getattr(ns, "profile", None),
            "pool_mode": getattr(ns, "pool_mode", None),
            "report": getattr(ns, "report", None),
            "slack_channel": getattr(ns, "slack_channel", None),
            "capella_api_url": getattr(ns, "capella_api_url", None),
            "workers_region": getattr(ns, "workers_region", None),
            "json_logs": getattr(ns, "json_logs", None),
            "log_level": getattr(ns, "log_level", None),
        }
    )

    merged = _merge_dicts(base, _merge_dicts(file_cfg, _merge_dicts(env_cfg, cli_cfg)))

    # Normalize/construct types
    outdir_raw = merged.get("outdir")
    outdir = _timestamp_dir(outdir_raw) if command == "run" else Path(outdir_raw) if outdir_raw else Path.cwd()
    profile = merged.get("profile")
    log_level = (merged.get("log_level") or "INFO").upper()
    regions = _as_list(merged.get("regions")) or list(DEFAULT_REGIONS)
    role_arns = _as_list(merged.get("role_arns")) or []

    pool_mode = str(merged.get("pool_mode") or "region").lower()
    if pool_mode not in POOL_MODES:
        raise ValueError(f"pool_mode must be one of: {', '.join(sorted(POOL_MODES))}")
    report = str(merged.get("report") or "console").lower()
    if report not in REPORT_TARGETS:
        raise ValueError(f"report must be one of: {', '.join(sorted(REPORT_TARGETS))}")

    # default workers if None
    workers_region = int(merged["workers_region"] or DEFAULT_WORKERS_REGION)
    throttle = float(merged["slack_throttle_seconds"])
    if throttle < 0:
        raise ValueError("slack_throttle_seconds must not be negative")

    cfg = RunConfig(
        outdir=outdir,
        parquet=bool(merged["parquet"]),
        json_logs=bool(merged["json_logs"]),
        log_level=log_level,
        regions=regions,
        role_arns=role_arns,
        profile=str(profile) if profile else None,
        pool_mode=pool_mode,
        workers_region=workers_region,
        capella_api_url=str(merged.get("capella_api_url") or DEFAULT_CAPELLA_API_URL).rstrip("/"),
        capella_access_keys=_split_csv(_env_str("CLOUD_MON_CAPELLA_ACCESS_KEYS")) or [],
        capella_secret_keys=_split_csv(_env_str("CLOUD_MON_CAPELLA_SECRET_KEYS")) or [],
        report=report,
        slack_channel=merged.get("slack_channel") or None,
        slack_token=_env_str("CLOUD_MON_SLACK_BOT_TOKEN"),
        slack_throttle_seconds=throttle,
    )
    return command, cfg


def dump_config(cfg: RunConfig) -> Dict[str, Any]:
    return {
        "outdir": str(cfg.outdir),
        "parquet": cfg.parquet,
        "json_logs": cfg.json_logs,
        "log_level": cfg.log_level,
        "regions": cfg.regions,
        "role_arns": cfg.role_arns,
        "profile": cfg.profile,
        "pool_mode": cfg.pool_mode,
        "workers_region": cfg.workers_region,
        "capella_api_url": cfg.capella_api_url,
        "capella_key_pairs": len(cfg.capella_access_keys),
        "report": cfg.report,
        "slack_channel": cfg.slack_channel,
        "slack_throttle_seconds": cfg.slack_throttle_seconds,
        "collected_at": cfg.collected_at,
    }
