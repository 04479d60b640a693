from __future__ import annotations

import logging
import sys
from time import perf_counter
from typing import Any, Dict, List, Optional, Set, Tuple

from .aws.auth import AccountContext, make_session, resolve_accounts
from .aws.fetch import fetch_region_snapshot
from .aws.regions import list_enabled_regions, unavailable_regions
from .capella.fetch import fetch_capella_snapshot
from .claims.pool import RegionSnapshot, region_key
from .claims.reconcile import reconcile
from .config import RunConfig, dump_config, load_run_config
from .export.jsonl import write_json, write_jsonl
from .export.records import forest, run_summary, unclaimed_records
from .logging import LogConfig, add_run_log_file, get_logger, setup_logging
from .report.console import render_console_report
from .report.sections import build_report_sections
from .report.slack import SlackReporter
from .util.concurrency import parallel_map_ordered
from .util.errors import ConfigError, as_exit_code
from .util.rich_progress import RunProgress, render_run_summary_table
from .util.time import utc_now_iso

LOG = get_logger(__name__)

OUT_SCHEMA_VERSION = "1"


class _StepTimers:
    def __init__(self) -> None:
        self._starts: Dict[str, float] = {}

    def start(self, key: str) -> None:
        self._starts[key] = perf_counter()

    def finish(self, key: str) -> Optional[int]:
        started = self._starts.pop(key, None)
        if started is None:
            return None
        return int((perf_counter() - started) * 1000)


def _log_event(
    logger: Any,
    level: int,
    message: str,
    *,
    step: str,
    phase: str,
    timers: Optional[_StepTimers] = None,
    timer_key: Optional[str] = None,
    **extra: Any,
) -> None:
    key = timer_key or step
    duration_ms = None
    if timers is not None:
        if phase == "start":
            timers.start(key)
        elif phase in {"complete", "error", "warning", "skipped"}:
            duration_ms = timers.finish(key)
    payload: Dict[str, Any] = {"step": step, "phase": phase, "event": f"{step}.{phase}"}
    if duration_ms is not None:
        payload["duration_ms"] = duration_ms
    payload.update(extra)
    logger.log(level, message, extra=payload)


def _fetch_snapshots(
    session: Any,
    accounts: List[AccountContext],
    regions: List[str],
    *,
    max_workers: int,
    progress: RunProgress,
) -> List[RegionSnapshot]:
    targets: List[Tuple[AccountContext, str]] = []
    seen: Set[str] = set()
    for acct in accounts:
        for region in regions:
            key = region_key(acct.account, region)
            if key in seen:
                # Two roles into one account resolve to the same key.
                LOG.warning("Skipping repeated region target %s", key, extra={"step": "fetch", "phase": "plan"})
                continue
            seen.add(key)
            targets.append((acct, region))
    progress.start_fetch([region_key(acct.account, region) for acct, region in targets])

    def _one(target: Tuple[AccountContext, str]) -> RegionSnapshot:
        acct, region = target
        snapshot = fetch_region_snapshot(session, acct, region)
        progress.advance_fetch(
            snapshot.key,
            resources=len(snapshot.volumes)
            + len(snapshot.instances)
            + len(snapshot.managed_clusters)
            + len(snapshot.stacks),
        )
        return snapshot

    # Order follows the account/region order of the config so shared pools are deterministic.
    return parallel_map_ordered(_one, targets, max_workers=max_workers, thread_name_prefix="fetch")


def _deliver_report(cfg: RunConfig, sections: List[Any]) -> None:
    if cfg.report == "slack":
        SlackReporter(
            cfg.slack_token,
            cfg.slack_channel,
            throttle_seconds=cfg.slack_throttle_seconds,
        ).post(sections)
    elif cfg.report == "console":
        render_console_report(sections)


def cmd_run(cfg: RunConfig) -> int:
    # Ensure the run directory exists early so the run log is always kept.
    cfg.outdir.mkdir(parents=True, exist_ok=True)
    add_run_log_file(cfg.outdir / "logs" / "run.log")
    timers = _StepTimers()
    collected_at = utc_now_iso()

    _log_event(
        LOG,
        logging.INFO,
        "Starting monitoring run",
        step="run",
        phase="start",
        timers=timers,
        outdir=str(cfg.outdir),
        pool_mode=cfg.pool_mode,
    )

    _log_event(LOG, logging.INFO, "Capella inventory started", step="capella", phase="start", timers=timers)
    capella = fetch_capella_snapshot(cfg.capella_access_keys, cfg.capella_secret_keys, cfg.capella_api_url)
    _log_event(
        LOG,
        logging.INFO,
        "Capella inventory complete",
        step="capella",
        phase="complete",
        timers=timers,
        db_accounts=len(capella.db_accounts),
        db_clusters=len(capella.db_clusters),
    )

    _log_event(
        LOG,
        logging.INFO,
        "Authentication resolution started",
        step="auth",
        phase="start",
        timers=timers,
        profile=cfg.profile,
        roles=len(cfg.role_arns),
    )
    session = make_session(cfg.profile)
    accounts = resolve_accounts(session, cfg.role_arns, cfg.profile)
    _log_event(
        LOG,
        logging.INFO,
        "Authentication resolved",
        step="auth",
        phase="complete",
        timers=timers,
        accounts=[a.account for a in accounts],
    )

    _log_event(
        LOG,
        logging.INFO,
        "AWS inventory started",
        step="fetch",
        phase="start",
        timers=timers,
        regions=cfg.regions,
    )
    with RunProgress(enabled=cfg.report == "console" and sys.stdout.isatty()) as progress:
        snapshots = _fetch_snapshots(
            session, accounts, cfg.regions, max_workers=cfg.workers_region, progress=progress
        )
    _log_event(
        LOG,
        logging.INFO,
        "AWS inventory complete",
        step="fetch",
        phase="complete",
        timers=timers,
        regions=len(snapshots),
    )

    _log_event(LOG, logging.INFO, "Claim stages started", step="claims", phase="start", timers=timers)
    global_ctx = reconcile(snapshots, capella, pool_mode=cfg.pool_mode, max_workers=cfg.workers_region)
    _log_event(LOG, logging.INFO, "Claim stages complete", step="claims", phase="complete", timers=timers)

    _log_event(LOG, logging.INFO, "Export started", step="export", phase="start", timers=timers)
    records = unclaimed_records(global_ctx, collected_at)
    unclaimed_path = cfg.outdir / "unclaimed.jsonl"
    write_jsonl(records, unclaimed_path)
    write_json(forest(global_ctx), cfg.outdir / "forest.json")
    if cfg.parquet:
        from .export.parquet import write_parquet

        write_parquet(records, cfg.outdir / "unclaimed.parquet")
    summary = run_summary(global_ctx)
    summary["schema_version"] = OUT_SCHEMA_VERSION
    summary["collected_at"] = collected_at
    summary["config"] = dump_config(cfg)
    write_json(summary, cfg.outdir / "run_summary.json")
    _log_event(
        LOG,
        logging.INFO,
        "Export complete",
        step="export",
        phase="complete",
        timers=timers,
        unclaimed=len(records),
    )

    _log_event(
        LOG,
        logging.INFO,
        "Report started",
        step="report",
        phase="start",
        timers=timers,
        target=cfg.report,
    )
    _deliver_report(cfg, build_report_sections(global_ctx))
    _log_event(
        LOG,
        logging.INFO,
        "Report complete",
        step="report",
        phase="complete",
        timers=timers,
        target=cfg.report,
    )

    render_run_summary_table(
        enabled=cfg.report == "console",
        status="OK",
        totals=summary["totals"],
        regions=[ctx.key for ctx in global_ctx.contexts()],
        outdir=str(cfg.outdir),
    )
    _log_event(LOG, logging.INFO, "Monitoring run complete", step="run", phase="complete", timers=timers)
    return 0


def cmd_validate_auth(cfg: RunConfig) -> int:
    session = make_session(cfg.profile)
    accounts = resolve_accounts(session, cfg.role_arns, cfg.profile)
    LOG.info("Authentication validated", extra={"profile": cfg.profile, "accounts": [a.account for a in accounts]})
    # Print to stdout a concise success message (no secrets)
    print("OK: authentication validated; accounts:", ", ".join(a.account for a in accounts))
    return 0


def cmd_list_regions(cfg: RunConfig) -> int:
    session = make_session(cfg.profile)
    accounts = resolve_accounts(session, cfg.role_arns, cfg.profile)
    for acct in accounts:
        enabled = list_enabled_regions(session, acct)
        missing = unavailable_regions(cfg.regions, enabled)
        for region in cfg.regions:
            marker = " (not enabled)" if region in missing else ""
            print(f"{region_key(acct.account, region)}{marker}")
    return 0


def main() -> None:
    try:
        command, cfg = load_run_config()
        setup_logging(LogConfig(level=cfg.log_level, json_logs=cfg.json_logs))

        if command == "run":
            code = cmd_run(cfg)
        elif command == "validate-auth":
            code = cmd_validate_auth(cfg)
        elif command == "list-regions":
            code = cmd_list_regions(cfg)
        else:
            raise ConfigError(f"Unknown command: {command}")

        sys.exit(code)
    except SystemExit:
        raise
    except BrokenPipeError:
        # Common when users pipe to `head` or similar tools.
        sys.exit(0)
    except Exception as e:
        # Map to consistent exit code and log
        setup_logging(LogConfig())
        LOG.error("Execution failed", extra={"error": str(e)})
        sys.exit(as_exit_code(e))


if __name__ == "__main__":
    main()
