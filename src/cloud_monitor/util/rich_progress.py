from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table


def _format_region_counts(counts: Dict[str, int], *, max_regions: int = 4) -> str:
    if not counts:
        return ""
    items = sorted(counts.items())
    shown = items[:max_regions]
    tail = len(items) - len(shown)
    rendered = ", ".join(f"{name}={count}" for name, count in shown)
    return f"{rendered} (+{tail} more)" if tail > 0 else rendered


class RunProgress:
    """Transient progress bar for the fetch phase; a no-op when disabled."""

    def __init__(self, *, enabled: bool, console: Optional[Console] = None) -> None:
        self._console = console or Console()
        self._progress: Optional[Progress] = None
        self._fetch_task: Optional[int] = None
        self._region_counts: Dict[str, int] = {}
        self._started = False
        if enabled:
            self._progress = Progress(
                TextColumn("{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                TextColumn("{task.fields[regions]}", justify="left"),
                TimeElapsedColumn(),
                console=self._console,
                transient=True,
            )

    def __enter__(self) -> RunProgress:
        if self._progress is not None and not self._started:
            self._progress.start()
            self._started = True
        return self

    def __exit__(self, exc_type: Any, exc: Any, exc_tb: Any) -> None:
        if self._progress is not None and self._started:
            self._progress.stop()
            self._started = False

    def start_fetch(self, region_keys: Sequence[str]) -> None:
        if self._progress is None:
            return
        self._region_counts = {key: 0 for key in region_keys}
        self._fetch_task = self._progress.add_task(
            "Fetch",
            total=len(region_keys) or None,
            regions=_format_region_counts(self._region_counts),
        )

    def advance_fetch(self, region_key: str, *, resources: int = 0) -> None:
        if self._progress is None or self._fetch_task is None:
            return
        if region_key:
            self._region_counts[region_key] = self._region_counts.get(region_key, 0) + resources
        self._progress.update(
            self._fetch_task,
            advance=1,
            regions=_format_region_counts(self._region_counts),
        )


def render_run_summary_table(
    *,
    enabled: bool,
    status: str,
    totals: Dict[str, Dict[str, int]],
    regions: Sequence[str],
    outdir: str,
    console: Optional[Console] = None,
) -> None:
    if not enabled:
        return
    table = Table(title="Run Summary", show_header=True, header_style="bold")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("Status", status)
    table.add_row("Regions in scope", ", ".join(regions))
    for kind, counts in totals.items():
        table.add_row(f"{kind} claimed/unclaimed", f"{counts.get('claimed', 0)}/{counts.get('unclaimed', 0)}")
    table.add_row("Output dir", outdir)
    (console or Console()).print(table)
