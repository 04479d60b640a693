from __future__ import annotations

from typing import List, Optional

from rich.console import Console
from rich.table import Table

from .sections import ReportSection


def section_table(section: ReportSection) -> Table:
    table = Table(title=f"{section.title} ({len(section.items)})", show_header=True, header_style="bold")
    columns: List[str] = []
    for fields in section.items:
        for key in fields:
            if key not in columns:
                columns.append(key)
    for column in columns:
        table.add_column(column)
    for fields in section.items:
        table.add_row(*[fields.get(column, "") for column in columns])
    return table


def render_console_report(sections: List[ReportSection], console: Optional[Console] = None) -> None:
    out = console or Console()
    for section in sections:
        out.print(section_table(section))
