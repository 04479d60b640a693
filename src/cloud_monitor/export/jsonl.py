from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, List

from ..util.serialization import stable_json_dumps
from .records import Record


def write_jsonl(records: Iterable[Record], path: Path) -> None:
    """
    Write records to a JSONL file with stable key ordering and deterministic line order.
    Ordering: sort by resourceKey.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    sorted_records: List[Record] = sorted(records, key=lambda r: str(r.get("resourceKey") or ""))
    with path.open("w", encoding="utf-8") as f:
        for rec in sorted_records:
            f.write(stable_json_dumps(rec))
            f.write("\n")


def write_json(obj: Any, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False), encoding="utf-8")
