from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List

from ..logging import get_logger
from ..util.errors import ExportError
from ..util.serialization import stable_json_dumps
from .records import RECORD_FIELDS, Record

LOG = get_logger(__name__)

# Nested columns are written as JSON strings so rows with different tag or
# detail keys share one flat schema.
JSON_COLUMNS = ("tags", "details")


class ParquetNotAvailable(ExportError):
    pass


def _require_pyarrow():
    try:
        import pyarrow as pa  # type: ignore
        import pyarrow.parquet as pq  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ParquetNotAvailable(
            "pyarrow is required for Parquet export. Install with: pip install .[parquet]"
        ) from e
    return pa, pq


def _flatten_row(record: Record) -> Dict[str, Any]:
    row: Dict[str, Any] = {}
    for key in RECORD_FIELDS:
        value = record.get(key)
        if key in JSON_COLUMNS:
            row[key] = stable_json_dumps(value if value is not None else {})
        else:
            row[key] = None if value is None else str(value)
    return row


def write_parquet(records: Iterable[Record], path: Path) -> None:
    """
    Write unclaimed records as a Parquet file with one string column per record field.
    """
    pa, pq = _require_pyarrow()
    path.parent.mkdir(parents=True, exist_ok=True)

    rows: List[Dict[str, Any]] = [
        _flatten_row(r) for r in sorted(records, key=lambda r: str(r.get("resourceKey") or ""))
    ]
    schema = pa.schema([pa.field(name, pa.string(), nullable=True) for name in RECORD_FIELDS])
    try:
        table = pa.Table.from_pylist(rows, schema=schema)
    except Exception as exc:
        LOG.error(
            "Parquet table build failed",
            extra={"step": "export", "phase": "error", "artifact": "parquet", "error": str(exc)},
        )
        raise
    pq.write_table(table, path)
