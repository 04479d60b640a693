from __future__ import annotations

import json

import pytest

from cloud_monitor.export import parquet as parquet_mod
from cloud_monitor.export.records import RECORD_FIELDS


def _record(key: str) -> dict:
    return {
        "resourceKey": key,
        "kind": "volume",
        "id": key.rsplit(":", 1)[-1],
        "name": "data",
        "account": "111",
        "region": "us-east-1",
        "createdAt": None,
        "tags": {"Name": "data"},
        "details": {"sizeGiB": 8},
        "collectedAt": "2024-01-01T00:00:00+00:00",
    }


def test_write_parquet_raises_when_pyarrow_missing(monkeypatch, tmp_path) -> None:
    def _raise():
        raise parquet_mod.ParquetNotAvailable("pyarrow is required for Parquet export.")

    monkeypatch.setattr(parquet_mod, "_require_pyarrow", _raise)

    with pytest.raises(parquet_mod.ParquetNotAvailable):
        parquet_mod.write_parquet([_record("volume:111/us-east-1:vol-1")], tmp_path / "unclaimed.parquet")


def test_flatten_row_encodes_nested_columns_as_json() -> None:
    row = parquet_mod._flatten_row(_record("volume:111/us-east-1:vol-1"))

    assert set(row) == set(RECORD_FIELDS)
    assert json.loads(row["tags"]) == {"Name": "data"}
    assert json.loads(row["details"]) == {"sizeGiB": 8}
    assert row["createdAt"] is None


def test_write_parquet_sorts_rows_by_key(tmp_path) -> None:
    pq = pytest.importorskip("pyarrow.parquet")
    path = tmp_path / "unclaimed.parquet"

    parquet_mod.write_parquet(
        [_record("volume:111/us-east-1:vol-2"), _record("volume:111/us-east-1:vol-1")],
        path,
    )

    table = pq.read_table(path)
    assert table.column_names == list(RECORD_FIELDS)
    assert table.column("id").to_pylist() == ["vol-1", "vol-2"]
