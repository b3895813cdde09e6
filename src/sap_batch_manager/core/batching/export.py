# -*- coding: utf-8 -*-
"""
Export of success and error records to CSV, JSONL or Parquet.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, Literal

import polars as pl

from ..utils.misc import ensure_output_path, mask_path, write_jsonl
from .models import RunSummary

FileType = Literal["csv", "jsonl", "parquet"]

# Leading columns of exported files, when present
_LEADING_COLUMNS = [
    "original_index", "group_key", "status_message",
    "Status", "ErrorCode", "ErrorMessage", "ErrorDetails",
]


def _cell(value):
    if value is None:
        return None
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str, ensure_ascii=False)
    return str(value)


def records_to_frame(records: Iterable[dict]) -> pl.DataFrame:
    """
    Build a string typed DataFrame from result records.

    Nested values (result payloads, error bodies) are serialized as JSON.
    """
    rows = [{k: _cell(v) for k, v in record.items()} for record in records]
    if not rows:
        return pl.DataFrame()
    columns = list(dict.fromkeys(k for row in rows for k in row))
    leading = [c for c in _LEADING_COLUMNS if c in columns]
    columns = leading + [c for c in columns if c not in leading]
    return pl.from_dicts(rows, schema={c: pl.Utf8 for c in columns})


def write_records(records: Iterable[dict], path: str | Path, file_type: FileType = "csv") -> Path:
    """
    Write result records to `path`.

    JSONL keeps the original value types. CSV and Parquet are written
    through polars with every value as a string.
    """
    path = Path(path)
    records = list(records)
    if file_type == "jsonl":
        write_jsonl([json.loads(json.dumps(r, default=str)) for r in records], path)
    elif file_type in ("csv", "parquet"):
        df = records_to_frame(records)
        if file_type == "csv":
            df.write_csv(path)
        else:
            df.write_parquet(path)
    else:
        raise ValueError(f"Unsupported export file type: {file_type}")
    logging.info(f"Exported {len(records)} records to {mask_path(path)}")
    return path


def export_results(
        summary: RunSummary,
        output_dir: str | Path,
        file_type: FileType = "csv",
        include_empty: bool = False
    ) -> Dict[str, Path]:
    """
    Export the success and error records of a run into `output_dir`.

    Files are named `success_records.<ext>` and `error_records.<ext>`.
    Empty lists are skipped unless `include_empty` is set.

    Returns:
        dict: Maps 'success' / 'errors' to the written paths.
    """
    output_dir = Path(output_dir)
    ensure_output_path(str(output_dir), "Results folder")

    written = {}
    for name, records in (("success", summary.success_records), ("errors", summary.error_records)):
        if not records and not include_empty:
            continue
        stem = "success_records" if name == "success" else "error_records"
        written[name] = write_records(records, output_dir / f"{stem}.{file_type}", file_type)
    return written
