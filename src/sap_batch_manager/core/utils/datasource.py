# -*- coding: utf-8 -*-
"""
Reading upload records from JSONL, JSON, CSV or Parquet files.

Field names are normalized once, here, so that "Sequence ID", "Sequence Id"
and "sequenceId" all reach the orchestrator under a single name.
"""

import json
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import polars as pl

from .misc import read_jsonl

SUPPORTED_SUFFIXES = ('.jsonl', '.json', '.csv', '.parquet')

_SEPARATORS = re.compile(r"[\s_\-.]+")


def compress_field_name(name) -> str:
    """Lowercase `name` and drop whitespace, underscores, dashes and dots."""
    return _SEPARATORS.sub("", str(name)).lower()


def build_field_map(
        columns: Iterable[str],
        canonical_fields: Iterable[str] = (),
        aliases: Optional[Dict[str, str]] = None
    ) -> Dict[str, str]:
    """
    Map source column names to canonical field names.

    A column is renamed when its compressed form matches the compressed
    form of a canonical field or of an alias. Columns that match nothing
    keep their name.
    """
    targets = {compress_field_name(f): f for f in canonical_fields}
    for alias, target in (aliases or {}).items():
        targets[compress_field_name(alias)] = target
        targets.setdefault(compress_field_name(target), target)
    return {column: targets.get(compress_field_name(column), column) for column in columns}


def normalize_record_keys(
        records: Iterable[dict],
        canonical_fields: Iterable[str] = (),
        aliases: Optional[Dict[str, str]] = None
    ) -> List[dict]:
    """
    Rename the keys of every record to their canonical names.

    When two source keys map to the same canonical name, the first
    non-empty value wins.
    """
    canonical_fields = list(canonical_fields)
    normalized = []
    cache: Dict[tuple, Dict[str, str]] = {}
    for record in records:
        columns = tuple(record.keys())
        if columns not in cache:
            cache[columns] = build_field_map(columns, canonical_fields, aliases)
        field_map = cache[columns]
        row = {}
        for key, value in record.items():
            target = field_map[key]
            if target not in row or row[target] in (None, ""):
                row[target] = value
        normalized.append(row)
    return normalized


def read_records_json(source_data_file) -> List[dict]:
    """Read a JSON file holding a list of records (or {"records": [...]})."""
    with open(source_data_file, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("records")
    if not isinstance(data, list) or not all(isinstance(r, dict) for r in data):
        raise ValueError(f"Expected a list of objects in {source_data_file}.")
    return data


def read_records_tabular(source_data_file) -> List[dict]:
    """
    Read a CSV or PARQUET file.

    CSV columns are read as strings so that document numbers keep their
    leading zeros.
    """
    source_data_file = Path(source_data_file)
    if source_data_file.suffix == '.csv':
        df = pl.read_csv(source_data_file, infer_schema_length=0)
    elif source_data_file.suffix == '.parquet':
        df = pl.read_parquet(source_data_file)
    else:
        raise ValueError('Source data file must be either CSV or PARQUET')
    return df.to_dicts()


def read_records(
        source_data_file,
        canonical_fields: Iterable[str] = (),
        aliases: Optional[Dict[str, str]] = None
    ) -> List[dict]:
    """Read records from a JSONL, JSON, CSV or PARQUET file and normalize their keys."""
    source_data_file = Path(source_data_file)
    if source_data_file.suffix == '.jsonl':
        records = read_jsonl(source_data_file)
    elif source_data_file.suffix == '.json':
        records = read_records_json(source_data_file)
    elif source_data_file.suffix in ['.csv', '.parquet']:
        records = read_records_tabular(source_data_file)
    else:
        raise ValueError("Source data file must be a JSONL, JSON, CSV or PARQUET file.")
    return normalize_record_keys(records, canonical_fields, aliases)


def check_source_data_fields(source_data_file, required_fields: Iterable[str], aliases=None):
    """
    Check that the source data provides every field in `required_fields`
    (after key normalization).

    Returns:
        tuple: (ok, {row index: missing fields}) for the offending rows.
    """
    required_fields = list(required_fields)
    records = read_records(source_data_file, required_fields, aliases)
    missing = {}
    for i, record in enumerate(records):
        absent = [f for f in required_fields if f not in record]
        if absent:
            missing[i] = absent
    if missing:
        return False, missing
    return True, None
