# -*- coding: utf-8 -*-
"""
Partitioning of input records into submission groups.

Two modes are supported: fixed-size chunks of consecutive records, and
composite-field grouping where every record with the same (normalized)
key values lands in the same group. Groups are returned in the order in
which their key was first seen, which is also the submission order.
"""

import logging
import math
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Sequence

from .errors import ConfigurationError
from .models import ORIGINAL_INDEX_FIELD, Group, GroupKey, IndexedRecord

UNKNOWN_KEY = "UNKNOWN"
KEY_SEPARATOR = "::"

_ISO_DATETIME = re.compile(r"^(\d{4}-\d{2}-\d{2})[T ]\d{2}:\d{2}")
_ODATA_DATE = re.compile(r"^/Date\((-?\d+)(?:[+-]\d{4})?\)/$")


def assign_original_indices(records: Iterable[Any]) -> List[IndexedRecord]:
    """
    Wrap every record in an IndexedRecord.

    Records that already are IndexedRecords, or mappings carrying an
    integer `_original_index`, keep their index. Any other mapping gets its
    position in `records`.

    Raises:
        ConfigurationError: If a record is not a mapping or two records
            share the same original index.
    """
    if records is None or isinstance(records, (str, bytes, Mapping)):
        raise ConfigurationError("Records must be a list of mappings.")

    indexed = []
    seen = set()
    for position, record in enumerate(records):
        if isinstance(record, IndexedRecord):
            item = record
        elif isinstance(record, Mapping):
            original_index = record.get(ORIGINAL_INDEX_FIELD, position)
            if isinstance(original_index, bool) or not isinstance(original_index, int) or original_index < 0:
                raise ConfigurationError(
                    f"Record at position {position} has an invalid "
                    f"{ORIGINAL_INDEX_FIELD}: {original_index!r}"
                )
            item = IndexedRecord.from_mapping(original_index, record)
        else:
            raise ConfigurationError(
                f"Record at position {position} is a {type(record).__name__}, expected a mapping."
            )
        if item.original_index in seen:
            raise ConfigurationError(f"Duplicate original index {item.original_index} in input records.")
        seen.add(item.original_index)
        indexed.append(item)
    return indexed


def normalize_key_value(value: Any) -> str:
    """
    Normalize a field value into its group key representation.

    Dates become YYYY-MM-DD, integral floats lose their decimal part (as
    spreadsheet readers tend to produce 4500000001.0), booleans become
    'true'/'false' and missing or blank values become UNKNOWN_KEY.
    """
    if value is None:
        return UNKNOWN_KEY
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float):
        if math.isnan(value):
            return UNKNOWN_KEY
        if value.is_integer():
            return str(int(value))
        return str(value)
    text = str(value).strip()
    if not text:
        return UNKNOWN_KEY
    match = _ISO_DATETIME.match(text)
    if match:
        return match.group(1)
    match = _ODATA_DATE.match(text)
    if match:
        millis = int(match.group(1))
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).date().isoformat()
    return text


def group_records(
        records: Sequence[IndexedRecord],
        key_fn: Callable[[IndexedRecord, int], GroupKey]
    ) -> Dict[GroupKey, List[IndexedRecord]]:
    """
    Group records by `key_fn(record, position)`.

    The returned dict preserves the order in which keys are first seen.
    Empty keys are replaced by UNKNOWN_KEY, so no record is ever dropped.
    """
    groups: Dict[GroupKey, List[IndexedRecord]] = {}
    for position, record in enumerate(records):
        key = key_fn(record, position)
        if key is None or (isinstance(key, str) and not key.strip()):
            key = UNKNOWN_KEY
        groups.setdefault(str(key), []).append(record)
    return groups


class GroupingStrategy(ABC):
    """Base class for the partitioning strategies."""

    @abstractmethod
    def key_for(self, record: IndexedRecord, position: int) -> GroupKey:
        """Return the group key of `record` at `position` in the input."""

    def describe(self) -> str:
        return type(self).__name__

    def group(self, records: Sequence[IndexedRecord]) -> Dict[GroupKey, List[IndexedRecord]]:
        return group_records(records, self.key_for)

    def partition(self, records: Sequence[IndexedRecord]) -> List[Group]:
        """Partition `records` into ordered, immutable groups."""
        grouped = self.group(records)
        groups = [
            Group(key=key, index=index, records=tuple(items))
            for index, (key, items) in enumerate(grouped.items())
        ]
        logging.info(f"Grouped {len(records)} records into {len(groups)} groups ({self.describe()}).")
        for group in groups:
            logging.debug(f"Group {group.key}: {len(group)} records")
        return groups


class ChunkGrouping(GroupingStrategy):
    """Fixed-size chunks of consecutive records, regardless of content."""

    def __init__(self, size: int):
        if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
            raise ConfigurationError(f"Chunk size must be a positive integer, got {size!r}.")
        self.size = size

    def key_for(self, record, position):
        return f"chunk-{position // self.size + 1:04d}"

    def describe(self):
        return f"chunks of {self.size}"


class FieldGrouping(GroupingStrategy):
    """Composite key built from one or more record fields."""

    def __init__(self, fields: Sequence[str], separator: str = KEY_SEPARATOR):
        if isinstance(fields, str):
            fields = [fields]
        fields = [f for f in fields if f]
        if not fields:
            raise ConfigurationError("Field grouping needs at least one field name.")
        self.fields = tuple(fields)
        self.separator = separator

    def _escape(self, value: str) -> str:
        for char in "\\" + "".join(sorted(set(self.separator) - {"\\"})):
            value = value.replace(char, "\\" + char)
        return value

    def key_for(self, record, position):
        values = [normalize_key_value(record.get(f)) for f in self.fields]
        if len(values) == 1:
            return values[0]
        # separator characters inside values are backslash-escaped so
        # distinct value tuples never render to the same key
        return self.separator.join(self._escape(v) for v in values)

    def split_key(self, key: GroupKey) -> Dict[str, str]:
        """Map a composite key back to its field values."""
        if len(self.fields) == 1:
            return {self.fields[0]: key}
        values, current, i = [], [], 0
        while i < len(key):
            if key[i] == "\\" and i + 1 < len(key):
                current.append(key[i + 1])
                i += 2
            elif key.startswith(self.separator, i):
                values.append("".join(current))
                current = []
                i += len(self.separator)
            else:
                current.append(key[i])
                i += 1
        values.append("".join(current))
        return dict(zip(self.fields, values))

    def describe(self):
        return "by " + " + ".join(self.fields)


class CallableGrouping(GroupingStrategy):
    """Arbitrary key function `fn(record_data) -> key`."""

    def __init__(self, fn: Callable[[Mapping], Any]):
        if not callable(fn):
            raise ConfigurationError("group_key_fn must be callable.")
        self.fn = fn

    def key_for(self, record, position):
        return normalize_key_value(self.fn(record.data))

    def describe(self):
        return f"by {getattr(self.fn, '__name__', 'key function')}"
