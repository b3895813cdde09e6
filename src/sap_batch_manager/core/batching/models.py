# -*- coding: utf-8 -*-
"""
Data model shared by the grouping, orchestration and aggregation modules.
"""

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

ORIGINAL_INDEX_FIELD = "_original_index"

GroupKey = str


@dataclass(frozen=True)
class IndexedRecord:
    """
    An input record with a stable position in the caller's original list.

    `data` is a read-only copy of the caller's mapping, so mutating the
    caller's list after the run has started does not affect submissions.
    """
    original_index: int
    data: Mapping[str, Any]

    @classmethod
    def from_mapping(cls, original_index: int, record: Mapping[str, Any]):
        data = {k: v for k, v in record.items() if k != ORIGINAL_INDEX_FIELD}
        return cls(original_index=original_index, data=MappingProxyType(data))

    def get(self, key, default=None):
        return self.data.get(key, default)

    def to_dict(self) -> dict:
        return dict(self.data)


@dataclass(frozen=True)
class Group:
    """Ordered, non-empty sequence of records submitted in one call."""
    key: GroupKey
    index: int
    records: Tuple[IndexedRecord, ...]

    def __post_init__(self):
        if not self.records:
            raise ValueError(f"Group {self.key!r} must contain at least one record.")

    def __len__(self):
        return len(self.records)

    @property
    def original_indices(self) -> Tuple[int, ...]:
        return tuple(r.original_index for r in self.records)


@dataclass(frozen=True)
class ErrorInfo:
    code: str
    message: str
    details: Any = None

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


@dataclass(frozen=True)
class SubmissionOutcome:
    """Per-record result of a group submission."""
    original_index: int
    succeeded: bool
    result_payload: Any = None
    error_info: Optional[ErrorInfo] = None

    @classmethod
    def success(cls, original_index: int, payload: Any = None):
        return cls(original_index=original_index, succeeded=True, result_payload=payload)

    @classmethod
    def failure(cls, original_index: int, code: str, message: str, details: Any = None):
        return cls(
            original_index=original_index,
            succeeded=False,
            error_info=ErrorInfo(code=code, message=message, details=details)
        )


@dataclass
class ResultRecord:
    """
    An outcome joined with its original record, as kept by the aggregator.

    The outcome itself is immutable. Only display fields (status message
    and follow-up annotations) change after the record has been stored.
    """
    outcome: SubmissionOutcome
    record: IndexedRecord
    group_key: GroupKey
    group_index: int
    status_message: str
    annotations: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        row = self.record.to_dict()
        row["original_index"] = self.outcome.original_index
        row["group_key"] = self.group_key
        row["status_message"] = self.status_message
        if self.outcome.succeeded:
            row["result"] = self.outcome.result_payload
        else:
            error = self.outcome.error_info
            row["Status"] = "Error"
            row["ErrorCode"] = error.code if error else "ERROR"
            row["ErrorMessage"] = error.message if error else "Processing failed"
            row["ErrorDetails"] = error.details if error else None
        row.update(self.annotations)
        return row


def create_standard_message(
    message_type: str = "info",
    code: Optional[str] = None,
    message: Optional[str] = None,
    details: Any = "",
    source: str = "BatchOrchestrator",
    entity_id: str = "",
    group_index: Any = "",
    original_index: int = -1
) -> dict:
    """
    Create a standardized message object for the run's message log.

    Missing codes and messages default according to the message type.
    """
    message_type = str(message_type).lower()
    defaults = {
        "success": ("SUCCESS", "Operation successful."),
        "error": ("ERROR", "Operation failed."),
        "warning": ("WARNING", "Operation completed with warnings."),
    }
    default_code, default_message = defaults.get(message_type, ("INFO", "Operation processed."))
    return {
        "type": message_type,
        "code": code or default_code,
        "message": message or default_message,
        "details": details,
        "timestamp": datetime.now().isoformat(),
        "source": source,
        "entity_id": entity_id,
        "group_index": group_index,
        "original_index": original_index,
    }


@dataclass(frozen=True)
class RunSummary:
    """Immutable snapshot of a run's aggregate results."""
    total_records: int
    processed_count: int
    success_count: int
    failure_count: int
    success_records: Tuple[dict, ...]
    error_records: Tuple[dict, ...]
    cancelled: bool
    duration_ms: int
    total_groups: int = 0
    processed_groups: int = 0
    state: str = "running"
    status: str = ""
    all_messages: Tuple[dict, ...] = ()

    @property
    def remaining_count(self) -> int:
        return max(0, self.total_records - self.processed_count)

    def to_dict(self, include_messages: bool = True) -> dict:
        summary = {
            "total_records": self.total_records,
            "processed_count": self.processed_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "total_groups": self.total_groups,
            "processed_groups": self.processed_groups,
            "cancelled": self.cancelled,
            "duration_ms": self.duration_ms,
            "state": self.state,
            "status": self.status,
            "success_records": [dict(r) for r in self.success_records],
            "error_records": [dict(r) for r in self.error_records],
        }
        if include_messages:
            summary["all_messages"] = [dict(m) for m in self.all_messages]
        return summary
