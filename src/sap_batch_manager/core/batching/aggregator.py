# -*- coding: utf-8 -*-
"""
Accumulation of per-record outcomes, counts and timing statistics.
"""

import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional

from .models import (Group, IndexedRecord, ResultRecord, RunSummary,
                     SubmissionOutcome, create_standard_message)

MIN_THROUGHPUT = 0.01  # records/second below which no ETA is shown

STATUS_COMPLETED = "Processing completed successfully."
STATUS_CANCELLED = "Processing cancelled by user."
STATUS_NOTHING = "Nothing to process."


def format_duration(seconds: int) -> str:
    """Format a number of seconds into `Ns`, `Mm Ss` or `Hh Mm`."""
    seconds = int(seconds)
    if seconds >= 3600:
        return f"{seconds // 3600}h {(seconds % 3600) // 60}m"
    if seconds >= 60:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds}s"


class ProgressAggregator:
    """
    Running counts plus the ordered success and error lists of a run.

    Throughput is measured from `start()` with the elapsed time clamped to
    at least one second, and the ETA is derived from it. `finalize` freezes
    the summary and can only be called once.

    Args:
        total_records (int): Number of records in the run.
        total_groups (int): Number of groups in the run.
        clock (Callable[[], float]): Monotonic clock in seconds.
    """

    def __init__(
        self,
        total_records: int,
        total_groups: int = 0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.total_records = total_records
        self.total_groups = total_groups
        self.clock = clock

        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None
        self.processed_groups = 0
        self.success: List[ResultRecord] = []
        self.errors: List[ResultRecord] = []
        self.messages: List[dict] = []
        self._by_index: Dict[int, ResultRecord] = {}
        self._final: Optional[RunSummary] = None

    # Counters

    @property
    def success_count(self) -> int:
        return len(self.success)

    @property
    def failure_count(self) -> int:
        return len(self.errors)

    @property
    def processed_count(self) -> int:
        return self.success_count + self.failure_count

    @property
    def remaining_count(self) -> int:
        return max(0, self.total_records - self.processed_count)

    @property
    def finalized(self) -> bool:
        return self._final is not None

    def start(self) -> None:
        if self.start_time is None:
            self.start_time = self.clock()

    def elapsed_seconds(self) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else self.clock()
        return max(0.0, end - self.start_time)

    # Recording

    def record(self, outcome: SubmissionOutcome, record: IndexedRecord, group: Group) -> ResultRecord:
        """
        Append `outcome` to the success or error list.

        Raises:
            RuntimeError: If the run is finalized or the record already has
                an outcome.
        """
        if self.finalized:
            raise RuntimeError("Cannot record outcomes after the run has been finalized.")
        if outcome.original_index in self._by_index:
            raise RuntimeError(f"Record {outcome.original_index} already has an outcome.")

        if outcome.succeeded:
            message = "Created successfully."
        else:
            message = outcome.error_info.message if outcome.error_info else "Processing failed."
        result = ResultRecord(
            outcome=outcome,
            record=record,
            group_key=group.key,
            group_index=group.index,
            status_message=message
        )
        (self.success if outcome.succeeded else self.errors).append(result)
        self._by_index[outcome.original_index] = result

        error = outcome.error_info
        self.messages.append(create_standard_message(
            "success" if outcome.succeeded else "error",
            code=None if outcome.succeeded else error.code,
            message=message,
            details=outcome.result_payload if outcome.succeeded else error.details,
            entity_id=group.key,
            group_index=group.index + 1,
            original_index=outcome.original_index
        ))
        return result

    def mark_group_processed(self) -> None:
        self.processed_groups += 1

    def annotate(self, original_index: int, **fields: Any) -> None:
        """
        Attach display fields to an already recorded result.

        `status_message` replaces the result's status message and
        `status_suffix` is appended to it; any other field is added to the
        exported record. The outcome itself and the list the record
        belongs to never change.
        """
        result = self._by_index.get(original_index)
        if result is None:
            logging.warning(f"Cannot annotate unknown record {original_index}.")
            return
        status_message = fields.pop("status_message", None)
        status_suffix = fields.pop("status_suffix", None)
        if status_message is not None:
            result.status_message = status_message
        if status_suffix:
            result.status_message = f"{result.status_message} {status_suffix}"
        result.annotations.update(fields)

    # Timing

    def throughput(self) -> float:
        """Records per second since start, elapsed clamped to >= 1s."""
        return self.processed_count / max(1.0, self.elapsed_seconds())

    def eta_seconds(self) -> Optional[int]:
        """Seconds left at the current throughput, None while unreliable."""
        if self.remaining_count == 0:
            return 0
        throughput = self.throughput()
        if throughput <= MIN_THROUGHPUT:
            return None
        return math.ceil(self.remaining_count / throughput)

    def format_eta(self) -> str:
        if self.finalized:
            return "0s"
        if self.remaining_count == 0:
            return "Finishing..."
        eta = self.eta_seconds()
        if eta is None:
            return "Calculating..."
        return f"~{format_duration(eta)}"

    # Status

    def terminal_state(self, cancelled: bool) -> tuple[str, str]:
        if cancelled:
            return "cancelled", STATUS_CANCELLED
        if self.failure_count:
            return "completed_with_failures", f"Processing finished with {self.failure_count} failed record(s)."
        if self.total_records == 0:
            return "completed", STATUS_NOTHING
        return "completed", STATUS_COMPLETED

    def progress_update(self, status: str, **extra: Any) -> dict:
        """Build the plain progress event handed to the progress sink."""
        percent = 100.0 if not self.total_records else round(100 * self.processed_count / self.total_records, 1)
        update = {
            "status": status,
            "state": self._final.state if self._final else "running",
            "total_records": self.total_records,
            "processed_count": self.processed_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "remaining_count": self.remaining_count,
            "total_groups": self.total_groups,
            "processed_groups": self.processed_groups,
            "progress": percent,
            "throughput": round(self.throughput(), 2),
            "processing_speed": f"{self.throughput():.0f} records/sec",
            "time_remaining": self.format_eta(),
            "elapsed_ms": int(self.elapsed_seconds() * 1000),
            "is_completed": self.finalized,
        }
        update.update(extra)
        return update

    def _summary(self, state: str, status: str, cancelled: bool) -> RunSummary:
        return RunSummary(
            total_records=self.total_records,
            processed_count=self.processed_count,
            success_count=self.success_count,
            failure_count=self.failure_count,
            success_records=tuple(r.to_dict() for r in self.success),
            error_records=tuple(r.to_dict() for r in self.errors),
            cancelled=cancelled,
            duration_ms=int(self.elapsed_seconds() * 1000),
            total_groups=self.total_groups,
            processed_groups=self.processed_groups,
            state=state,
            status=status,
            all_messages=tuple(dict(m) for m in self.messages)
        )

    def snapshot(self) -> RunSummary:
        """Current summary. Once finalized, the frozen final summary."""
        if self._final is not None:
            return self._final
        return self._summary("running", "Processing...", cancelled=False)

    def finalize(self, cancelled: bool = False) -> RunSummary:
        """
        Freeze the run's duration, cancelled flag and terminal status.

        Raises:
            RuntimeError: If called more than once.
        """
        if self._final is not None:
            raise RuntimeError("Run summary has already been finalized.")
        self.start()
        self.end_time = self.clock()
        state, status = self.terminal_state(cancelled)
        self._final = self._summary(state, status, cancelled)
        logging.info(
            f"{status} {self.success_count} succeeded, {self.failure_count} failed, "
            f"{self.remaining_count} not processed ({self._final.duration_ms} ms)."
        )
        return self._final
