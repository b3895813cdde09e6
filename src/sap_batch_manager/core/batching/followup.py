# -*- coding: utf-8 -*-
"""
Post-processing of successfully created records.

Some uploads need a second call once a document exists, e.g. approving a
service entry sheet so the goods receipt gets posted. The hook runs that
call in the background, without holding up the next group, and only
annotates the record: a failed follow-up never turns a created record
into an error.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional

from .models import IndexedRecord, SubmissionOutcome

TRUTHY_FLAGS = frozenset({"X", "TRUE", "YES", "Y", "1"})

FollowUpAction = Callable[[SubmissionOutcome, IndexedRecord], Any | Awaitable[Any]]


def is_flag_set(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value == 1
    return str(value).strip().upper() in TRUTHY_FLAGS


class FollowUpHook:
    """
    Schedule `action(outcome, record)` for created records whose
    `flag_field` is set.

    Args:
        action: Sync or async callable performing the follow-up call.
        flag_field (str): Record field that requests the follow-up.
        dedupe_key: Optional `fn(outcome) -> key`. Records sharing a key
            (e.g. the created document number) share a single call.
        label (str): Name used in logs and status messages.
    """

    def __init__(
        self,
        action: FollowUpAction,
        flag_field: str = "GRNCreate",
        dedupe_key: Optional[Callable[[SubmissionOutcome], Hashable]] = None,
        label: str = "follow-up"
    ):
        self.action = action
        self.flag_field = flag_field
        self.dedupe_key = dedupe_key
        self.label = label

        self._annotate: Callable[..., None] = lambda original_index, **fields: None
        self._on_status: Callable[[str], None] = lambda status: None
        self._tasks: Dict[Hashable, asyncio.Task] = {}
        self._members: Dict[Hashable, List[int]] = {}
        self._settled: Dict[Hashable, set] = {}

    def bind(
        self,
        annotate: Callable[..., None],
        on_status: Optional[Callable[[str], None]] = None,
        flag_field: Optional[str] = None
    ) -> None:
        """
        Connect the hook to a new run's result annotation and status output.

        Bookkeeping of the previous run is dropped, since original indices
        restart with every run. `flag_field`, when given, replaces the
        field that requests the follow-up.
        """
        self._annotate = annotate
        if on_status is not None:
            self._on_status = on_status
        if flag_field:
            self.flag_field = flag_field
        self._tasks = {}
        self._members = {}
        self._settled = {}

    @property
    def pending(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    def wants_follow_up(self, outcome: SubmissionOutcome, record: IndexedRecord) -> bool:
        return outcome.succeeded and is_flag_set(record.get(self.flag_field))

    def maybe_follow_up(self, outcome: SubmissionOutcome, record: IndexedRecord) -> bool:
        """
        Schedule the follow-up for `record` if it was created and flagged.

        Must be called from within the running event loop. Returns True if
        the record is covered by a (new or already scheduled) follow-up.
        """
        if not self.wants_follow_up(outcome, record):
            return False

        key = self.dedupe_key(outcome) if self.dedupe_key else None
        if key is None:
            key = ("record", outcome.original_index)
        if key in self._tasks:
            self._members[key].append(outcome.original_index)
            if key in self._settled:
                self._settle(key, self._tasks[key])
            return True

        self._members[key] = [outcome.original_index]
        task = asyncio.get_running_loop().create_task(self._run(outcome, record))
        task.add_done_callback(lambda t, key=key: self._settle(key, t))
        self._tasks[key] = task
        logging.debug(f"Scheduled {self.label} for record {outcome.original_index}")
        return True

    async def _run(self, outcome, record):
        result = self.action(outcome, record)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _settle(self, key: Hashable, task: asyncio.Task) -> None:
        if not task.done():
            return
        annotated = self._settled.setdefault(key, set())

        if task.cancelled():
            fields = {"follow_up_status": "cancelled"}
        elif task.exception() is not None:
            error = task.exception()
            logging.error(f"{self.label} failed for {key}: {error}")
            fields = {
                "follow_up_status": "failed",
                "follow_up_error": str(error) or type(error).__name__,
                "status_suffix": f"(created but {self.label} failed)",
            }
        else:
            fields = {"follow_up_status": "completed"}
            if task.result() is not None:
                fields["follow_up_result"] = task.result()

        new_members = [i for i in self._members.get(key, []) if i not in annotated]
        for original_index in new_members:
            self._annotate(original_index, **fields)
            annotated.add(original_index)
        if new_members and not task.cancelled():
            self._on_status(f"{self.label.capitalize()} {fields['follow_up_status']} for {len(new_members)} record(s)")

    async def drain(self) -> None:
        """Wait for every scheduled follow-up and annotate its records."""
        tasks = list(self._tasks.items())
        if not tasks:
            return
        await asyncio.gather(*(task for _, task in tasks), return_exceptions=True)
        for key, task in tasks:
            self._settle(key, task)

    def cancel_pending(self) -> int:
        """Cancel follow-ups that have not finished yet. Returns how many."""
        cancelled = 0
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
                cancelled += 1
        if cancelled:
            logging.info(f"Cancelled {cancelled} pending {self.label} call(s).")
        return cancelled
