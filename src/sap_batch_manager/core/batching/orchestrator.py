# -*- coding: utf-8 -*-
"""
Sequential submission of record groups.

`BatchOrchestrator` drives a single run: it partitions the records, then
submits one group at a time through the transport adapter, retries
transient failures, records one outcome per record and reports progress
to an optional sink. `cancel()` stops the run cooperatively: no group is
submitted after it returns, the in-flight request and any pending delay
are cancelled, and the outcomes recorded so far are kept.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import (Any, Awaitable, Callable, Iterable, List, Mapping,
                    Optional, Set)

from tenacity import RetryCallState

from .aggregator import ProgressAggregator
from .config import BatchConfig
from .errors import EmptyInputError
from .followup import FollowUpHook
from .grouping import GroupingStrategy, assign_original_indices
from .models import Group, RunSummary, SubmissionOutcome
from .responses import (error_info_from_exception, failure_outcomes,
                        reconcile_outcomes)
from .retry import RetryPolicy
from .transport import (StaticTokenProvider, TokenProvider,
                        TransportAdapter, TransportContext)

ProgressSink = Callable[[dict], None]


class RunPhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class RunState:
    """Mutable state of a run. Owned by the orchestrator."""
    cancelled: bool = False
    current_group_index: int = -1
    total_groups: int = 0
    start_time: Optional[float] = None
    active_requests: Set[asyncio.Task] = field(default_factory=set)
    pending_timers: Set[asyncio.Task] = field(default_factory=set)

    def cancel_handles(self) -> int:
        handles = [t for t in self.active_requests | self.pending_timers if not t.done()]
        for task in handles:
            task.cancel()
        return len(handles)

    def clear_handles(self) -> None:
        self.cancel_handles()
        self.active_requests.clear()
        self.pending_timers.clear()


class BatchOrchestrator:
    """
    Run one batch submission.

    Args:
        transport (TransportAdapter): Performs the remote call of a group.
        config (BatchConfig, optional): Run options.
        grouping (GroupingStrategy, optional): Overrides the grouping
            derived from `config`.
        retry_policy (RetryPolicy, optional): Overrides the policy derived
            from `config`.
        token_provider (TokenProvider, optional): Source of the session
            token, fetched once before the first group.
        follow_up (FollowUpHook, optional): Post-processing of created records.
        on_progress (Callable[[dict], None], optional): Progress sink.
            Defaults to `config.on_progress`.
        clock (Callable[[], float]): Monotonic clock in seconds.
        sleep (Callable[[float], Awaitable]): Sleep used for the retry
            backoff and the throttle between groups.
    """

    def __init__(
        self,
        transport: TransportAdapter,
        config: Optional[BatchConfig] = None,
        *,
        grouping: Optional[GroupingStrategy] = None,
        retry_policy: Optional[RetryPolicy] = None,
        token_provider: Optional[TokenProvider] = None,
        follow_up: Optional[FollowUpHook] = None,
        on_progress: Optional[ProgressSink] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.transport = transport
        self.config = config or BatchConfig()
        self.grouping = grouping or self.config.grouping()
        self.retry_policy = retry_policy or self.config.retry_policy()
        self.token_provider = token_provider or StaticTokenProvider()
        self.follow_up = follow_up
        self.on_progress = on_progress or self.config.on_progress
        self.clock = clock
        self._sleep = sleep

        self.phase = RunPhase.IDLE
        self.state = RunState()
        self.aggregator: Optional[ProgressAggregator] = None
        self._token: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.phase is RunPhase.RUNNING

    def snapshot(self) -> Optional[RunSummary]:
        return self.aggregator.snapshot() if self.aggregator else None

    #===================================================================
    # Public API
    #===================================================================

    async def start(self, records: Iterable[Mapping[str, Any]]) -> RunSummary:
        """
        Submit `records` and return the final summary.

        Per-group failures end up in the summary's error records. Only
        setup errors (malformed records, grouping errors, a failing token
        provider) are raised, after a terminal progress update with
        `state="failed"`.

        Raises:
            RuntimeError: If this orchestrator has already been started.
            ConfigurationError: If the records are malformed.
        """
        if self.phase is not RunPhase.IDLE:
            raise RuntimeError("A BatchOrchestrator can only be started once.")
        self.phase = RunPhase.RUNNING
        self.state.start_time = self.clock()

        try:
            indexed = assign_original_indices(records)
            groups = self.grouping.partition(indexed)
        except Exception as e:
            self._fail(e)
            raise

        self.state.total_groups = len(groups)
        self.aggregator = ProgressAggregator(len(indexed), len(groups), self.clock)
        self.aggregator.start()
        if self.follow_up is not None:
            self.follow_up.bind(self.aggregator.annotate, self._emit_status, self.config.follow_up_field)

        try:
            try:
                if not groups:
                    raise EmptyInputError("No records to process.")
                logging.info(f"Starting run: {len(indexed)} records in {len(groups)} groups.")
                if not self.state.cancelled:
                    self._token = await self._fetch_token()
                await self._run_groups(groups)
            except EmptyInputError as e:
                logging.info(f"{e} Completing run with zero counts.")
            if self.follow_up is not None:
                await self.follow_up.drain()
        except asyncio.CancelledError:
            # The task running start() itself was cancelled
            self.phase = RunPhase.CANCELLED
            self._sweep()
            raise
        except Exception as e:
            self._fail(e)
            raise
        finally:
            self.state.clear_handles()

        summary = self.aggregator.finalize(cancelled=self.state.cancelled)
        self.phase = RunPhase.CANCELLED if summary.cancelled else RunPhase.COMPLETED
        self._emit(self.aggregator.progress_update(summary.status))
        return summary

    def cancel(self) -> None:
        """
        Request cancellation. Idempotent and non-blocking.

        May be called before `start()`, in which case the run submits
        nothing and ends cancelled.
        """
        if self.state.cancelled or self.phase in (RunPhase.COMPLETED, RunPhase.FAILED):
            return
        self.state.cancelled = True
        logging.info("Cancellation requested. Stopping after the current step...")
        self._sweep()
        if self.aggregator is not None and self.is_running:
            self._emit(self.aggregator.progress_update("Cancelling..."))

    #===================================================================
    # Run loop
    #===================================================================

    async def _fetch_token(self) -> Optional[str]:
        try:
            token = await self._track(self.token_provider.fetch_token(), self.state.active_requests)
        except asyncio.CancelledError:
            if self.state.cancelled:
                return None
            raise
        if token is None:
            logging.debug("No session token available, submitting without one.")
        return token

    async def _run_groups(self, groups: List[Group]) -> None:
        total = len(groups)
        throttle = self.config.throttle_ms / 1000

        for group in groups:
            if self.state.cancelled:
                break
            self.state.current_group_index = group.index
            self._emit(self.aggregator.progress_update(
                f"Processing group {group.index + 1} of {total} ({group.key}, {len(group)} records)",
                current_group=group.index + 1,
                current_group_key=group.key
            ))

            outcomes = await self._process_group(group)
            if outcomes is None:
                break
            self._record_group(group, outcomes)

            if self.state.cancelled:
                break
            if throttle and group.index < total - 1:
                try:
                    await self._track(self._sleep(throttle), self.state.pending_timers)
                except asyncio.CancelledError:
                    if self.state.cancelled:
                        break
                    raise

    async def _process_group(self, group: Group) -> Optional[List[SubmissionOutcome]]:
        """
        Submit `group` with retries.

        Returns one outcome per record, or None if the group was aborted
        by cancellation before a response arrived.
        """
        retrying = self.retry_policy.retrying(
            sleep=self._tracked_sleep,
            before_sleep=lambda retry_state: self._before_retry(group, retry_state),
            is_cancelled=lambda: self.state.cancelled
        )
        attempt_number = 0
        try:
            async for attempt in retrying:
                if self.state.cancelled:
                    return None
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    context = TransportContext(
                        token=self._token,
                        group_key=group.key,
                        group_index=group.index,
                        attempt=attempt_number
                    )
                    response = self.transport.submit(group.records, context)
                    if inspect.isawaitable(response):
                        response = await self._track(response, self.state.active_requests)
                    return reconcile_outcomes(group, response)
        except asyncio.CancelledError:
            if self.state.cancelled:
                logging.info(f"Group {group.key} aborted by cancellation, its records are not recorded.")
                return None
            raise
        except Exception as e:
            error = error_info_from_exception(e)
            logging.error(
                f"Group {group.key} failed after {attempt_number} attempt(s): "
                f"[{error.code}] {error.message}"
            )
            return failure_outcomes(group, error)

    def _record_group(self, group: Group, outcomes: List[SubmissionOutcome]) -> None:
        total = self.state.total_groups
        for record, outcome in zip(group.records, outcomes):
            self.aggregator.record(outcome, record, group)
            if self.follow_up is not None:
                self.follow_up.maybe_follow_up(outcome, record)
            self._emit(self.aggregator.progress_update(
                f"Processing group {group.index + 1} of {total}",
                current_group=group.index + 1,
                current_group_key=group.key
            ))
        self.aggregator.mark_group_processed()

        failed = sum(1 for o in outcomes if not o.succeeded)
        logging.info(
            f"Group {group.index + 1}/{total} ({group.key}): "
            f"{len(outcomes) - failed} succeeded, {failed} failed."
        )
        self._emit(self.aggregator.progress_update(
            f"Group {group.index + 1} of {total} processed",
            current_group=group.index + 1,
            current_group_key=group.key
        ))

    def _before_retry(self, group: Group, retry_state: RetryCallState) -> None:
        attempt = retry_state.attempt_number
        error = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logging.warning(
            f"Group {group.key} attempt {attempt} failed with {error!r}. "
            f"Retrying in {delay:.1f} seconds ({attempt}/{self.retry_policy.max_retries})..."
        )
        self._emit(self.aggregator.progress_update(
            f"Retrying group {group.index + 1} in {delay:.1f}s "
            f"(attempt {attempt + 1} of {self.retry_policy.max_retries + 1})",
            current_group=group.index + 1,
            current_group_key=group.key,
            retry_attempt=attempt
        ))

    #===================================================================
    # Handles
    #===================================================================

    async def _track(self, awaitable: Awaitable[Any], handles: Set[asyncio.Task]) -> Any:
        """Await `awaitable` as a task registered in `handles`."""
        task = asyncio.ensure_future(awaitable)
        handles.add(task)
        try:
            return await task
        finally:
            handles.discard(task)

    async def _tracked_sleep(self, seconds: float) -> None:
        await self._track(self._sleep(seconds), self.state.pending_timers)

    def _sweep(self) -> None:
        swept = self.state.cancel_handles()
        if swept:
            logging.debug(f"Cancelled {swept} pending request(s)/timer(s).")
        if self.follow_up is not None:
            self.follow_up.cancel_pending()

    #===================================================================
    # Progress
    #===================================================================

    def _emit(self, update: dict) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(update)
        except Exception as e:
            logging.warning(f"Progress sink raised {e!r}, ignoring.")

    def _emit_status(self, status: str) -> None:
        if self.aggregator is not None:
            self._emit(self.aggregator.progress_update(status))

    def _fail(self, error: BaseException) -> None:
        self.phase = RunPhase.FAILED
        self._sweep()
        logging.error(f"Run failed during setup: {error}")
        status = f"Processing failed: {error}"
        if self.aggregator is not None:
            update = self.aggregator.progress_update(status, state="failed", is_completed=True)
        else:
            update = {"status": status, "state": "failed", "is_completed": True}
        self._emit(update)


async def run_batch(
        records: Iterable[Mapping[str, Any]],
        transport: TransportAdapter,
        config: Optional[BatchConfig] = None,
        **kwargs
    ) -> RunSummary:
    """Create an orchestrator for a single run and start it."""
    return await BatchOrchestrator(transport, config, **kwargs).start(records)
