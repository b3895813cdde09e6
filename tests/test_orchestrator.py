"""
Tests for the batch orchestrator.

Covers:
  - chunk and field grouping submission order
  - throttle between groups (never after the last one)
  - retries of transient failures, permanent failures attempted once
  - partial success inside a group and missing item responses
  - cancellation before start, between groups, in flight, during
    backoff and during the throttle, and of the task running the run
  - empty input, malformed input and token provider failures
  - progress sink behaviour and follow-up annotations
"""

import asyncio

import pytest

from sap_batch_manager.core.batching.config import BatchConfig
from sap_batch_manager.core.batching.errors import (
    ConfigurationError,
    PermanentTransportError,
    TransientTransportError,
)
from sap_batch_manager.core.batching.followup import FollowUpHook
from sap_batch_manager.core.batching.orchestrator import BatchOrchestrator, RunPhase, run_batch
from sap_batch_manager.core.batching.responses import NOT_PROCESSED, UNEXPECTED_ERROR
from sap_batch_manager.core.batching.transport import (
    ItemResponse,
    StaticTokenProvider,
    TransportResponse,
)

from conftest import RecordingSleep, ScriptedTransport


def unavailable():
    return TransientTransportError("Service unavailable", status_code=503)


def _orchestrator(transport, sleep=None, updates=None, **config):
    config.setdefault("throttle_ms", 0)
    config.setdefault("retry_delay_ms", 2000)
    return BatchOrchestrator(
        transport,
        BatchConfig(**config),
        on_progress=updates.append if updates is not None else None,
        sleep=sleep or RecordingSleep()
    )


def _hanging_submit(started):
    async def hang(records, context):
        started.set()
        await asyncio.Event().wait()
    return hang


@pytest.mark.asyncio
async def test_chunks_are_submitted_in_order_with_throttle(make_records):
    transport = ScriptedTransport()
    sleep = RecordingSleep()
    orchestrator = _orchestrator(transport, sleep, chunk_size=10, throttle_ms=500)

    summary = await orchestrator.start(make_records(25))

    assert [len(g) for g in transport.submitted_groups] == [10, 10, 5]
    assert transport.submitted_groups[2] == tuple(range(20, 25))
    assert sleep.delays == [0.5, 0.5]
    assert summary.success_count == 25
    assert summary.failure_count == 0
    assert summary.total_groups == summary.processed_groups == 3
    assert summary.state == "completed"
    assert [r["original_index"] for r in summary.success_records] == list(range(25))
    assert orchestrator.phase is RunPhase.COMPLETED


@pytest.mark.asyncio
async def test_field_grouping_submits_first_seen_groups():
    transport = ScriptedTransport()
    records = [{"PO": "A"}, {"PO": "A"}, {"PO": "B"}, {"PO": "A"}, {"PO": "B"}]

    summary = await _orchestrator(transport, group_by=["PO"]).start(records)

    assert transport.submitted_groups == [(0, 1, 3), (2, 4)]
    assert [c.group_key for _, c in transport.calls] == ["A", "B"]
    assert [r["group_key"] for r in summary.success_records] == ["A", "A", "A", "B", "B"]
    assert [r["original_index"] for r in summary.success_records] == [0, 1, 3, 2, 4]


@pytest.mark.asyncio
async def test_transient_errors_are_retried_with_delay(make_records):
    transport = ScriptedTransport([unavailable(), unavailable()])
    sleep = RecordingSleep()
    updates = []

    summary = await _orchestrator(transport, sleep, updates, chunk_size=5, max_retries=3).start(make_records(5))

    assert len(transport.calls) == 3
    assert [c.attempt for _, c in transport.calls] == [1, 2, 3]
    assert sleep.delays == [2.0, 2.0]
    assert summary.success_count == 5
    assert [u["retry_attempt"] for u in updates if "retry_attempt" in u] == [1, 2]


@pytest.mark.asyncio
async def test_backoff_factor_grows_delay(make_records):
    transport = ScriptedTransport([unavailable(), unavailable()])
    sleep = RecordingSleep()

    await _orchestrator(transport, sleep, chunk_size=5, retry_delay_ms=100, backoff_factor=2).start(make_records(5))

    assert sleep.delays == [0.1, 0.2]


@pytest.mark.asyncio
async def test_retries_are_bounded(make_records):
    def always_unavailable(records, context):
        raise unavailable()

    transport = ScriptedTransport(default=always_unavailable)
    sleep = RecordingSleep()

    summary = await _orchestrator(transport, sleep, chunk_size=4, max_retries=2).start(make_records(4))

    assert len(transport.calls) == 3
    assert len(sleep.delays) == 2
    assert summary.failure_count == 4
    assert {r["ErrorCode"] for r in summary.error_records} == {"HTTP_503"}
    assert summary.state == "completed_with_failures"


@pytest.mark.asyncio
async def test_permanent_error_is_attempted_once_and_run_continues(make_records):
    transport = ScriptedTransport([PermanentTransportError("Invalid tax code", status_code=400)])
    sleep = RecordingSleep()

    summary = await _orchestrator(transport, sleep, chunk_size=3, max_retries=3).start(make_records(6))

    assert len(transport.calls) == 2
    assert sleep.delays == []
    assert summary.failure_count == 3
    assert summary.success_count == 3
    assert [r["original_index"] for r in summary.error_records] == [0, 1, 2]
    assert summary.error_records[0]["ErrorMessage"] == "Invalid tax code"
    assert summary.error_records[0]["ErrorCode"] == "HTTP_400"


@pytest.mark.asyncio
async def test_unexpected_exception_fails_the_group_without_retry(make_records):
    transport = ScriptedTransport([KeyError("CompanyCode")])

    summary = await _orchestrator(transport, chunk_size=2).start(make_records(4))

    assert len(transport.calls) == 2
    assert [r["ErrorCode"] for r in summary.error_records] == [UNEXPECTED_ERROR] * 2
    assert summary.success_count == 2


@pytest.mark.asyncio
async def test_partial_success_and_missing_item_responses(make_records):
    response = TransportResponse(items=[
        ItemResponse(201, '{"d": {"SupplierInvoice": "5105600001"}}'),
        ItemResponse(400, {"error": {"code": "F5/702", "message": {"value": "Balance not zero"}}}),
    ])
    transport = ScriptedTransport([response])

    summary = await _orchestrator(transport, chunk_size=3).start(make_records(3))

    assert summary.success_count == 1
    assert summary.success_records[0]["result"] == {"SupplierInvoice": "5105600001"}
    assert [r["ErrorCode"] for r in summary.error_records] == ["F5/702", NOT_PROCESSED]
    assert summary.processed_count == 3


@pytest.mark.asyncio
async def test_cancel_between_groups(make_records):
    transport = ScriptedTransport()
    updates = []
    orchestrator = _orchestrator(transport, chunk_size=10)

    def sink(update):
        updates.append(update)
        if update["processed_groups"] == 1:
            orchestrator.cancel()

    orchestrator.on_progress = sink
    summary = await orchestrator.start(make_records(30))

    assert len(transport.calls) == 1
    assert summary.cancelled
    assert summary.state == "cancelled"
    assert summary.processed_count == 10
    assert summary.remaining_count == 20
    assert orchestrator.phase is RunPhase.CANCELLED
    assert updates[-1]["is_completed"] is True
    assert updates[-1]["status"] == "Processing cancelled by user."


@pytest.mark.asyncio
async def test_cancel_while_request_in_flight(make_records):
    started = asyncio.Event()
    transport = ScriptedTransport([_hanging_submit(started)])
    orchestrator = _orchestrator(transport, chunk_size=5)

    task = asyncio.create_task(orchestrator.start(make_records(10)))
    await started.wait()
    orchestrator.cancel()
    summary = await task

    assert len(transport.calls) == 1
    assert summary.cancelled
    assert summary.processed_count == 0
    assert not orchestrator.state.active_requests


@pytest.mark.asyncio
async def test_cancel_during_backoff(make_records):
    transport = ScriptedTransport([unavailable()])
    holder = {}
    sleep = RecordingSleep(on_sleep=lambda seconds: holder["orchestrator"].cancel(), block=True)
    orchestrator = holder["orchestrator"] = _orchestrator(transport, sleep, chunk_size=5, max_retries=3)

    summary = await asyncio.wait_for(orchestrator.start(make_records(10)), timeout=5)

    assert len(transport.calls) == 1
    assert sleep.delays == [2.0]
    assert summary.cancelled
    assert summary.processed_count == 0
    assert not orchestrator.state.pending_timers


@pytest.mark.asyncio
async def test_cancel_during_throttle(make_records):
    transport = ScriptedTransport()
    holder = {}
    sleep = RecordingSleep(on_sleep=lambda seconds: holder["orchestrator"].cancel(), block=True)
    orchestrator = holder["orchestrator"] = _orchestrator(transport, sleep, chunk_size=5, throttle_ms=500)

    summary = await asyncio.wait_for(orchestrator.start(make_records(15)), timeout=5)

    assert len(transport.calls) == 1
    assert sleep.delays == [0.5]
    assert summary.cancelled
    assert summary.processed_count == 5


@pytest.mark.asyncio
async def test_cancel_before_start_submits_nothing(make_records):
    transport = ScriptedTransport()
    orchestrator = _orchestrator(transport, chunk_size=5)
    orchestrator.cancel()
    orchestrator.cancel()

    summary = await orchestrator.start(make_records(10))

    assert transport.calls == []
    assert summary.cancelled
    assert summary.processed_count == 0
    assert summary.remaining_count == 10


@pytest.mark.asyncio
async def test_cancel_after_completion_is_a_no_op(make_records):
    orchestrator = _orchestrator(ScriptedTransport(), chunk_size=5)
    summary = await orchestrator.start(make_records(5))
    orchestrator.cancel()

    assert not summary.cancelled
    assert orchestrator.phase is RunPhase.COMPLETED
    assert not orchestrator.state.cancelled


@pytest.mark.asyncio
async def test_cancelling_the_run_task_propagates(make_records):
    started = asyncio.Event()
    transport = ScriptedTransport([_hanging_submit(started)])
    orchestrator = _orchestrator(transport, chunk_size=5)

    task = asyncio.create_task(orchestrator.start(make_records(5)))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert orchestrator.phase is RunPhase.CANCELLED
    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_empty_input_completes_with_nothing_to_process():
    transport = ScriptedTransport()
    updates = []

    summary = await _orchestrator(transport, updates=updates).start([])

    assert transport.calls == []
    assert summary.total_records == 0
    assert summary.state == "completed"
    assert summary.status == "Nothing to process."
    assert updates[-1]["is_completed"] is True


@pytest.mark.asyncio
async def test_malformed_input_fails_the_run():
    updates = []
    orchestrator = _orchestrator(ScriptedTransport(), updates=updates)

    with pytest.raises(ConfigurationError):
        await orchestrator.start([{"a": 1}, "not a record"])

    assert orchestrator.phase is RunPhase.FAILED
    assert updates[-1]["state"] == "failed"
    assert updates[-1]["is_completed"] is True


@pytest.mark.asyncio
async def test_token_is_fetched_once_and_passed_to_every_call(make_records):
    class CountingProvider(StaticTokenProvider):
        fetched = 0

        async def fetch_token(self):
            CountingProvider.fetched += 1
            return self.token

    transport = ScriptedTransport()
    orchestrator = BatchOrchestrator(
        transport,
        BatchConfig(chunk_size=2, throttle_ms=0),
        token_provider=CountingProvider("csrf-123")
    )
    await orchestrator.start(make_records(5))

    assert CountingProvider.fetched == 1
    assert {c.token for _, c in transport.calls} == {"csrf-123"}


@pytest.mark.asyncio
async def test_token_provider_failure_fails_the_run(make_records):
    class BrokenProvider:
        async def fetch_token(self):
            raise RuntimeError("CSRF token fetch failed")

    updates = []
    transport = ScriptedTransport()
    orchestrator = BatchOrchestrator(
        transport,
        BatchConfig(chunk_size=2, throttle_ms=0),
        token_provider=BrokenProvider(),
        on_progress=updates.append
    )

    with pytest.raises(RuntimeError, match="CSRF"):
        await orchestrator.start(make_records(4))
    assert orchestrator.phase is RunPhase.FAILED
    assert transport.calls == []
    assert updates[-1]["state"] == "failed"


@pytest.mark.asyncio
async def test_orchestrator_cannot_be_started_twice(make_records):
    orchestrator = _orchestrator(ScriptedTransport(), chunk_size=5)
    await orchestrator.start(make_records(2))
    with pytest.raises(RuntimeError):
        await orchestrator.start(make_records(2))


@pytest.mark.asyncio
async def test_progress_updates_are_monotonic_and_complete_once(make_records):
    updates = []
    transport = ScriptedTransport([unavailable()])

    await _orchestrator(transport, updates=updates, chunk_size=3).start(make_records(10))

    processed = [u["processed_count"] for u in updates]
    assert processed == sorted(processed)
    assert processed[-1] == 10
    assert [u["is_completed"] for u in updates].count(True) == 1
    assert updates[-1]["is_completed"] is True
    assert updates[-1]["progress"] == 100.0


@pytest.mark.asyncio
async def test_failing_progress_sink_does_not_stop_the_run(make_records):
    def sink(update):
        raise ValueError("display closed")

    orchestrator = BatchOrchestrator(
        ScriptedTransport(),
        BatchConfig(chunk_size=2, throttle_ms=0),
        on_progress=sink
    )
    summary = await orchestrator.start(make_records(4))

    assert summary.success_count == 4


@pytest.mark.asyncio
async def test_failed_follow_up_keeps_record_as_success(make_records):
    def approve(outcome, record):
        raise RuntimeError("Approval failed")

    orchestrator = BatchOrchestrator(
        ScriptedTransport(),
        BatchConfig(chunk_size=2, throttle_ms=0),
        follow_up=FollowUpHook(approve, label="approval")
    )
    records = make_records(2)
    records[0]["GRNCreate"] = "X"
    summary = await orchestrator.start(records)

    assert summary.success_count == 2
    assert summary.failure_count == 0
    first = summary.success_records[0]
    assert first["follow_up_status"] == "failed"
    assert first["status_message"].endswith("(created but approval failed)")
    assert "follow_up_status" not in summary.success_records[1]


@pytest.mark.asyncio
async def test_run_batch(make_records):
    transport = ScriptedTransport()
    summary = await run_batch(make_records(3), transport, BatchConfig(chunk_size=2, throttle_ms=0))

    assert transport.submitted_groups == [(0, 1), (2,)]
    assert summary.success_count == 3


@pytest.mark.asyncio
async def test_follow_up_field_from_config_selects_records(make_records):
    calls = []

    def approve(outcome, record):
        calls.append(outcome.original_index)

    hook = FollowUpHook(approve, label="approval")
    records = make_records(3)
    records[1]["Approve"] = "X"
    records[2]["GRNCreate"] = "X"

    summary = await BatchOrchestrator(
        ScriptedTransport(),
        BatchConfig(chunk_size=3, throttle_ms=0, follow_up_field="Approve"),
        follow_up=hook
    ).start(records)

    assert calls == [1]
    assert hook.flag_field == "Approve"
    assert [r.get("follow_up_status") for r in summary.success_records] == [None, "completed", None]
