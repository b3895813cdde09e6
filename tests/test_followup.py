"""
Tests for the follow-up hook run on created records.
"""

import asyncio

import pytest

from sap_batch_manager.core.batching.aggregator import ProgressAggregator
from sap_batch_manager.core.batching.followup import FollowUpHook, is_flag_set
from sap_batch_manager.core.batching.grouping import ChunkGrouping, assign_original_indices
from sap_batch_manager.core.batching.models import SubmissionOutcome


@pytest.mark.parametrize("value, expected", [
    ("X", True), ("x", True), ("true", True), ("Yes", True), ("1", True),
    (True, True), (1, True),
    ("", False), (None, False), ("N", False), (False, False), (0, False),
])
def test_is_flag_set(value, expected):
    assert is_flag_set(value) is expected


def _setup(records, hook):
    group = ChunkGrouping(len(records)).partition(assign_original_indices(records))[0]
    aggregator = ProgressAggregator(len(records), 1)
    statuses = []
    hook.bind(aggregator.annotate, statuses.append)
    return group, aggregator, statuses


def _record(aggregator, hook, group, outcomes):
    for record, outcome in zip(group.records, outcomes):
        aggregator.record(outcome, record, group)
        hook.maybe_follow_up(outcome, record)


@pytest.mark.asyncio
async def test_follow_up_only_for_created_and_flagged_records():
    calls = []

    async def approve(outcome, record):
        calls.append(outcome.original_index)
        return {"approved": True}

    hook = FollowUpHook(approve, label="approval")
    group, aggregator, statuses = _setup(
        [{"GRNCreate": "X"}, {"GRNCreate": ""}, {"GRNCreate": "X"}], hook
    )
    _record(aggregator, hook, group, [
        SubmissionOutcome.success(0, {"SES": "1"}),
        SubmissionOutcome.success(1, {"SES": "2"}),
        SubmissionOutcome.failure(2, "E", "rejected"),
    ])
    await hook.drain()

    assert calls == [0]
    first = aggregator.success[0].to_dict()
    assert first["follow_up_status"] == "completed"
    assert first["follow_up_result"] == {"approved": True}
    assert "follow_up_status" not in aggregator.success[1].to_dict()
    assert statuses == ["Approval completed for 1 record(s)"]


@pytest.mark.asyncio
async def test_failed_follow_up_keeps_record_in_success_list():
    def approve(outcome, record):
        raise RuntimeError("Approval service unavailable")

    hook = FollowUpHook(approve, label="approval")
    group, aggregator, _ = _setup([{"GRNCreate": "X"}], hook)
    _record(aggregator, hook, group, [SubmissionOutcome.success(0, {"SES": "1"})])
    await hook.drain()

    assert aggregator.success_count == 1
    assert aggregator.failure_count == 0
    result = aggregator.success[0]
    assert result.status_message == "Created successfully. (created but approval failed)"
    assert result.to_dict()["follow_up_error"] == "Approval service unavailable"


@pytest.mark.asyncio
async def test_dedupe_key_shares_one_call():
    calls = []

    async def approve(outcome, record):
        calls.append(outcome.original_index)

    hook = FollowUpHook(approve, dedupe_key=lambda outcome: outcome.result_payload["SES"])
    group, aggregator, _ = _setup([{"GRNCreate": "X"}] * 3, hook)
    _record(aggregator, hook, group, [
        SubmissionOutcome.success(0, {"SES": "100"}),
        SubmissionOutcome.success(1, {"SES": "100"}),
        SubmissionOutcome.success(2, {"SES": "200"}),
    ])
    await hook.drain()

    assert calls == [0, 2]
    assert [r.to_dict()["follow_up_status"] for r in aggregator.success] == ["completed"] * 3


@pytest.mark.asyncio
async def test_cancel_pending_follow_ups():
    started = asyncio.Event()

    async def approve(outcome, record):
        started.set()
        await asyncio.Event().wait()

    hook = FollowUpHook(approve)
    group, aggregator, _ = _setup([{"GRNCreate": "X"}], hook)
    _record(aggregator, hook, group, [SubmissionOutcome.success(0)])
    await started.wait()

    assert hook.pending == 1
    assert hook.cancel_pending() == 1
    await hook.drain()

    assert hook.pending == 0
    assert aggregator.success[0].to_dict()["follow_up_status"] == "cancelled"
    assert aggregator.success_count == 1
