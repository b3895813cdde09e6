"""
Tests for transport, token provider and follow-up creation, and the
tqdm progress sink.
"""

import pytest

from sap_batch_manager.core.batching.errors import ConfigurationError
from sap_batch_manager.core.batching.followup import FollowUpHook
from sap_batch_manager.core.batching.models import SubmissionOutcome
from sap_batch_manager.core.batching.progress import TqdmProgressSink
from sap_batch_manager.core.batching.transport import (
    DryRunTransport,
    EnvTokenProvider,
    StaticTokenProvider,
    TransportAdapter,
    TransportContext,
)
from sap_batch_manager.core.batching.grouping import assign_original_indices
from sap_batch_manager.core.utils.clients import (
    create_follow_up,
    create_token_provider,
    create_transport,
    load_callable,
)


def approve(outcome, record):
    return "approved"


def not_a_transport(**options):
    return object()


def test_load_callable():
    assert load_callable("os.path:join").__name__ == "join"


@pytest.mark.parametrize("path", ["os.path", "os.path:", "no_such_module:fn", "os:no_such_attr", "os:sep"])
def test_load_callable_errors(path):
    with pytest.raises(ConfigurationError):
        load_callable(path)


def test_create_dry_run_transport():
    transport = create_transport("dry-run", {"latency": 0})
    assert isinstance(transport, DryRunTransport)
    assert isinstance(transport, TransportAdapter)


def test_create_transport_by_import_path():
    transport = create_transport("conftest:rejecting_transport", {"endpoint": "https://sap.example"})
    assert callable(transport.submit)


def test_create_transport_requires_submit():
    with pytest.raises(ConfigurationError):
        create_transport("test_clients:not_a_transport")


@pytest.mark.asyncio
async def test_token_providers(monkeypatch):
    monkeypatch.setenv("SAP_CSRF_TOKEN", "abc")
    assert await create_token_provider("SAP_CSRF_TOKEN").fetch_token() == "abc"
    assert await create_token_provider("SAP_CSRF_TOKEN", token="explicit").fetch_token() == "explicit"
    assert await create_token_provider().fetch_token() is None
    assert isinstance(create_token_provider(), StaticTokenProvider)

    monkeypatch.delenv("SAP_CSRF_TOKEN")
    assert await EnvTokenProvider().fetch_token() is None
    with pytest.raises(EnvironmentError):
        await EnvTokenProvider(required=True).fetch_token()


def test_create_follow_up():
    assert create_follow_up(None) is None

    hook = create_follow_up("test_clients:approve", flag_field="Approve", dedupe_field="ServiceEntrySheet")
    assert isinstance(hook, FollowUpHook)
    assert hook.flag_field == "Approve"
    assert hook.dedupe_key(SubmissionOutcome.success(0, {"ServiceEntrySheet": "1000001"})) == "1000001"
    assert hook.dedupe_key(SubmissionOutcome.success(0, None)) is None


@pytest.mark.asyncio
async def test_dry_run_transport_accepts_everything():
    transport = DryRunTransport()
    records = assign_original_indices([{"a": 1}, {"a": 2}])
    outcomes = await transport.submit(records, TransportContext(token=None, group_key="chunk-0001", group_index=0))

    assert [o.succeeded for o in outcomes] == [True, True]
    assert outcomes[0].result_payload == {"dry_run": True, "group_key": "chunk-0001"}
    assert len(transport.calls) == 1


def test_tqdm_progress_sink():
    sink = TqdmProgressSink(disable=True)
    sink({"status": "Processing group 1 of 2", "total_records": 4, "processed_count": 0})
    assert sink.bar is not None and sink.bar.total == 4

    sink({"status": "Group 1 of 2 processed", "total_records": 4, "processed_count": 2, "success_count": 2})
    assert sink.last_status == "Group 1 of 2 processed"

    sink({"status": "Processing completed successfully.", "total_records": 4, "processed_count": 4,
          "is_completed": True})
    assert sink.bar is None
    sink.close()
