"""
Shared pytest fixtures for the SAP Batch Manager test suite.

Provides:
    - ScriptedTransport: transport adapter replaying scripted responses
    - RecordingSleep: sleep replacement that records requested delays
    - make_records: numbered input records
    - registry: profile registry stored under tmp_path
"""

import asyncio

import pytest

from sap_batch_manager.core.batching.errors import PermanentTransportError
from sap_batch_manager.core.batching.models import SubmissionOutcome
from sap_batch_manager.core.utils import registry as registry_module
from sap_batch_manager.core.utils.registry import ProfileRegistry


def accept_all(records, context):
    """Default transport behaviour: every record is created."""
    return [
        SubmissionOutcome.success(r.original_index, {"DocumentNumber": f"51{r.original_index:08d}"})
        for r in records
    ]


class ScriptedTransport:
    """
    Transport adapter replaying `script` one entry per call.

    An entry may be an exception (raised), a callable
    `fn(records, context)` (its result is returned, awaited if needed) or
    any other value (returned as is). Once the script is exhausted,
    `default` is used.
    """

    def __init__(self, script=(), default=accept_all):
        self.script = list(script)
        self.default = default
        self.calls = []

    async def submit(self, records, context):
        self.calls.append((tuple(r.original_index for r in records), context))
        entry = self.script.pop(0) if self.script else self.default
        if isinstance(entry, BaseException):
            raise entry
        if callable(entry):
            entry = entry(records, context)
            if asyncio.iscoroutine(entry):
                entry = await entry
        return entry

    @property
    def submitted_groups(self):
        return [indices for indices, _ in self.calls]


class RecordingSleep:
    """
    Async sleep that returns immediately and records each delay.

    `on_sleep(seconds)` is called before returning. With `block=True`
    the sleep never finishes on its own, like a long real timer.
    """

    def __init__(self, on_sleep=None, block=False):
        self.delays = []
        self.on_sleep = on_sleep
        self.block = block

    async def __call__(self, seconds):
        self.delays.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep(seconds)
        if self.block:
            await asyncio.Event().wait()
        await asyncio.sleep(0)


@pytest.fixture
def make_records():
    def _make(count, **fields):
        return [{"SequenceID": str(i + 1), "Amount": 100 + i, **fields} for i in range(count)]
    return _make


@pytest.fixture
def registry(tmp_path, monkeypatch):
    """Profile registry isolated from the user's config directory."""
    reg = ProfileRegistry(tmp_path / "registry" / "profiles_registry.yaml")
    monkeypatch.setattr(registry_module, "_registry", reg)
    return reg


def _reject(records, context):
    raise PermanentTransportError("Document date is in a closed period", status_code=400, code="F5/155")


def rejecting_transport(**options):
    """Transport factory, loadable by import path, that rejects every group."""
    return ScriptedTransport(default=_reject)
