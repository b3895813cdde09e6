# -*- coding: utf-8 -*-
"""
Boundary between the orchestrator and the remote create services.

A transport adapter performs one remote call per group. Concrete OData
batch and SOAP adapters live outside this package and only have to
implement the `TransportAdapter` protocol.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import (Any, List, Optional, Protocol, Sequence, Union,
                    runtime_checkable)

from .models import GroupKey, IndexedRecord, SubmissionOutcome


@dataclass(frozen=True)
class TransportContext:
    """Per-call information handed to the adapter."""
    token: Optional[str]
    group_key: GroupKey
    group_index: int
    attempt: int = 1


@dataclass
class ItemResponse:
    """
    Response of a single operation inside a batch call.

    `content_id` is the 1-based position of the operation inside the
    group. When it is missing or not numeric, items are matched to
    records in the order they arrive.
    """
    status_code: int
    body: Any = None
    content_id: Optional[str] = None
    headers: dict = field(default_factory=dict)
    message: Optional[str] = None
    status_text: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass
class TransportResponse:
    """
    Raw outcome of a group submission.

    Exactly one of `items` (per-operation responses) or `outcomes`
    (already mapped per-record outcomes) is normally set. A response with
    neither is treated as unrecognized.
    """
    items: Optional[List[ItemResponse]] = None
    outcomes: Optional[List[SubmissionOutcome]] = None
    raw: Any = None
    status_code: Optional[int] = None


SubmitResult = Union[TransportResponse, Sequence[SubmissionOutcome]]


@runtime_checkable
class TransportAdapter(Protocol):
    async def submit(self, records: Sequence[IndexedRecord], context: TransportContext) -> SubmitResult:
        """
        Submit `records` as one remote operation.

        Raises:
            TransportError: On group-level failure (network, HTTP status,
                fault). Use TransientTransportError / PermanentTransportError
                to force a retry classification.
            LocalPreparationError: If the payload could not be built.
        """
        ...


@runtime_checkable
class TokenProvider(Protocol):
    async def fetch_token(self) -> Optional[str]:
        ...


class StaticTokenProvider:
    """Token provider returning a fixed value (or None)."""

    def __init__(self, token: Optional[str] = None):
        self.token = token

    async def fetch_token(self) -> Optional[str]:
        return self.token


class EnvTokenProvider:
    """Token provider reading an environment variable at fetch time."""

    def __init__(self, var: str = "SAP_CSRF_TOKEN", required: bool = False):
        self.var = var
        self.required = required

    async def fetch_token(self) -> Optional[str]:
        token = os.getenv(self.var)
        if not token and self.required:
            raise EnvironmentError(f"Environment variable {self.var} is not set.")
        return token or None


class DryRunTransport:
    """
    Transport that accepts every record without any remote call.

    Each record succeeds with a payload echoing the group key, so grouping
    and progress reporting can be rehearsed offline.

    Args:
        latency (float): Seconds to wait per call, to make progress visible.
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.calls: List[TransportContext] = []

    async def submit(self, records, context):
        self.calls.append(context)
        if self.latency:
            await asyncio.sleep(self.latency)
        logging.debug(f"[dry-run] group {context.group_key}: {len(records)} records accepted")
        return [
            SubmissionOutcome.success(
                record.original_index,
                {"dry_run": True, "group_key": context.group_key}
            )
            for record in records
        ]
