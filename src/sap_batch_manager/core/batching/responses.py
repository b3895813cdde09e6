# -*- coding: utf-8 -*-
"""
Mapping of transport responses and errors to per-record outcomes.
"""

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Sequence

from .errors import (BatchError, LocalPreparationError,
                     PermanentTransportError, TransportError,
                     format_exception_details)
from .models import ErrorInfo, Group, IndexedRecord, SubmissionOutcome
from .transport import ItemResponse, TransportResponse

UNRECOGNIZED_RESPONSE = "UNRECOGNIZED_RESPONSE"
NOT_PROCESSED = "NOT_PROCESSED"
UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


def _load_body(body: Any) -> Any:
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            return json.loads(body)
        except ValueError:
            return body
    return body


def extract_error(body: Any) -> tuple[Optional[str], Optional[str]]:
    """
    Extract `(code, message)` from an OData error body.

    Handles both `{"error": {"code", "message": {"value"}}}` (V2) and
    `{"error": {"code", "message": "..."}}` (V4). Non JSON bodies are
    returned as the message.
    """
    data = _load_body(body)
    if isinstance(data, Mapping):
        error = data.get("error", data)
        if isinstance(error, Mapping):
            code = error.get("code")
            message = error.get("message")
            if isinstance(message, Mapping):
                message = message.get("value")
            if message:
                return code, str(message)
            return code, json.dumps(data, default=str)
        return None, json.dumps(data, default=str)
    if isinstance(data, str) and data.strip():
        return None, data.strip()
    return None, None


def _success_payload(body: Any) -> Any:
    data = _load_body(body)
    # OData V2 wraps entities in {"d": {...}}
    if isinstance(data, Mapping) and set(data) == {"d"}:
        return data["d"]
    return data


def outcome_from_item(record: IndexedRecord, item: ItemResponse) -> SubmissionOutcome:
    """Turn a single item response into the outcome of `record`."""
    if item.ok:
        return SubmissionOutcome.success(record.original_index, _success_payload(item.body))

    code, message = extract_error(item.body)
    if not message:
        message = item.message or f"HTTP Status {item.status_code}: {item.status_text or 'Error'}"
    return SubmissionOutcome.failure(
        record.original_index,
        code or f"HTTP_{item.status_code}",
        message,
        {"status_code": item.status_code, "body": item.body}
    )


def outcomes_from_item_responses(
        records: Sequence[IndexedRecord],
        items: Sequence[ItemResponse]
    ) -> List[SubmissionOutcome]:
    """
    Correlate per-item responses with the records of a group.

    Items carrying a numeric content id are matched to the record at that
    (1-based) position. The others take the next record in order. Items
    that cannot be matched are logged and ignored; records without a
    matching item are left out, the caller decides what to do with them.
    """
    outcomes: Dict[int, SubmissionOutcome] = {}
    next_position = 0
    for item in items:
        record = None
        content_id = str(item.content_id).strip() if item.content_id is not None else ""
        if content_id.isdigit() and 1 <= int(content_id) <= len(records):
            record = records[int(content_id) - 1]
        else:
            while next_position < len(records) and records[next_position].original_index in outcomes:
                next_position += 1
            if next_position < len(records):
                record = records[next_position]
                next_position += 1
        if record is None:
            logging.warning(f"Could not match item response (content id {item.content_id!r}) to a record.")
            continue
        if record.original_index in outcomes:
            logging.warning(f"Duplicate item response for record {record.original_index}, ignoring.")
            continue
        outcomes[record.original_index] = outcome_from_item(record, item)
    return [outcomes[r.original_index] for r in records if r.original_index in outcomes]


def items_from_odata_batch(data: Any) -> List[ItemResponse]:
    """
    Flatten an OData V2 `__batchResponses` payload into item responses.

    Change set responses (`__changeResponses`) are expanded in order.

    Raises:
        PermanentTransportError: If `data` has no `__batchResponses`.
    """
    if not isinstance(data, Mapping) or not isinstance(data.get("__batchResponses"), list):
        raise PermanentTransportError(
            "Unexpected batch response structure from OData service.",
            code=UNRECOGNIZED_RESPONSE,
            body=data
        )

    def _item(response: Mapping) -> ItemResponse:
        inner = response.get("response") or {}
        headers = response.get("headers") or inner.get("headers") or {}
        status = response.get("statusCode") or inner.get("statusCode") or 0
        body = response.get("body", inner.get("body"))
        return ItemResponse(
            status_code=int(status),
            body=body,
            content_id=headers.get("Content-ID"),
            headers=dict(headers),
            message=response.get("message"),
            status_text=response.get("statusText") or inner.get("statusText")
        )

    items = []
    for response in data["__batchResponses"]:
        if isinstance(response.get("__changeResponses"), list):
            items.extend(_item(r) for r in response["__changeResponses"])
        else:
            items.append(_item(response))
    return items


def reconcile_outcomes(group: Group, response: Any) -> List[SubmissionOutcome]:
    """
    Produce exactly one outcome per record of `group`, in group order.

    Outcomes for records outside the group are dropped, duplicates keep
    the first one, and records the response says nothing about fail with
    NOT_PROCESSED.

    Raises:
        PermanentTransportError: If the response shape is not recognized.
    """
    if isinstance(response, TransportResponse):
        if response.outcomes is not None:
            outcomes = list(response.outcomes)
        elif response.items is not None:
            outcomes = outcomes_from_item_responses(group.records, response.items)
        else:
            raise PermanentTransportError(
                "Unrecognized response shape from transport.",
                status_code=response.status_code,
                code=UNRECOGNIZED_RESPONSE,
                body=response.raw
            )
    elif isinstance(response, (list, tuple)) and all(isinstance(o, SubmissionOutcome) for o in response):
        outcomes = list(response)
    else:
        raise PermanentTransportError(
            f"Unrecognized response shape from transport: {type(response).__name__}",
            code=UNRECOGNIZED_RESPONSE,
            body=response
        )

    wanted = set(group.original_indices)
    by_index: Dict[int, SubmissionOutcome] = {}
    for outcome in outcomes:
        if outcome.original_index not in wanted:
            logging.warning(f"Ignoring outcome for record {outcome.original_index} outside group {group.key}.")
            continue
        by_index.setdefault(outcome.original_index, outcome)

    reconciled = []
    for record in group.records:
        outcome = by_index.get(record.original_index)
        if outcome is None:
            outcome = SubmissionOutcome.failure(
                record.original_index,
                NOT_PROCESSED,
                "Record not processed by the batch call."
            )
        reconciled.append(outcome)
    return reconciled


def error_info_from_exception(exc: BaseException) -> ErrorInfo:
    """Keep code, message and details of `exc` for export and inspection."""
    if isinstance(exc, TransportError):
        details = {
            key: value for key, value in (
                ("status_code", exc.status_code),
                ("body", exc.body),
                ("details", exc.details),
            ) if value is not None
        }
        return ErrorInfo(exc.error_code, exc.message, details or None)
    if isinstance(exc, LocalPreparationError):
        return ErrorInfo(exc.default_code, str(exc) or "Local processing error", format_exception_details(exc))
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        code = "CONNECTION_ERROR" if isinstance(exc, ConnectionError) else "TIMEOUT"
        return ErrorInfo(code, str(exc) or type(exc).__name__, format_exception_details(exc))
    if isinstance(exc, BatchError):
        return ErrorInfo(type(exc).__name__.upper(), str(exc), format_exception_details(exc))
    return ErrorInfo(UNEXPECTED_ERROR, f"{type(exc).__name__}: {exc}", format_exception_details(exc))


def failure_outcomes(group: Group, error: ErrorInfo) -> List[SubmissionOutcome]:
    """The same failure for every record of `group`."""
    return [
        SubmissionOutcome(original_index=i, succeeded=False, error_info=error)
        for i in group.original_indices
    ]
