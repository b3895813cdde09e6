"""
Tests for run summaries and the export of result records.
"""

import json

import polars as pl
import pytest

from sap_batch_manager.core.batching.export import export_results, records_to_frame, write_records
from sap_batch_manager.core.batching.models import RunSummary
from sap_batch_manager.core.batching.summary import (
    format_run_summary,
    get_run_summary_dict,
    load_run_summary_dict,
    save_run_summary,
)
from sap_batch_manager.core.utils.misc import read_jsonl


@pytest.fixture
def summary():
    success = (
        {"SequenceID": "1", "original_index": 0, "group_key": "A", "status_message": "Created successfully.",
         "result": {"SupplierInvoice": "5105600001"}, "follow_up_status": "completed"},
        {"SequenceID": "3", "original_index": 2, "group_key": "B", "status_message": "Created successfully.",
         "result": {"SupplierInvoice": "5105600002"}},
    )
    errors = (
        {"SequenceID": "2", "original_index": 1, "group_key": "A", "status_message": "Balance not zero",
         "Status": "Error", "ErrorCode": "F5/702", "ErrorMessage": "Balance not zero", "ErrorDetails": None},
    )
    return RunSummary(
        total_records=4,
        processed_count=3,
        success_count=2,
        failure_count=1,
        success_records=success,
        error_records=errors,
        cancelled=True,
        duration_ms=65000,
        total_groups=3,
        processed_groups=2,
        state="cancelled",
        status="Processing cancelled by user.",
        all_messages=({"type": "error", "code": "F5/702"},)
    )


def test_summary_dict(summary):
    summary_dict = get_run_summary_dict(summary, profile="invoices")

    assert summary_dict["profile"] == "invoices"
    assert summary_dict["records"] == {
        "total": 4, "processed": 3, "succeeded": 2, "failed": 1, "not_processed": 1,
    }
    assert summary_dict["groups"] == {"total": 3, "processed": 2}
    assert summary_dict["error_codes"] == {"F5/702": 1}
    assert summary_dict["follow_up"] == {"completed": 1}


def test_format_run_summary(summary):
    text = format_run_summary(get_run_summary_dict(summary, profile="invoices"))

    assert "Profile      : invoices" in text
    assert "State        : cancelled" in text
    assert "Duration     : 1m 5s" in text
    assert "=== Record Counts ===" in text
    assert "Succeeded     : 2 (50.00%)" in text
    assert "Not processed : 1 (25.00%)" in text
    assert "=== Errors by Code ===" in text
    assert "=== Follow-up ===" in text


def test_save_run_summary_with_dict(summary, tmp_path):
    path = tmp_path / "summary.txt"
    returned = save_run_summary(summary, path, profile="invoices", return_as="dict", save_dict=True)

    assert path.read_text(encoding="utf-8").startswith("Profile      : invoices")
    saved = load_run_summary_dict(tmp_path / "summary.json")
    assert saved["summary"] == returned
    assert saved["cancelled"] is True
    assert saved["error_records"][0]["ErrorCode"] == "F5/702"
    assert saved["all_messages"] == [{"type": "error", "code": "F5/702"}]


def test_records_to_frame_puts_leading_columns_first(summary):
    df = records_to_frame(summary.error_records)
    assert df.columns[:3] == ["original_index", "group_key", "status_message"]
    assert df["original_index"].to_list() == ["1"]


def test_records_to_frame_serializes_nested_values(summary):
    df = records_to_frame(summary.success_records)
    assert json.loads(df["result"][0]) == {"SupplierInvoice": "5105600001"}
    assert df["follow_up_status"].to_list() == ["completed", None]
    assert records_to_frame([]).is_empty()


def test_write_records_jsonl_keeps_types(summary, tmp_path):
    path = write_records(summary.success_records, tmp_path / "success.jsonl", "jsonl")
    rows = read_jsonl(path)
    assert rows[0]["original_index"] == 0
    assert rows[0]["result"] == {"SupplierInvoice": "5105600001"}


def test_write_records_rejects_unknown_type(summary, tmp_path):
    with pytest.raises(ValueError):
        write_records(summary.success_records, tmp_path / "x.xlsx", "xlsx")


@pytest.mark.parametrize("file_type", ["csv", "parquet"])
def test_export_results(summary, tmp_path, file_type):
    written = export_results(summary, tmp_path / "out", file_type=file_type)

    assert set(written) == {"success", "errors"}
    read = pl.read_csv if file_type == "csv" else pl.read_parquet
    errors = read(written["errors"])
    assert errors["ErrorCode"].to_list() == ["F5/702"]
    assert read(written["success"]).height == 2


def test_export_results_skips_empty_lists(tmp_path):
    empty = RunSummary(0, 0, 0, 0, (), (), False, 0)
    assert export_results(empty, tmp_path) == {}
