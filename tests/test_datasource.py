"""
Tests for reading source records and normalizing their field names.
"""

import json

import polars as pl
import pytest

from sap_batch_manager.core.utils.datasource import (
    build_field_map,
    check_source_data_fields,
    compress_field_name,
    normalize_record_keys,
    read_records,
)


def test_compress_field_name():
    assert compress_field_name("Sequence ID") == "sequenceid"
    assert compress_field_name("sequence_id") == "sequenceid"
    assert compress_field_name("Sequence-Id") == "sequenceid"


def test_build_field_map_with_canonical_fields_and_aliases():
    field_map = build_field_map(
        ["Sequence ID", "posting date", "Vendor", "Other"],
        canonical_fields=["SequenceID", "PostingDate"],
        aliases={"Vendor": "Supplier"}
    )
    assert field_map == {
        "Sequence ID": "SequenceID",
        "posting date": "PostingDate",
        "Vendor": "Supplier",
        "Other": "Other",
    }


def test_normalize_record_keys_first_non_empty_value_wins():
    records = [{"Sequence ID": "", "sequenceId": "7", "Amount": 1}]
    assert normalize_record_keys(records, ["SequenceID"]) == [{"SequenceID": "7", "Amount": 1}]


def test_read_records_jsonl(tmp_path):
    path = tmp_path / "records.jsonl"
    path.write_text('{"Sequence Id": "1"}\n\n{"Sequence Id": "2"}\n', encoding="utf-8")
    assert read_records(path, ["SequenceID"]) == [{"SequenceID": "1"}, {"SequenceID": "2"}]


def test_read_records_json_list_and_wrapped(tmp_path):
    plain = tmp_path / "plain.json"
    plain.write_text(json.dumps([{"a": 1}]), encoding="utf-8")
    wrapped = tmp_path / "wrapped.json"
    wrapped.write_text(json.dumps({"records": [{"a": 2}]}), encoding="utf-8")

    assert read_records(plain) == [{"a": 1}]
    assert read_records(wrapped) == [{"a": 2}]


def test_read_records_json_rejects_other_shapes(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"data": 1}), encoding="utf-8")
    with pytest.raises(ValueError):
        read_records(path)


def test_read_records_csv_keeps_leading_zeros(tmp_path):
    path = tmp_path / "records.csv"
    path.write_text("Company Code,Amount\n0010,12.50\n", encoding="utf-8")

    records = read_records(path, ["CompanyCode"])
    assert records == [{"CompanyCode": "0010", "Amount": "12.50"}]


def test_read_records_parquet(tmp_path):
    path = tmp_path / "records.parquet"
    pl.DataFrame({"Purchase Order": ["4500000001"], "Qty": [3]}).write_parquet(path)

    assert read_records(path, ["PurchaseOrder"]) == [{"PurchaseOrder": "4500000001", "Qty": 3}]


def test_read_records_unsupported_suffix(tmp_path):
    path = tmp_path / "records.xlsx"
    path.write_text("", encoding="utf-8")
    with pytest.raises(ValueError):
        read_records(path)


def test_check_source_data_fields(tmp_path):
    path = tmp_path / "records.jsonl"
    path.write_text('{"sequence id": "1", "amount": 1}\n{"amount": 2}\n', encoding="utf-8")

    ok, missing = check_source_data_fields(path, ["SequenceID", "Amount"])
    assert not ok
    assert missing == {1: ["SequenceID"]}
