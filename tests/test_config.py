"""
Tests for run configuration.
"""

import pytest

from sap_batch_manager.core.batching.config import DEFAULT_CHUNK_SIZE, BatchConfig
from sap_batch_manager.core.batching.errors import ConfigurationError
from sap_batch_manager.core.batching.grouping import CallableGrouping, ChunkGrouping, FieldGrouping


def test_defaults():
    config = BatchConfig()
    grouping = config.grouping()
    assert isinstance(grouping, ChunkGrouping)
    assert grouping.size == DEFAULT_CHUNK_SIZE
    assert config.throttle_ms == 500
    assert config.retry_policy().max_retries == 3
    assert config.retry_policy().retry_delay_ms == 2000


def test_grouping_modes():
    assert isinstance(BatchConfig(group_by="PurchaseOrder").grouping(), FieldGrouping)
    assert BatchConfig(group_by="PurchaseOrder").group_by == ["PurchaseOrder"]
    assert isinstance(BatchConfig(group_key_fn=lambda data: data["x"]).grouping(), CallableGrouping)


@pytest.mark.parametrize("kwargs", [
    {"chunk_size": 5, "group_by": ["PO"]},
    {"chunk_size": 0},
    {"chunk_size": -1},
    {"max_retries": -1},
    {"retry_delay_ms": -1},
    {"throttle_ms": -1},
    {"backoff_factor": 0.5},
    {"group_key_fn": "not callable"},
    {"on_progress": 42},
])
def test_invalid_configurations(kwargs):
    with pytest.raises(ConfigurationError):
        BatchConfig(**kwargs)


def test_configuration_error_is_a_value_error():
    with pytest.raises(ValueError):
        BatchConfig(chunk_size=0)


def test_from_dict_ignores_unknown_keys_and_applies_overrides():
    config = BatchConfig.from_dict(
        {"group_by": ["PO"], "max_retries": 1, "created_at": "yesterday"},
        throttle_ms=0,
        max_retries=None
    )
    assert config.group_by == ["PO"]
    assert config.max_retries == 1
    assert config.throttle_ms == 0


def test_from_dict_grouping_override_replaces_profile_grouping():
    assert BatchConfig.from_dict({"group_by": ["PO"]}, chunk_size=5).group_by is None
    assert BatchConfig.from_dict({"chunk_size": 5}, group_by=["PO"]).chunk_size is None


def test_save_and_load(tmp_path):
    path = tmp_path / "batch.yaml"
    BatchConfig(group_by=["PurchaseOrder", "PostingDate"], max_retries=5, on_progress=print).save(path)

    loaded = BatchConfig.load(path)
    assert loaded.group_by == ["PurchaseOrder", "PostingDate"]
    assert loaded.max_retries == 5
    assert loaded.on_progress is None
