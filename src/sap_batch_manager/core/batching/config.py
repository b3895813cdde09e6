# -*- coding: utf-8 -*-
"""
Run configuration.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..utils.misc import read_yaml, write_yaml
from .errors import ConfigurationError
from .grouping import (CallableGrouping, ChunkGrouping, FieldGrouping,
                       GroupingStrategy)
from .retry import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY_MS, RetryPolicy

DEFAULT_CHUNK_SIZE = 10
DEFAULT_THROTTLE_MS = 500

# Fields that cannot be written to a YAML profile
_RUNTIME_ONLY = ("group_key_fn", "on_progress")


@dataclass
class BatchConfig:
    """
    Options of a single run.

    Exactly one grouping mode may be set: `chunk_size`, `group_by` (one or
    more field names) or `group_key_fn`. With none of them, records are
    submitted in chunks of DEFAULT_CHUNK_SIZE.

    `follow_up_field` names the record flag that requests the follow-up
    call and is applied to the run's follow-up hook.
    """
    chunk_size: Optional[int] = None
    group_by: Optional[List[str]] = None
    group_key_fn: Optional[Callable[[Any], Any]] = None
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    backoff_factor: float = 1.0
    throttle_ms: int = DEFAULT_THROTTLE_MS
    follow_up_field: str = "GRNCreate"
    on_progress: Optional[Callable[[dict], None]] = field(default=None, repr=False)

    def __post_init__(self):
        if isinstance(self.group_by, str):
            self.group_by = [self.group_by]

        modes = [
            name for name, value in (
                ("chunk_size", self.chunk_size),
                ("group_by", self.group_by),
                ("group_key_fn", self.group_key_fn),
            ) if value
        ]
        if len(modes) > 1:
            raise ConfigurationError(f"Only one grouping mode can be set, got: {', '.join(modes)}")
        if self.chunk_size is not None and (isinstance(self.chunk_size, bool) or self.chunk_size <= 0):
            raise ConfigurationError("chunk_size must be a positive integer.")
        if self.group_key_fn is not None and not callable(self.group_key_fn):
            raise ConfigurationError("group_key_fn must be callable.")
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0.")
        if self.retry_delay_ms < 0:
            raise ConfigurationError("retry_delay_ms must be >= 0.")
        if self.backoff_factor < 1:
            raise ConfigurationError("backoff_factor must be >= 1.")
        if self.throttle_ms < 0:
            raise ConfigurationError("throttle_ms must be >= 0.")
        if self.on_progress is not None and not callable(self.on_progress):
            raise ConfigurationError("on_progress must be callable.")

    def grouping(self) -> GroupingStrategy:
        """Grouping strategy selected by this configuration."""
        if self.group_key_fn is not None:
            return CallableGrouping(self.group_key_fn)
        if self.group_by:
            return FieldGrouping(self.group_by)
        return ChunkGrouping(self.chunk_size or DEFAULT_CHUNK_SIZE)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            retry_delay_ms=self.retry_delay_ms,
            backoff_factor=self.backoff_factor
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serializable options (callables are left out)."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in _RUNTIME_ONLY
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], **overrides) -> "BatchConfig":
        """
        Build a config from a (profile) dict, ignoring unknown keys.

        Keyword overrides that are not None take precedence over `data`.
        """
        known = {f.name for f in fields(cls)}
        options = {k: v for k, v in (data or {}).items() if k in known}
        options.update({k: v for k, v in overrides.items() if v is not None})
        if overrides.get("chunk_size"):
            options.pop("group_by", None)
        elif overrides.get("group_by"):
            options.pop("chunk_size", None)
        return cls(**options)

    def save(self, path: str | Path) -> None:
        write_yaml(self.to_dict(), path)

    @classmethod
    def load(cls, path: str | Path) -> "BatchConfig":
        return cls.from_dict(read_yaml(path))
