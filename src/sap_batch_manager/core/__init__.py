"""
Core functionality for SAP Batch Manager.

Architecture:
    batching/   - Batch submission engine
      ├── grouping/     - Partitioning of records into groups
      ├── transport/    - Adapter and token provider interfaces
      ├── responses/    - Mapping of responses to per-record outcomes
      ├── retry/        - Retry policy (tenacity)
      ├── orchestrator/ - Sequential submission state machine
      ├── aggregator/   - Counts, throughput, ETA and final summary
      ├── followup/     - Post-processing of created records
      ├── summary/      - Summary text and JSON
      ├── export/       - Result export (polars)
      └── manager/      - High-level upload manager

    utils/      - Shared utilities and infrastructure
      ├── datasource/  - Record ingestion and field name normalization
      ├── clients/     - Transport, token provider and follow-up creation
      ├── registry/    - Upload profile registry (internal)
      ├── misc/        - General utilities (internal)
      └── environment/ - Environment setup (internal)
"""

from . import batching
from . import utils

from .batching.config import BatchConfig
from .batching.orchestrator import BatchOrchestrator, run_batch
from .batching.manager import SAPBatchManager

__all__ = [
    'batching',
    'utils',
    'BatchConfig',
    'BatchOrchestrator',
    'run_batch',
    'SAPBatchManager',
]
