"""
Batch submission engine of SAP Batch Manager.

Submodules:
    grouping:     Chunk, field and callable grouping strategies
    transport:    TransportAdapter / TokenProvider protocols, dry-run transport
    responses:    Response reconciliation and error mapping
    retry:        RetryPolicy built on tenacity
    orchestrator: BatchOrchestrator and run_batch
    aggregator:   ProgressAggregator (counts, throughput, ETA)
    followup:     FollowUpHook for created records
    config:       BatchConfig
    progress:     tqdm progress sink
    summary:      Run summary text and JSON
    export:       CSV / JSONL / Parquet export of results
    manager:      SAPBatchManager

Example Usage:
    import sap_batch_manager as sbm

    groups = sbm.batching.grouping.FieldGrouping(["PurchaseOrder"]).partition(
        sbm.batching.grouping.assign_original_indices(records)
    )
    orchestrator = sbm.batching.orchestrator.BatchOrchestrator(transport, sbm.BatchConfig(chunk_size=10))
    summary = await orchestrator.start(records)
"""

from . import errors
from . import models
from . import grouping
from . import transport
from . import responses
from . import retry
from . import aggregator
from . import followup
from . import config
from . import orchestrator
from . import progress
from . import summary
from . import export
from . import manager

__all__ = [
    'errors',        # sbm.batching.errors.*
    'models',        # sbm.batching.models.*
    'grouping',      # sbm.batching.grouping.*
    'transport',     # sbm.batching.transport.*
    'responses',     # sbm.batching.responses.*
    'retry',         # sbm.batching.retry.*
    'aggregator',    # sbm.batching.aggregator.*
    'followup',      # sbm.batching.followup.*
    'config',        # sbm.batching.config.*
    'orchestrator',  # sbm.batching.orchestrator.*
    'progress',      # sbm.batching.progress.*
    'summary',       # sbm.batching.summary.*
    'export',        # sbm.batching.export.*
    'manager',       # sbm.batching.manager.*
]
