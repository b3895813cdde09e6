"""
SAP Batch Manager - Grouped, retrying record uploads to SAP create services

A toolkit to submit validated records (supplier invoices, journal entries,
service entry sheets, fixed assets, WBS elements...) to SAP OData or SOAP
create services in groups, one group at a time. It provides both a
programmatic API and a command-line interface.

Key Features:
    - Grouping by fixed chunk size or by a composite business key
      (e.g. PurchaseOrder + PostingDate)
    - Sequential submission with retries of transient failures
    - Cooperative cancellation of a running upload
    - Live progress (counts, throughput, ETA) and per-record results
    - Optional follow-up call for created records (e.g. SES approval)
    - Upload profiles and result export (CSV, JSONL, Parquet)

Package Structure:
    batching: Orchestration engine (grouping, retry, transport, aggregation)
    utils:    Shared utilities (record ingestion, transports, profiles)

Example Usage:

    Basic Workflow:
        import asyncio
        import sap_batch_manager as sbm

        config = sbm.BatchConfig(group_by=["PurchaseOrder", "PostingDate"], max_retries=3)
        summary = asyncio.run(sbm.run_batch(records, transport, config))
        print(summary.success_count, summary.failure_count)

    High-Level Interface:
        manager = sbm.SAPBatchManager(
            transport=sbm.utils.clients.create_transport("my_adapters.odata:InvoiceTransport"),
            base_folder='./uploads/invoices/',
            source_data_path='./invoices.csv',
            config=sbm.BatchConfig(chunk_size=10),
        )
        summary = manager.run()
        manager.save_results(summary, file_type='csv')

    CLI Usage:
        $ sapbm -p invoices setup --source-data-file ./invoices.csv --base-folder ./uploads/invoices --chunk-size 10
        $ sapbm -p invoices preview
        $ sapbm -p invoices upload
        $ sapbm -p invoices show-summary

Environment Setup:
    Session tokens and endpoints used by transports can be set via .env
    files in the current working directory (.env, .env.local).
"""

__version__ = "0.1.0"

# Load environment on package import
from .core.utils.environment import setup_environment
setup_environment()

# Export core API modules
from . import core
batching = core.batching
utils = core.utils
BatchConfig = core.BatchConfig
BatchOrchestrator = core.BatchOrchestrator
SAPBatchManager = core.SAPBatchManager
run_batch = core.run_batch

__all__ = [
    '__version__',
    'batching',           # sbm.batching.*
    'utils',              # sbm.utils.*
    'BatchConfig',        # sbm.BatchConfig()
    'BatchOrchestrator',  # sbm.BatchOrchestrator()
    'SAPBatchManager',    # sbm.SAPBatchManager()
    'run_batch',          # await sbm.run_batch(...)
]

# Clean up namespace
del setup_environment, core
