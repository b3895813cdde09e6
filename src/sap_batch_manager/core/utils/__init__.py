"""
Shared utilities for SAP Batch Manager.

Submodules:
    datasource:  Record ingestion and field name normalization
    clients:     Transport, token provider and follow-up creation
    registry:    Upload profile registry (internal)
    misc:        Internal utilities (internal)
    environment: Environment configuration (internal)

Example Usage:
    import sap_batch_manager as sbm

    records = sbm.utils.datasource.read_records('./invoices.csv', canonical_fields=['SequenceID'])
    transport = sbm.utils.clients.create_transport('dry-run')
"""

from . import datasource
from . import clients

__all__ = [
    'datasource',  # sbm.utils.datasource.*
    'clients',     # sbm.utils.clients.*
]

# Internal modules not exported:
# - registry (internal profile management)
# - misc (internal utilities)
# - environment (internal environment setup)
