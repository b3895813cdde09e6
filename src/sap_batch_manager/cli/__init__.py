"""
Command-line interface for SAP Batch Manager.

This module provides the CLI used to upload records to SAP create
services. Each upload is described by a profile that stores the source
data file, the transport and the batch options.

Command Categories:
    Configuration:
        - setup: Configure a new upload profile or update one
        - list-profiles: Show available profiles
        - unregister-profile: Remove profile configuration

    Uploads:
        - preview: Show how records will be grouped
        - upload: Submit the records (or rehearse with --dry-run)

    Results:
        - show-summary: Print the summary of the last (or a given) upload

Environment Requirements:
    - The variable named by the profile's token_env (e.g. SAP_CSRF_TOKEN)
    - Whatever the profile's transport adapter reads (endpoint, credentials...)

Example Workflow:
    # 1. Set up the profile
    $ sapbm -p invoices setup
       --source-data-file ./invoices.csv
       --base-folder ./uploads/invoices/
       --transport my_adapters.odata:SupplierInvoiceTransport
       --token-env SAP_CSRF_TOKEN
       --group-by SupplierInvoiceIDByInvcgParty

    # 2. Check the grouping
    $ sapbm -p invoices preview

    # 3. Upload
    $ sapbm -p invoices upload

    # 4. Inspect failures
    $ sapbm -p invoices show-summary --errors

The CLI provides extensive help for each command:
    $ sapbm --help
    $ sapbm setup --help
    $ sapbm upload --help
"""

from .cli import cli

__all__ = [
    'cli',  # Main CLI interface (Click command group)
]
