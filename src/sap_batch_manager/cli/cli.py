# -*- coding: utf-8 -*-

import sys
import click
import logging
from pathlib import Path

from ..core.batching.errors import BatchError
from ..core.batching.summary import load_run_summary_dict
from ..core.utils.registry import get_registry
from ..core.utils.misc import mask_path
from ..core.utils.environment import validate_required_env_vars
from .utils import (
    setup_logging,
    _validate_positive_integer_callback,
    _validate_non_negative_callback,
    _parse_key_value_options,
    _handle_existing_profile_setup,
    _handle_new_profile_setup,
    _build_manager,
    _safe_get_results_folder
)

NO_PROFILE_COMMANDS = ['list-profiles', 'unregister-profile']


@click.group()
@click.option(
    '-v', '--verbose', is_flag=True,
    help='Enable verbose (DEBUG) logging'
)
@click.option(
    '-q', '--quiet', is_flag=True,
    help='Only show warnings and errors'
)
@click.option(
    '-p', '--profile', type=str,
    help='Name of the upload profile to work with.'
)
@click.pass_context
def cli(ctx, verbose, quiet, profile):
    """
    SAP Batch Manager CLI - Upload records to SAP create services in
    grouped, retried, cancellable batches.

    Set up an upload profile once (source file, transport, grouping and
    retry options), preview how records will be grouped, then upload and
    inspect the results.

    \b
    Transports receive their session token from the environment variable
    named by the profile's token_env (e.g. SAP_CSRF_TOKEN), which can be
    set in a .env file.
    """
    setup_logging(verbose=verbose, quiet=quiet)

    ctx.ensure_object(dict)
    ctx.obj['profile'] = profile
    ctx.obj['quiet'] = quiet

    # Skip checks if --help/-h is requested
    if any(arg in sys.argv for arg in ['--help', '-h']):
        return

    if not profile and ctx.invoked_subcommand not in NO_PROFILE_COMMANDS:
        logging.error("Please specify a profile using the -p or --profile option.")
        raise click.UsageError("Profile is required except for 'list-profiles' "
                               "and 'unregister-profile' commands.")

    if ctx.invoked_subcommand in ['setup'] + NO_PROFILE_COMMANDS:
        return

    registry = get_registry()
    config = registry.get_profile_config(profile)
    if not config:
        logging.error(f"No configuration found for profile '{profile}'. "
                      f"Please run 'sapbm --profile {profile} setup' "
                      "first, or use 'sapbm list-profiles' to see "
                      "available profiles.")
        raise SystemExit(1)
    ctx.obj['config'] = config


@cli.command()
@click.option(
    '--source-data-file', type=click.Path(exists=True), default=None,
    help=('Path to the file holding the records to upload (JSONL, JSON, CSV or Parquet). '
          'Required for new profiles.')
)
@click.option(
    '--base-folder', type=click.Path(), default=None,
    help=('Path where the profile file and upload results are stored. '
          'Required for new profiles.')
)
@click.option(
    '--transport', type=str, default=None,
    help=("Transport adapter: 'dry-run' or an import path 'module:factory'. "
          "For new profiles, default is 'dry-run'.")
)
@click.option(
    '--transport-option', 'transport_options', multiple=True,
    callback=_parse_key_value_options,
    help='KEY=VALUE passed to the transport factory. Can be repeated.'
)
@click.option(
    '--token-env', type=str, default=None,
    help='Environment variable holding the session token (e.g. SAP_CSRF_TOKEN).'
)
@click.option(
    '--chunk-size', type=int, default=None,
    callback=_validate_positive_integer_callback,
    help='Group records in chunks of this size.'
)
@click.option(
    '--group-by', multiple=True,
    help='Group records by these fields (e.g. --group-by PurchaseOrder --group-by PostingDate).'
)
@click.option(
    '--max-retries', type=int, default=None,
    callback=_validate_non_negative_callback,
    help='Retries of a group after a transient failure. Default is 3.'
)
@click.option(
    '--retry-delay-ms', type=int, default=None,
    callback=_validate_non_negative_callback,
    help='Delay before retrying a group, in milliseconds. Default is 2000.'
)
@click.option(
    '--backoff-factor', type=float, default=None,
    help='Multiplier of the retry delay on each further retry. Default is 1.0 (fixed delay).'
)
@click.option(
    '--throttle-ms', type=int, default=None,
    callback=_validate_non_negative_callback,
    help='Pause between groups, in milliseconds. Default is 500.'
)
@click.option(
    '--canonical-field', 'canonical_fields', multiple=True,
    help=('Field name records are normalized to ("Sequence ID", "sequenceId" '
          'become "SequenceID"). Can be repeated.')
)
@click.option(
    '--field-alias', 'field_aliases', multiple=True,
    callback=_parse_key_value_options,
    help='SOURCE=FIELD renaming of a source column. Can be repeated.'
)
@click.option(
    '--follow-up', type=str, default=None,
    help="Import path 'module:function' called for created records whose follow-up flag is set."
)
@click.option(
    '--follow-up-field', type=str, default=None,
    help="Record field requesting the follow-up. Default is 'GRNCreate'."
)
@click.option(
    '--follow-up-dedupe-field', type=str, default=None,
    help='Result field shared by records needing a single follow-up call (e.g. the document number).'
)
@click.option(
    '--export-format', type=click.Choice(['csv', 'jsonl', 'parquet']), default=None,
    help="Format of exported result records. Default is 'csv'."
)
@click.option(
    '--force', is_flag=True, default=False,
    help='Skip confirmation prompts when updating existing configurations.'
)
@click.pass_context
def setup(ctx, force, **options):
    """
    Setup a new upload profile or update an existing one.

    For new profiles, --source-data-file and --base-folder are required.
    For existing profiles, only the provided options are updated.

    \b
    Examples:
        # New profile grouped by purchase order and posting date
        sapbm -p ses setup \\
            --source-data-file ~/data/ses.csv \\
            --base-folder ~/uploads/ses/ \\
            --transport my_adapters.ses:ServiceEntrySheetTransport \\
            --token-env SAP_CSRF_TOKEN \\
            --group-by PurchaseOrder --group-by PostingDate

        # Show the existing configuration
        sapbm -p ses setup

        # Change only the retry delay
        sapbm -p ses setup --retry-delay-ms 5000
    \b
    """
    profile = ctx.obj['profile']
    registry = get_registry()
    existing_config = registry.get_profile_config(profile)

    if existing_config:
        return _handle_existing_profile_setup(profile, existing_config, options, force)
    return _handle_new_profile_setup(profile, options, force)


@cli.command()
@click.pass_context
def list_profiles(ctx):
    """List all registered upload profiles."""
    registry = get_registry()
    profiles = registry.list_profiles()

    if not profiles:
        logging.info("No profiles registered. Use 'setup' command to create a profile.")
        return

    logging.info(f"Found {len(profiles)} registered profiles:")
    logging.info("")

    for profile in profiles:
        status = "exists" if profile["config_exists"] else "missing"
        logging.info(f"  {profile['name']}")
        logging.info(f"    ProfileFile Status: {status}")
        logging.info(f"    Base folder: {mask_path(profile['base_folder'])}")
        logging.info(f"    Last used: {profile['last_accessed'][:19].replace('T', ' ')}")
        logging.info("")


@cli.command()
@click.argument('profile_name', required=False)
@click.option(
    '--cleanup-orphaned', is_flag=True,
    help='Remove profiles whose config files no longer exist.'
)
@click.pass_context
def unregister_profile(ctx, profile_name, cleanup_orphaned):
    """Remove a profile from the global registry."""
    registry = get_registry()

    if cleanup_orphaned:
        orphaned = registry.cleanup_orphaned_profiles()
        if orphaned:
            logging.info(f"Removed {len(orphaned)} orphaned profiles: {orphaned}")
        else:
            logging.info("No orphaned profiles found.")
        return

    profile_name = profile_name or ctx.obj.get('profile')
    if not profile_name:
        logging.error("Please specify a profile to unregister, or use --cleanup-orphaned")
        raise SystemExit(1)

    if registry.unregister_profile(profile_name):
        logging.info(f"Successfully unregistered profile '{profile_name}'")
        logging.info("Note: This only removes the registry entry, not the actual files.")
    else:
        logging.error(f"Profile '{profile_name}' not found in registry")
        raise SystemExit(1)


@cli.command()
@click.option(
    '--limit', type=int, default=20,
    callback=_validate_positive_integer_callback,
    help='Maximum number of groups to list. Default is 20.'
)
@click.pass_context
def preview(ctx, limit):
    """Show how the source records will be grouped, without uploading."""
    config = ctx.obj['config']
    manager = _build_manager(config, dry_run=True, show_progress=False)

    try:
        groups = manager.preview_groups()
    except BatchError as e:
        logging.error(f"Cannot group source records: {e}")
        raise SystemExit(1)

    total_records = sum(g['records'] for g in groups)
    logging.info(f"{total_records} records in {len(groups)} groups ({manager.config.grouping().describe()}):")
    for group in groups[:limit]:
        logging.info(f"  Group {group['group']:>4}: {group['key']} ({group['records']} records)")
    if len(groups) > limit:
        logging.info(f"  ... and {len(groups) - limit} more groups")


@cli.command()
@click.option(
    '--dry-run', is_flag=True, default=False,
    help='Accept every record locally without calling the transport.'
)
@click.option(
    '--file-type', type=click.Choice(['csv', 'jsonl', 'parquet']), default=None,
    help="Format of exported result records. Defaults to the profile's export format."
)
@click.option(
    '--throttle-ms', type=int, default=None,
    callback=_validate_non_negative_callback,
    help='Override the pause between groups for this upload.'
)
@click.option(
    '--no-progress', is_flag=True, default=False,
    help='Do not draw the progress bar.'
)
@click.pass_context
def upload(ctx, dry_run, file_type, throttle_ms, no_progress):
    """
    Upload the source records of the profile.

    Press Ctrl-C once to cancel the upload after the current step. The
    partial results are still saved. Press it again to abort immediately.
    """
    config = ctx.obj['config']

    if not dry_run and config.get('token_env'):
        missing = validate_required_env_vars([config['token_env']])
        if missing:
            logging.warning(f"Missing environment variables: {missing}. Submitting without a token.")

    manager = _build_manager(
        config,
        dry_run=dry_run,
        show_progress=not (no_progress or ctx.obj.get('quiet')),
        throttle_ms=throttle_ms
    )
    if dry_run:
        logging.info("Dry run: records are accepted locally, nothing is sent.")

    try:
        summary = manager.run()
    except BatchError as e:
        logging.error(f"Upload could not start: {e}")
        raise SystemExit(1)

    results_folder = manager.save_results(summary, file_type=file_type or config.get('export_format', 'csv'))

    logging.info(summary.status)
    logging.info(f"Succeeded: {summary.success_count} | Failed: {summary.failure_count} | "
                 f"Not processed: {summary.remaining_count}")
    logging.info(f"Show the summary again with: sapbm -p {ctx.obj['profile']} show-summary "
                 f"--results-folder {mask_path(str(results_folder))}")


@cli.command()
@click.option(
    '--results-folder', type=click.Path(exists=True, file_okay=False), default=None,
    help='Results folder of a specific upload. Defaults to the most recent one.'
)
@click.option(
    '--errors', 'show_errors', is_flag=True, default=False,
    help='Also list the failed records with their error messages.'
)
@click.pass_context
def show_summary(ctx, results_folder, show_errors):
    """Print the summary of the last (or a given) upload."""
    config = ctx.obj['config']
    folder = _safe_get_results_folder(config['base_folder'], results_folder)

    click.echo((Path(folder) / "summary.txt").read_text(encoding="utf-8"))

    if show_errors:
        json_path = Path(folder) / "summary.json"
        if not json_path.exists():
            logging.warning(f"No summary.json found in {mask_path(str(folder))}")
            return
        errors = load_run_summary_dict(json_path).get("error_records", [])
        click.echo("")
        click.echo(f"=== Failed Records ({len(errors)}) ===")
        for record in errors:
            click.echo(f"#{record.get('original_index')} [{record.get('group_key')}] "
                       f"{record.get('ErrorCode')}: {record.get('ErrorMessage')}")
