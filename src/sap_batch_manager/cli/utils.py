# -*- coding: utf-8 -*-

import logging
from datetime import datetime
from pathlib import Path
import click

from ..core.batching.config import BatchConfig
from ..core.batching.errors import ConfigurationError
from ..core.batching.manager import SAPBatchManager, get_results_folders
from ..core.batching.transport import DryRunTransport
from ..core.utils.registry import get_registry
from ..core.utils.datasource import SUPPORTED_SUFFIXES, read_records
from ..core.utils.clients import (
    DRY_RUN,
    create_transport,
    create_token_provider,
    create_follow_up
)
from ..core.utils.misc import (
    mask_path,
    ensure_output_path,
    write_yaml
)

PROFILE_FILE = "ProfileFile.yaml"

# Options stored under the 'batch' key of a profile
BATCH_OPTIONS = (
    'chunk_size', 'group_by', 'max_retries', 'retry_delay_ms',
    'backoff_factor', 'throttle_ms', 'follow_up_field'
)


def setup_logging(verbose=False, quiet=False):
    """Configure logging for CLI execution."""
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True  # Override any existing configuration
    )

    # Reduce noise from external libraries in non-verbose mode
    if not verbose:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("asyncio").setLevel(logging.WARNING)


def _validate_positive_integer_callback(ctx, param, value):
    """Validate that the provided value is a positive integer."""
    if value is not None and value <= 0:
        raise click.BadParameter("Value must be a positive integer.")
    return value


def _validate_non_negative_callback(ctx, param, value):
    """Validate that the provided value is zero or positive."""
    if value is not None and value < 0:
        raise click.BadParameter("Value must be zero or positive.")
    return value


def _parse_key_value_options(ctx, param, values):
    """Turn repeated KEY=VALUE options into a dict."""
    options = {}
    for item in values or ():
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected KEY=VALUE, got '{item}'.")
        options[key.strip()] = value.strip()
    return options or None


#=======================================================================
# Setup Command Utilities
#=======================================================================

def _collect_provided_options(**options):
    """
    Split provided CLI options into profile-level and batch-level options.
    Options left to None (or empty) are not provided.
    """
    profile_options, batch_options = {}, {}
    for key, value in options.items():
        if value is None or value == () or value == []:
            continue
        if isinstance(value, tuple):
            value = list(value)
        if key in BATCH_OPTIONS:
            batch_options[key] = value
        else:
            profile_options[key] = value
    return profile_options, batch_options


def _validate_batch_options(batch_options):
    """Check that batch options build a valid BatchConfig."""
    try:
        return BatchConfig.from_dict(batch_options)
    except ConfigurationError as e:
        logging.error(f"Invalid batch options: {e}")
        raise SystemExit(1)


def _handle_existing_profile_setup(profile, existing_config, options, force):
    """Update an existing profile with the provided options."""
    profile_options, batch_options = _collect_provided_options(**options)

    if 'source_data_file' in profile_options or 'base_folder' in profile_options:
        resolved = _resolve_paths(
            source_data_file=profile_options.get('source_data_file'),
            base_folder=profile_options.get('base_folder')
        )
        logging.warning("Changing the source data file or the base folder of an "
                        "existing profile keeps previous results in the old base folder.")
        _validate_configuration_paths(resolved, existing_config.get('canonical_fields', []))
        profile_options.update(resolved)

    existing_batch = dict(existing_config.get('batch') or {})
    new_batch = dict(existing_batch)
    if 'chunk_size' in batch_options:
        new_batch.pop('group_by', None)
    if 'group_by' in batch_options:
        new_batch.pop('chunk_size', None)
    new_batch.update(batch_options)
    _validate_batch_options(new_batch)

    changes = _get_configuration_changes(existing_config, profile_options)
    changes += _get_configuration_changes(existing_batch, {
        k: v for k, v in new_batch.items() if existing_batch.get(k) != v
    }, prefix="batch.")

    if not _confirm_configuration_changes(profile, changes, force):
        _display_current_config(existing_config)
        return

    updated_config = existing_config.copy()
    updated_config.update(profile_options)
    updated_config['batch'] = new_batch
    _save_and_register_configuration(updated_config, profile)

    logging.info(f"Configuration updated successfully for profile '{profile}'!")


def _handle_new_profile_setup(profile, options, force):
    """
    Handle setup for new profiles.
    Creates the profile file with the provided options and registers it
    in the global registry.
    """
    profile_options, batch_options = _collect_provided_options(**options)

    missing_options = []
    if 'source_data_file' not in profile_options:
        missing_options.append('--source-data-file')
    if 'base_folder' not in profile_options:
        missing_options.append('--base-folder')

    if missing_options:
        logging.error(f"For new profiles, the following options are required: {', '.join(missing_options)}")
        logging.info(f"Example: sapbm -p {profile} setup --source-data-file invoices.csv --base-folder ./uploads/{profile}")
        raise SystemExit(1)

    resolved_paths = _resolve_paths(
        source_data_file=profile_options['source_data_file'],
        base_folder=profile_options['base_folder']
    )
    canonical_fields = profile_options.get('canonical_fields', [])
    _validate_configuration_paths(resolved_paths, canonical_fields, force=force)
    batch_config = _validate_batch_options(batch_options)

    config = {
        "profile": profile,
        "base_folder": resolved_paths['base_folder'],
        "source_data_file": resolved_paths['source_data_file'],
        "transport": profile_options.get('transport', DRY_RUN),
        "transport_options": profile_options.get('transport_options') or {},
        "token_env": profile_options.get('token_env'),
        "canonical_fields": canonical_fields,
        "field_aliases": profile_options.get('field_aliases') or {},
        "follow_up": profile_options.get('follow_up'),
        "follow_up_dedupe_field": profile_options.get('follow_up_dedupe_field'),
        "export_format": profile_options.get('export_format', 'csv'),
        "batch": {
            k: v for k, v in batch_config.to_dict().items() if v is not None
        },
        "created_at": datetime.now().isoformat(),
    }

    _save_and_register_configuration(config, profile)

    logging.info(f"Setup complete! You can now run other commands for profile '{profile}'")
    logging.info("Next steps:")
    logging.info(f"1. Check the grouping: sapbm -p {profile} preview")
    logging.info(f"2. Rehearse the upload: sapbm -p {profile} upload --dry-run")
    logging.info(f"3. Upload: sapbm -p {profile} upload")


def _resolve_paths(**path_kwargs):
    """Resolve provided paths (not None) to absolute paths."""
    return {
        key: str(Path(value).resolve())
        for key, value in path_kwargs.items()
        if value is not None
    }


def _validate_source_data_file(source_data_file_path, canonical_fields=()):
    """Validate source data file existence, format and content."""
    source_data_file = Path(source_data_file_path)

    if not source_data_file.exists():
        logging.error(f"Source data file not found: {mask_path(str(source_data_file))}")
        raise SystemExit(1)

    if source_data_file.suffix not in SUPPORTED_SUFFIXES:
        logging.error(f"Source data file must be one of: {', '.join(SUPPORTED_SUFFIXES)}")
        raise SystemExit(1)

    try:
        records = read_records(source_data_file, canonical_fields)
    except Exception as e:
        logging.error(f"Could not read source data file: {e}")
        raise SystemExit(1)

    if not records:
        logging.warning("Source data file contains no records.")
    logging.info(f"Source data file contains {len(records)} records.")


def _validate_configuration_paths(config, canonical_fields=(), force=False):
    """Validate all paths in configuration exist and are accessible."""
    if 'source_data_file' in config:
        _validate_source_data_file(config['source_data_file'], canonical_fields)

    if 'base_folder' in config:
        _prepare_base_folder(config['base_folder'], force=force)


def _prepare_base_folder(base_folder_path, force=False):
    """Create the base folder, asking for confirmation if it is not empty."""
    base_folder = Path(base_folder_path)

    if base_folder.exists() and not force:
        if any(base_folder.iterdir()):
            logging.warning(f"Base folder {mask_path(str(base_folder))} already exists "
                            "and is not empty.")
            click.confirm(
                "Do you want to proceed? Existing files may be overwritten.",
                abort=True
            )

    ensure_output_path(str(base_folder), "Base folder")
    return base_folder


def _get_configuration_changes(existing_config, provided_options, prefix=""):
    """
    Get what changes will be made to configuration.

    Returns:
        list: List of change dictionaries with 'option', 'old', 'new' keys
    """
    changes = []
    for key, new_value in provided_options.items():
        old_value = existing_config.get(key, 'not set')
        if str(old_value) != str(new_value):
            is_path = 'folder' in key or 'file' in key
            changes.append({
                'option': f"{prefix}{key}",
                'old': mask_path(str(old_value)) if is_path and old_value != 'not set' else old_value,
                'new': mask_path(str(new_value)) if is_path else new_value
            })
    return changes


def _confirm_configuration_changes(profile, changes, force=False):
    """
    Show changes and get user confirmation.

    Returns:
        bool: True if user confirmed, False if there is nothing to change.
    """
    if not changes:
        logging.info(f"No changes detected for profile '{profile}'")
        return False

    logging.info(f"Profile '{profile}' already exists. The following changes will be made:")
    for change in changes:
        logging.info(f"  {change['option']}: '{change['old']}' → '{change['new']}'")

    if not force:
        click.confirm(
            f"Do you want to update the configuration for profile '{profile}'?",
            abort=True
        )
    return True


def _display_current_config(config):
    """Display current configuration in a readable format."""
    logging.info("Current configuration:")
    for key in ['source_data_file', 'base_folder', 'transport', 'token_env', 'follow_up', 'export_format']:
        if config.get(key) is not None:
            value = config[key]
            if 'folder' in key or 'file' in key:
                value = mask_path(str(value))
            logging.info(f"  {key}: {value}")
    for key, value in (config.get('batch') or {}).items():
        logging.info(f"  batch.{key}: {value}")


def _save_and_register_configuration(config, profile):
    """Save the configuration to file and registry."""
    base_folder = Path(config['base_folder'])
    ensure_output_path(str(base_folder), "Base folder")

    config['updated_at'] = datetime.now().isoformat()

    config_file = base_folder / PROFILE_FILE
    write_yaml(config, config_file)

    registry = get_registry()
    registry.register_profile(profile, str(config_file), str(base_folder))

    logging.info(f"Configuration saved to {mask_path(str(config_file))}")


#=======================================================================
# Upload Commands Utilities
#=======================================================================

def _build_batch_config(config, **overrides):
    try:
        return BatchConfig.from_dict(config.get('batch'), **overrides)
    except ConfigurationError as e:
        logging.error(f"Invalid batch configuration: {e}")
        raise SystemExit(1)


def _build_manager(config, dry_run=False, show_progress=True, **overrides):
    """Create the upload manager of a profile."""
    try:
        if dry_run:
            transport = DryRunTransport()
        else:
            transport = create_transport(config.get('transport', DRY_RUN), config.get('transport_options'))
        follow_up = None if dry_run else create_follow_up(
            config.get('follow_up'),
            flag_field=(config.get('batch') or {}).get('follow_up_field', 'GRNCreate'),
            dedupe_field=config.get('follow_up_dedupe_field')
        )
    except ConfigurationError as e:
        logging.error(f"Error creating transport: {e}")
        raise SystemExit(1)

    return SAPBatchManager(
        transport=transport,
        base_folder=config['base_folder'],
        source_data_path=config['source_data_file'],
        config=_build_batch_config(config, **overrides),
        canonical_fields=config.get('canonical_fields') or [],
        field_aliases=config.get('field_aliases') or {},
        token_provider=create_token_provider(config.get('token_env')),
        follow_up=follow_up,
        profile=config.get('profile'),
        show_progress=show_progress
    )


def _safe_get_results_folder(base_folder, results_folder=None):
    """
    Get the results folder to show. Defaults to the most recent one.
    If there is none, the program ends.
    """
    if results_folder is not None:
        folder = Path(results_folder)
        if not (folder / "summary.txt").exists():
            logging.error(f"No summary found in {mask_path(str(folder))}")
            raise SystemExit(1)
        return folder

    folders = get_results_folders(base_folder)
    if not folders:
        logging.error("No results found. Please run an upload first using 'upload' command.")
        raise SystemExit(1)
    return folders[-1]
