"""
CLI entry point for SAP Batch Manager.

This module handles environment setup, logging configuration, and launches
the CLI interface.
"""

import sys
import logging


def __setup_main_logging(verbose=False, quiet=False):
    """
    Configure logging for entry point execution.
    Allows logging when setting up environment variables.
    """
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
        force=True
    )


def __setup_cli_environment(verbose=False):
    """Load .env files before any transport reads its settings."""
    logger = logging.getLogger(__name__)

    try:
        from ..core.utils.environment import setup_environment
        setup_environment(verbose=verbose)

        if verbose:
            logger.debug("Environment setup completed successfully")

    except OSError as e:
        logger.warning(f"Environment setup failed: {e}")
        if verbose:
            logger.debug("Environment variables might be set system-wide", exc_info=True)


def main():
    """Main CLI entry point with full setup."""
    verbose = '-v' in sys.argv or '--verbose' in sys.argv
    quiet = '-q' in sys.argv or '--quiet' in sys.argv

    __setup_main_logging(verbose=verbose, quiet=quiet)
    __setup_cli_environment(verbose=verbose)

    logger = logging.getLogger(__name__)

    try:
        logger.debug("Starting CLI execution")
        from .cli import cli
        cli()

    except KeyboardInterrupt:
        logger.info("CLI interrupted by user")
        sys.exit(130)  # Standard exit code for SIGINT

    except Exception as e:
        if verbose:
            logger.exception("CLI execution failed")
        else:
            logger.error(f"CLI execution failed: {e}")
            raise e
        sys.exit(1)


if __name__ == '__main__':
    main()
