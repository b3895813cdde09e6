# -*- coding: utf-8 -*-

"""
Environment configuration management.
"""

import os
import logging
from pathlib import Path
from typing import Iterable, Optional
import dotenv


def load_environment_variables(env_file: Optional[str] = None, verbose: bool = False) -> bool:
    """
    Load environment variables from .env file with smart path resolution.

    Args:
        env_file: Specific .env file path. If None, searches for .env files.
        verbose: Whether to log environment loading details.

    Returns:
        True if .env file was found and loaded, False otherwise.
    """
    if env_file:
        env_path = Path(env_file)
        if env_path.exists():
            dotenv.load_dotenv(env_path)
            if verbose:
                logging.debug(f"Loaded environment from: {env_path}")
            return True
        if verbose:
            logging.warning(f"Specified .env file not found: {env_path}")
        return False

    # .env.local takes precedence over .env
    search_paths = [
        Path.cwd() / '.env.local',
        Path.cwd() / '.env',
    ]

    for env_path in search_paths:
        if env_path.exists():
            dotenv.load_dotenv(env_path)
            if verbose:
                logging.debug(f"Loaded environment from: {env_path}")
            return True

    if verbose:
        logging.debug("No .env file found in search paths")
    return False


def validate_required_env_vars(required: Iterable[str] = ()) -> list:
    """
    Validate that required environment variables are set.

    Args:
        required: Names of the variables the upload needs (token, endpoint...).

    Returns:
        List of missing environment variables (empty if all present)
    """
    return [var for var in required if not os.getenv(var)]


def setup_environment(verbose: bool = False, env_file: Optional[str] = None) -> bool:
    """
    Set up environment for the package.

    Args:
        verbose: Whether to log environment setup details
        env_file: Optional specific .env file to load

    Returns:
        True if environment setup was successful
    """
    env_loaded = load_environment_variables(env_file, verbose)

    if verbose and not env_loaded:
        logging.debug("No .env file loaded. Relying on system environment variables.")
        logging.debug("Expected .env file locations:")
        logging.debug("  - ./.env.local (current directory)")
        logging.debug("  - ./.env (current directory)")

    return True  # .env is optional
