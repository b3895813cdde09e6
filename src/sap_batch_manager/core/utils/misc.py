# -*- coding: utf-8 -*-

import os
import json
import logging
from pathlib import Path

import yaml


#=======================================================================
# JSON Lines Utilities
#=======================================================================

def write_jsonl(lines, path):
    """
    Write a list of dictionaries to a JSON Lines file.
    Each dictionary is written as a separate line in the file.

    Args:
        lines (list): List of dictionaries to write.
        path (str): Path to the output file.
    """
    with open(path, 'w', encoding='utf-8') as f:
        for line in lines:
            f.write(json.dumps(line, ensure_ascii=False) + '\n')


def read_jsonl(path):
    """
    Read a JSON Lines file and return a list of dictionaries.
    Blank lines are skipped.

    Args:
        path (str): Path to the input file.

    Returns:
        list: List of dictionaries read from the file.
    """
    with open(path, 'r', encoding='utf-8') as f:
        return [json.loads(line) for line in f if line.strip()]


#=======================================================================
# YAML Utilities
#=======================================================================

def read_yaml(path):
    """Read a YAML file. Returns None for an empty file."""
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f)


def write_yaml(data, path):
    """Write `data` to a YAML file, keeping the key order."""
    with open(path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)


#=======================================================================
# Path Utilities
#=======================================================================

def mask_path(path, base_dir=None):
    """
    Masks or simplifies a path for logging.

    Args:
        path (str): The full path to mask.
        base_dir (str, optional): The base directory to make the path relative to.

    Returns:
        str: The masked or simplified path.
    """
    path = Path(path)

    # Use base_dir if provided, otherwise fallback to PROJECT_DIR from environment
    if base_dir is None:
        base_dir = os.getenv('PROJECT_DIR')

    if base_dir:
        try:
            return str(path.relative_to(Path(base_dir)))
        except ValueError:
            pass  # Not under base_dir

    # Replace home directory with "~"
    try:
        return f"~/{path.relative_to(Path.home())}"
    except ValueError:
        return str(path)


def assert_required_path(path, description="Path"):
    """
    Ensures that a required file or directory exists.

    Args:
        path (str): The path to check.
        description (str): Description of the resource for error messages.

    Raises:
        FileNotFoundError: If the path does not exist.
    """
    if not os.path.exists(path):
        logging.error(f"{description} not found at: {mask_path(path)}")
        raise FileNotFoundError(f"{description} not found: {path}")


def ensure_output_path(path, description="Output folder"):
    """
    Make sure an output directory exists, creating it if needed.

    Args:
        path (str): Directory path.
        description (str): Description of the resource (for logging).
    """
    if not os.path.exists(path):
        logging.info(f"{description} does not exist. Creating it at: {mask_path(path)}")
        os.makedirs(path, exist_ok=True)
