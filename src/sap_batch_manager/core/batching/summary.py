# -*- coding: utf-8 -*-

import json
import logging
from collections import Counter
from pathlib import Path
from typing import Optional

from ..utils.misc import mask_path
from .aggregator import format_duration
from .models import RunSummary


def _pct(part: int, total: int) -> float:
    return (part / total * 100) if total else 0


def get_run_summary_dict(summary: RunSummary, profile: Optional[str] = None) -> dict:
    """
    Generate a summary dictionary from a run summary.

    Args:
        summary (RunSummary): Final (or live) summary of a run.
        profile (str, optional): Name of the upload profile, if any.

    Returns:
        dict: The formatted summary dictionary.
    """
    error_codes = Counter(r.get("ErrorCode", "ERROR") for r in summary.error_records)
    follow_up = Counter(
        r["follow_up_status"] for r in summary.success_records if r.get("follow_up_status")
    )
    summary_dict = {
        "profile": profile,
        "state": summary.state,
        "status": summary.status,
        "cancelled": summary.cancelled,
        "duration_ms": summary.duration_ms,
        "groups": {
            "total": summary.total_groups,
            "processed": summary.processed_groups,
        },
        "records": {
            "total": summary.total_records,
            "processed": summary.processed_count,
            "succeeded": summary.success_count,
            "failed": summary.failure_count,
            "not_processed": summary.remaining_count,
        },
        "error_codes": dict(error_codes.most_common()),
    }
    if follow_up:
        summary_dict["follow_up"] = dict(follow_up)
    return summary_dict


def format_run_summary(summary_dict: dict) -> str:
    """Render a summary dictionary as the human readable summary text."""
    records = summary_dict["records"]
    total = records["total"]
    summary_lines = [
        f"Profile      : {summary_dict.get('profile') or '-'}",
        f"State        : {summary_dict['state']}",
        f"Status       : {summary_dict['status']}",
        f"Duration     : {format_duration(round(summary_dict['duration_ms'] / 1000))}",
        f"Groups       : {summary_dict['groups']['processed']} of {summary_dict['groups']['total']} processed",
        "",
        "=== Record Counts ===",
        f"Total         : {total}",
        f"Succeeded     : {records['succeeded']} ({_pct(records['succeeded'], total):.2f}%)",
        f"Failed        : {records['failed']} ({_pct(records['failed'], total):.2f}%)",
        f"Not processed : {records['not_processed']} ({_pct(records['not_processed'], total):.2f}%)",
    ]

    if summary_dict.get("error_codes"):
        summary_lines += ["", "=== Errors by Code ==="]
        for code, count in summary_dict["error_codes"].items():
            summary_lines.append(f"{code:<24}: {count}")

    if summary_dict.get("follow_up"):
        summary_lines += ["", "=== Follow-up ==="]
        for status, count in summary_dict["follow_up"].items():
            summary_lines.append(f"{status:<10}: {count}")

    return "\n".join(summary_lines)


def save_run_summary(
    summary: RunSummary,
    summary_path: str | Path,
    profile: Optional[str] = None,
    return_as: Optional[str] = None,
    save_dict: bool = False
):
    """
    Save the summary text of a run.

    Args:
        summary (RunSummary): Summary of the run.
        summary_path (str): Path of the summary text file.
        profile (str, optional): Name of the upload profile.
        return_as (str, optional): If 'dict', returns the summary as a dictionary; if 'print', prints the summary to console.
        save_dict (bool): If True, saves the full run summary (records and messages included) as a JSON file alongside the summary text.

    Returns:
        dict or None: The summary dictionary if return_as == 'dict', else None.
    """
    summary_dict = get_run_summary_dict(summary, profile=profile)
    text = format_run_summary(summary_dict)

    with open(summary_path, "w", encoding="utf-8") as f:
        f.write(text)

    logging.info(f"Run summary saved to {mask_path(summary_path)}")

    if save_dict:
        json_path = Path(summary_path).with_suffix(".json")
        with open(json_path, "w", encoding="utf-8") as jf:
            json.dump(
                {"summary": summary_dict, **summary.to_dict()},
                jf, indent=2, ensure_ascii=False, default=str
            )
        logging.info(f"Run summary dict saved to {mask_path(json_path)}")

    if return_as == "print":
        print(text)

    if return_as == "dict":
        return summary_dict


def load_run_summary_dict(json_path: str | Path) -> dict:
    """Load a summary previously saved with `save_dict=True`."""
    with open(json_path, "r", encoding="utf-8") as f:
        return json.load(f)
