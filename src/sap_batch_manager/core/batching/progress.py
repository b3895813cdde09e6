# -*- coding: utf-8 -*-
"""
Console rendering of progress updates.
"""

import logging
from typing import Optional

from tqdm.auto import tqdm


class TqdmProgressSink:
    """
    Progress sink drawing a tqdm bar of processed records.

    The bar is created on the first update (when the record count is
    known) and closed on the terminal update.

    Args:
        desc (str): Bar description.
        disable (bool): Disable rendering, e.g. in quiet mode.
        log_status (bool): Also log status changes at DEBUG level.
    """

    def __init__(self, desc: str = "Uploading records", disable: bool = False, log_status: bool = True):
        self.desc = desc
        self.disable = disable
        self.log_status = log_status
        self.bar: Optional[tqdm] = None
        self.last_status: Optional[str] = None
        self.last_update: Optional[dict] = None

    def __call__(self, update: dict) -> None:
        self.last_update = update
        total = update.get("total_records")
        if self.bar is None:
            if total is None:
                return
            self.bar = tqdm(total=total, desc=self.desc, unit="rec", disable=self.disable)

        processed = update.get("processed_count", self.bar.n)
        if processed > self.bar.n:
            self.bar.update(processed - self.bar.n)
        self.bar.set_postfix(
            ok=update.get("success_count", 0),
            failed=update.get("failure_count", 0),
            group=f"{update.get('processed_groups', 0)}/{update.get('total_groups', 0)}",
            eta=update.get("time_remaining", ""),
            refresh=False
        )

        status = update.get("status")
        if status and status != self.last_status:
            self.last_status = status
            if self.log_status:
                logging.debug(status)
        if update.get("is_completed"):
            self.close()

    def close(self) -> None:
        if self.bar is not None:
            self.bar.close()
            self.bar = None
