# -*- coding: utf-8 -*-

import asyncio
import logging
import signal
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Literal, Optional

from ..utils.datasource import read_records
from ..utils.misc import assert_required_path, ensure_output_path, mask_path
from .config import BatchConfig
from .export import export_results
from .followup import FollowUpHook
from .grouping import assign_original_indices
from .models import RunSummary
from .orchestrator import BatchOrchestrator
from .progress import TqdmProgressSink
from .summary import save_run_summary
from .transport import TokenProvider, TransportAdapter

RESULTS_FOLDER = "results"


class SAPBatchManager:
    """
    A class to manage record uploads to SAP create services for one profile.

    Args:
        transport (TransportAdapter): Adapter performing the remote calls.
        base_folder (str | Path): Folder receiving the run results.
        source_data_path (str | Path, optional): Records file (JSONL, JSON, CSV, Parquet).
        config (BatchConfig, optional): Grouping, retry and throttle options.
        canonical_fields (Iterable[str]): Field names records are normalized to.
        field_aliases (dict, optional): Extra source name -> field name mappings.
        token_provider (TokenProvider, optional): Session token source.
        follow_up (FollowUpHook, optional): Post-processing of created records.
        profile (str, optional): Profile name, written in the summaries.
        show_progress (bool): Draw a tqdm progress bar while uploading.
    """

    def __init__(
        self,
        transport: TransportAdapter,
        base_folder: str | Path,
        source_data_path: str | Path | None = None,
        config: Optional[BatchConfig] = None,
        *,
        canonical_fields: Iterable[str] = (),
        field_aliases: Optional[Dict[str, str]] = None,
        token_provider: Optional[TokenProvider] = None,
        follow_up: Optional[FollowUpHook] = None,
        profile: Optional[str] = None,
        show_progress: bool = True
    ):
        self.transport = transport
        self.base_folder = Path(base_folder).resolve()
        self.source_data_path = Path(source_data_path).resolve() if source_data_path else None
        self.config = config or BatchConfig()
        self.canonical_fields = list(canonical_fields)
        self.field_aliases = field_aliases or {}
        self.token_provider = token_provider
        self.follow_up = follow_up
        self.profile = profile
        self.show_progress = show_progress

        self._orchestrator: Optional[BatchOrchestrator] = None
        self.last_summary: Optional[RunSummary] = None

        if self.source_data_path is not None:
            assert_required_path(self.source_data_path, description="Source data path")
        ensure_output_path(str(self.base_folder), description="Base folder")

    def load_records(self) -> List[dict]:
        """Read the source data file and normalize its field names."""
        if self.source_data_path is None:
            raise ValueError("No source data path configured.")
        logging.info(f"Reading records from {mask_path(self.source_data_path)}")
        records = read_records(self.source_data_path, self.canonical_fields, self.field_aliases)
        logging.info(f"Read {len(records)} records.")
        return records

    def preview_groups(self, records: Optional[List[dict]] = None) -> List[dict]:
        """
        Show how records would be grouped, without submitting anything.

        Returns:
            list: One dict per group with its position, key, size and the
            original indices of its records.
        """
        if records is None:
            records = self.load_records()
        groups = self.config.grouping().partition(assign_original_indices(records))
        return [
            {
                "group": group.index + 1,
                "key": group.key,
                "records": len(group),
                "original_indices": list(group.original_indices),
            }
            for group in groups
        ]

    async def run_async(
            self,
            records: Optional[List[dict]] = None,
            on_progress: Optional[Callable[[dict], None]] = None
        ) -> RunSummary:
        """
        Upload `records` (or the source data file) and return the run summary.

        The first SIGINT received while uploading cancels the run; the
        partial summary is still returned.
        """
        if records is None:
            records = self.load_records()

        sink = TqdmProgressSink(disable=not self.show_progress)

        def _on_progress(update):
            sink(update)
            if on_progress is not None:
                on_progress(update)

        self._orchestrator = BatchOrchestrator(
            self.transport,
            self.config,
            token_provider=self.token_provider,
            follow_up=self.follow_up,
            on_progress=_on_progress
        )

        loop = asyncio.get_running_loop()
        handles_sigint = self._install_sigint_handler(loop)
        try:
            summary = await self._orchestrator.start(records)
        finally:
            sink.close()
            if handles_sigint:
                loop.remove_signal_handler(signal.SIGINT)

        self.last_summary = summary
        return summary

    def run(self, records: Optional[List[dict]] = None) -> RunSummary:
        """Synchronous wrapper around `run_async`."""
        return asyncio.run(self.run_async(records))

    def cancel(self) -> None:
        """Cancel the running upload, if any."""
        if self._orchestrator is not None:
            self._orchestrator.cancel()

    def _install_sigint_handler(self, loop: asyncio.AbstractEventLoop) -> bool:
        def _handle_sigint():
            logging.warning("Interrupt received. Cancelling upload (press Ctrl-C again to abort)...")
            self.cancel()
            # A second Ctrl-C falls back to KeyboardInterrupt
            loop.remove_signal_handler(signal.SIGINT)

        try:
            loop.add_signal_handler(signal.SIGINT, _handle_sigint)
        except (NotImplementedError, RuntimeError, ValueError):
            # Not supported on this platform or outside the main thread
            return False
        return True

    def save_results(
            self,
            summary: Optional[RunSummary] = None,
            file_type: Literal['csv', 'jsonl', 'parquet'] = 'csv',
            output_dir: str | Path | None = None
        ) -> Path:
        """
        Save the summary text, the summary JSON and the exported records.

        Results go to `<base_folder>/results/<timestamp>/` unless
        `output_dir` is given.

        Returns:
            Path: Folder holding the results.
        """
        summary = summary or self.last_summary
        if summary is None:
            raise ValueError("No run summary to save. Run an upload first.")

        if output_dir is None:
            output_dir = self.base_folder / RESULTS_FOLDER / datetime.now().strftime("%Y%m%d-%H%M%S")
        output_dir = Path(output_dir)
        ensure_output_path(str(output_dir), "Results folder")

        save_run_summary(summary, output_dir / "summary.txt", profile=self.profile, save_dict=True)
        export_results(summary, output_dir, file_type=file_type)
        logging.info(f"Results saved in {mask_path(output_dir)}")
        return output_dir

    def get_results_folders(self) -> List[Path]:
        return get_results_folders(self.base_folder)


def get_results_folders(base_folder: str | Path) -> List[Path]:
    """Results folders of previous runs under `base_folder`, oldest first."""
    results = Path(base_folder) / RESULTS_FOLDER
    if not results.exists():
        return []
    return sorted(p for p in results.iterdir() if p.is_dir() and (p / "summary.txt").exists())
