"""
CSV directory source with modification-time checkpoints
"""

import pandas as pd
from typing import List, Optional, Tuple
from pathlib import Path
from streamer.sources.base import InputBatch, Source, SourceFormat
from core.exceptions import SourceReadError
import logging

logger = logging.getLogger(__name__)


class CsvDirectorySource(Source):
    """
    Read new CSV files from a directory.

    Supports:
    - Incremental loading by file modification time (checkpoint = max
      mtime in milliseconds of the files read)
    - source_limit as a byte budget per round
    - Header normalization
    """

    source_format = SourceFormat.ROW

    def __init__(
        self,
        source_name: str,
        directory: str,
        pattern: str = "*.csv",
        props=None,
        schema_provider=None
    ):
        super().__init__(source_name=source_name, props=props, schema_provider=schema_provider)
        self.directory = Path(directory)
        self.pattern = pattern

    def _eligible_files(self, last_checkpoint: Optional[str]) -> List[Tuple[int, Path, int]]:
        """(mtime_ms, path, size) of files newer than the checkpoint, oldest first"""
        threshold = int(last_checkpoint) if last_checkpoint else -1
        files = []
        for path in self.directory.glob(self.pattern):
            if not path.is_file():
                continue
            stat = path.stat()
            mtime_ms = int(stat.st_mtime * 1000)
            if mtime_ms > threshold:
                files.append((mtime_ms, path, stat.st_size))
        return sorted(files, key=lambda f: (f[0], f[1].name))

    @staticmethod
    def _select_within_budget(eligible: List[Tuple[int, Path, int]], source_limit: int) -> List[Tuple[int, Path, int]]:
        """
        Oldest files that fit the byte budget, always at least one.

        The next round only reads files strictly newer than the checkpoint,
        so files sharing an mtime are taken or left together. When the oldest
        mtime group alone exceeds the budget, the whole group is read.
        """
        selected = []
        total_bytes = 0
        for entry in eligible:
            if selected and total_bytes + entry[2] > source_limit:
                break
            selected.append(entry)
            total_bytes += entry[2]

        if len(selected) == len(eligible):
            return selected

        boundary = selected[-1][0]
        if eligible[len(selected)][0] != boundary:
            return selected

        older = [entry for entry in selected if entry[0] < boundary]
        if older:
            return older

        logger.warning(f"Files modified at {boundary} exceed the byte budget of {source_limit}, reading them together")
        return [entry for entry in eligible if entry[0] == boundary]

    async def fetch_new_data(self, last_checkpoint: Optional[str], source_limit: int) -> InputBatch:
        if not self.directory.exists():
            logger.warning(f"CSV directory not found: {self.directory}")
            return InputBatch(None, last_checkpoint, self.schema_provider)

        try:
            eligible = self._eligible_files(last_checkpoint)
        except ValueError as e:
            raise SourceReadError(
                "Checkpoint is not a modification time",
                context={"source_name": self.source_name, "checkpoint": last_checkpoint},
                original_exception=e
            )

        selected = self._select_within_budget(eligible, source_limit)
        total_bytes = sum(size for _, _, size in selected)

        if not selected:
            logger.info(f"No new files in {self.directory}")
            return InputBatch(None, last_checkpoint, self.schema_provider)

        logger.info(f"Reading {len(selected)} CSV files ({total_bytes} bytes) from {self.directory}")

        frames = []
        for _, path, _ in selected:
            try:
                frames.append(pd.read_csv(path))
            except pd.errors.EmptyDataError:
                logger.warning(f"Skipping empty CSV file {path}")
            except (OSError, pd.errors.ParserError) as e:
                raise SourceReadError(
                    f"Failed to read CSV file {path}",
                    context={"source_name": self.source_name, "file_path": str(path)},
                    original_exception=e
                )

        frame = pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()

        # Normalize column names (strip whitespace, lowercase)
        frame.columns = [str(c).strip().lower().replace(" ", "_") for c in frame.columns]

        checkpoint = str(max(mtime_ms for mtime_ms, _, _ in selected))
        logger.info(f"Read {len(frame)} rows from CSV, next checkpoint {checkpoint}")
        return InputBatch(frame, checkpoint, self.schema_provider)
