"""
Abstract source interface and the row/record format adapter
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, List, Optional, TypeVar
import enum
import json
import logging

import pandas as pd

from streamer.schema_provider import RowBasedSchemaProvider, SchemaProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SourceFormat(str, enum.Enum):
    """Shape of the data a source hands out"""
    ROW = "row"        # pandas.DataFrame
    RECORD = "record"  # list of dicts


class InputBatch(Generic[T]):
    """
    One checkpoint-delimited window of source data.

    batch is None when the source had nothing new. checkpoint_for_next_batch
    marks the end of this window and is what the next round resumes from.
    """

    def __init__(
        self,
        batch: Optional[T],
        checkpoint_for_next_batch: Optional[str],
        schema_provider: Optional[SchemaProvider] = None
    ):
        self.batch = batch
        self.checkpoint_for_next_batch = checkpoint_for_next_batch
        self.schema_provider = schema_provider

    def __repr__(self) -> str:
        return (
            f"InputBatch(checkpoint_for_next_batch={self.checkpoint_for_next_batch!r}, "
            f"has_batch={self.batch is not None})"
        )


class Source(ABC):
    """
    Base class for all sources.

    Responsibilities:
    - Pull only data newer than the given checkpoint
    - Bound the amount pulled by source_limit
    - Report the checkpoint marking the end of what was pulled
    """

    source_format: SourceFormat = SourceFormat.RECORD

    def __init__(
        self,
        source_name: str,
        props: Optional[Dict[str, Any]] = None,
        schema_provider: Optional[SchemaProvider] = None
    ):
        self.source_name = source_name
        self.props = props or {}
        self.schema_provider = schema_provider

    @abstractmethod
    async def fetch_new_data(self, last_checkpoint: Optional[str], source_limit: int) -> InputBatch:
        """
        Fetch data from the source.

        Args:
            last_checkpoint: Checkpoint to resume from, None for the source default
            source_limit: Upper bound on the amount of data to pull

        Returns:
            InputBatch holding a DataFrame (ROW sources) or a list of dicts
            (RECORD sources)
        """
        pass


def frame_to_records(frame: pd.DataFrame) -> List[Dict[str, Any]]:
    """Convert rows to JSON-safe dicts (timestamps as ISO strings, NaN as None)"""
    if frame.empty:
        return []
    return json.loads(frame.to_json(orient="records", date_format="iso"))


class SourceFormatAdapter:
    """
    Hand out a source's data in whichever shape the round needs.

    Transforming rounds read rows, all others read records.
    """

    def __init__(self, source: Source):
        self.source = source

    async def fetch_new_data_in_row_format(
        self,
        last_checkpoint: Optional[str],
        source_limit: int
    ) -> InputBatch[pd.DataFrame]:
        input_batch = await self.source.fetch_new_data(last_checkpoint, source_limit)
        if self.source.source_format == SourceFormat.ROW:
            return input_batch

        frame = None
        if input_batch.batch is not None:
            frame = pd.DataFrame.from_records(input_batch.batch)
        return InputBatch(frame, input_batch.checkpoint_for_next_batch, input_batch.schema_provider)

    async def fetch_new_data_in_record_format(
        self,
        last_checkpoint: Optional[str],
        source_limit: int
    ) -> InputBatch[List[Dict[str, Any]]]:
        input_batch = await self.source.fetch_new_data(last_checkpoint, source_limit)
        if self.source.source_format == SourceFormat.RECORD:
            schema_provider = input_batch.schema_provider
            if schema_provider is None and input_batch.batch:
                schema_provider = RowBasedSchemaProvider(pd.DataFrame.from_records(input_batch.batch))
            return InputBatch(input_batch.batch, input_batch.checkpoint_for_next_batch, schema_provider)

        records = None
        schema_provider = input_batch.schema_provider
        if input_batch.batch is not None:
            records = frame_to_records(input_batch.batch)
            if schema_provider is None:
                schema_provider = RowBasedSchemaProvider(input_batch.batch)
        return InputBatch(records, input_batch.checkpoint_for_next_batch, schema_provider)
