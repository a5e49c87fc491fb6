"""
Schema providers for source and target records
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
import json
import logging

import pandas as pd

from core.exceptions import ConfigurationError
from schemas.table_schema import SchemaField, TableSchema

logger = logging.getLogger(__name__)

_DTYPE_KINDS = {
    "b": "boolean",
    "i": "long",
    "u": "long",
    "f": "double",
    "M": "timestamp",
    "m": "long",
}


class SchemaProvider(ABC):
    """Supplies the schema for reading input and writing the target table"""

    @property
    @abstractmethod
    def source_schema(self) -> TableSchema:
        pass

    @property
    def target_schema(self) -> Optional[TableSchema]:
        return None

    def write_schema(self) -> TableSchema:
        return self.target_schema or self.source_schema


class FixedSchemaProvider(SchemaProvider):
    """Schema given up front"""

    def __init__(self, source_schema: TableSchema, target_schema: Optional[TableSchema] = None):
        self._source_schema = source_schema
        self._target_schema = target_schema

    @property
    def source_schema(self) -> TableSchema:
        return self._source_schema

    @property
    def target_schema(self) -> Optional[TableSchema]:
        return self._target_schema


class FileSchemaProvider(FixedSchemaProvider):
    """
    Schema read from JSON files.

    Each file holds {"name": ..., "fields": [{"name", "type", "nullable"}]}.
    """

    def __init__(self, source_schema_file: str, target_schema_file: Optional[str] = None):
        source = self._load(source_schema_file)
        target = self._load(target_schema_file) if target_schema_file else None
        super().__init__(source, target)

    @staticmethod
    def _load(path: str) -> TableSchema:
        try:
            with open(Path(path), "r", encoding="utf-8") as f:
                return TableSchema.model_validate(json.load(f))
        except (OSError, ValueError) as e:
            raise ConfigurationError(
                f"Unable to read schema file {path}",
                context={"schema_file": path},
                original_exception=e
            )


class RowBasedSchemaProvider(SchemaProvider):
    """Schema derived from the columns and dtypes of a DataFrame"""

    def __init__(self, frame: pd.DataFrame, name: str = "record"):
        self._schema = TableSchema(
            name=name,
            fields=[
                SchemaField(name=str(column), type=_DTYPE_KINDS.get(dtype.kind, "string"), nullable=True)
                for column, dtype in frame.dtypes.items()
            ]
        )

    @property
    def source_schema(self) -> TableSchema:
        return self._schema
