"""
Pydantic schemas describing the structure of records written to a table
"""

from pydantic import BaseModel, Field
from typing import List, Optional


class SchemaField(BaseModel):
    """A single column of a table schema"""
    name: str = Field(..., min_length=1)
    type: str = "string"
    nullable: bool = True


class TableSchema(BaseModel):
    """
    Record schema of a source or target table.

    Stored verbatim on the table shell and published to the catalog.
    """
    name: str = "record"
    fields: List[SchemaField] = Field(default_factory=list)

    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    def required_fields(self) -> List[str]:
        return [f.name for f in self.fields if not f.nullable]

    def get_field(self, name: str) -> Optional[SchemaField]:
        for field in self.fields:
            if field.name == name:
                return field
        return None
