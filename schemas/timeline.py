"""
Pydantic schemas for a table's commit timeline
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any

from models.base import TableType, InstantAction, InstantState


class Instant(BaseModel):
    """A single timestamped transaction on the timeline"""
    instant_time: str
    action: InstantAction
    state: InstantState = InstantState.COMPLETED

    class Config:
        frozen = True

    def __str__(self) -> str:
        return f"[{self.instant_time}__{self.action.value}__{self.state.value.upper()}]"


class CommitMetadata(BaseModel):
    """Metadata recorded with a completed commit"""
    extra_metadata: Dict[str, str] = Field(default_factory=dict)
    total_records: int = 0
    total_error_records: int = 0

    def get_metadata(self, key: str) -> Optional[str]:
        return self.extra_metadata.get(key)

    def to_json_string(self) -> str:
        return self.model_dump_json()


class Timeline(BaseModel):
    """
    Completed commit instants of a table, oldest first.

    Only completed instants of the table type's commit action are present.
    """
    instants: List[Instant] = Field(default_factory=list)
    details: Dict[str, CommitMetadata] = Field(default_factory=dict)

    def last_instant(self) -> Optional[Instant]:
        return self.instants[-1] if self.instants else None

    def get_commit_metadata(self, instant: Instant) -> CommitMetadata:
        return self.details.get(instant.instant_time, CommitMetadata())

    def is_empty(self) -> bool:
        return not self.instants

    def count(self) -> int:
        return len(self.instants)


class TableMetadata(BaseModel):
    """What the table store reports about an existing table"""
    table_name: str
    table_type: TableType
    timeline: Timeline = Field(default_factory=Timeline)


class TableDescription(BaseModel):
    """Schema and partition layout published to the catalog"""
    table_name: str
    base_path: str
    table_schema: Optional[Dict[str, Any]] = None
    partitions: List[str] = Field(default_factory=list)
