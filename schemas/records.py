"""
Pydantic schemas for records flowing through a sync round
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class RecordKey(BaseModel):
    """Identity of an entity in the target table"""
    record_key: str = Field(..., min_length=1)
    partition_path: str = ""

    class Config:
        frozen = True


class PreparedRecord(BaseModel):
    """
    A raw record converted into the table's native form.

    ordering_value breaks ties between updates to the same key; the larger
    value wins.
    """
    key: RecordKey
    ordering_value: Any = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def record_key(self) -> str:
        return self.key.record_key

    @property
    def partition_path(self) -> str:
        return self.key.partition_path


class WriteStatus(BaseModel):
    """Write result of one partition of records"""
    partition_path: str = ""
    total_records: int = 0
    total_error_records: int = 0
    global_error: Optional[str] = None
    errors: Dict[str, str] = Field(default_factory=dict)  # record_key -> error

    def has_errors(self) -> bool:
        return self.total_error_records > 0 or self.global_error is not None


class WriteOutcome(BaseModel):
    """
    Aggregate result of a physical write.

    Produced by the write client without committing anything.
    """
    statuses: List[WriteStatus] = Field(default_factory=list)

    @property
    def total_records(self) -> int:
        return sum(s.total_records for s in self.statuses)

    @property
    def total_error_records(self) -> int:
        return sum(s.total_error_records for s in self.statuses)

    def has_errors(self) -> bool:
        return self.total_error_records > 0

    def error_statuses(self, limit: Optional[int] = None) -> List[WriteStatus]:
        failed = [s for s in self.statuses if s.has_errors()]
        return failed[:limit] if limit is not None else failed
