"""
Record key extraction strategies
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import math

from core.exceptions import KeyGenerationError
from schemas.records import RecordKey

DEFAULT_PARTITION_PATH = "default"
NULL_RECORDKEY_PLACEHOLDER = "__null__"
EMPTY_RECORDKEY_PLACEHOLDER = "__empty__"

_MISSING = object()


def get_nested_field_value(record: Dict[str, Any], field_path: str, return_null_if_not_found: bool = False) -> Any:
    """
    Look up a dotted field path ("a.b.c") in a record.

    Raises:
        KeyError: Field not present and return_null_if_not_found is False
    """
    value: Any = record
    for part in field_path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            if return_null_if_not_found:
                return None
            raise KeyError(f"{part} (from {field_path}) field not found in record. "
                           f"Acceptable fields were: {list(record.keys())}")
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


class KeyGenerator(ABC):
    """Extract a RecordKey from a raw record"""

    def __init__(self, props: Optional[Dict[str, Any]] = None):
        self.props = props or {}

    @abstractmethod
    def get_key(self, record: Dict[str, Any]) -> RecordKey:
        pass

    def _partition_path(self, record: Dict[str, Any], field: Optional[str]) -> str:
        if not field:
            return ""
        value = get_nested_field_value(record, field, return_null_if_not_found=True)
        if value is None or str(value) == "":
            return DEFAULT_PARTITION_PATH
        return str(value)


class SimpleKeyGenerator(KeyGenerator):
    """Single record key field and optional single partition field"""

    def __init__(
        self,
        record_key_field: str = "id",
        partition_path_field: Optional[str] = None,
        props: Optional[Dict[str, Any]] = None
    ):
        super().__init__(props)
        self.record_key_field = record_key_field
        self.partition_path_field = partition_path_field

    def get_key(self, record: Dict[str, Any]) -> RecordKey:
        value = get_nested_field_value(record, self.record_key_field, return_null_if_not_found=True)
        if value is None or str(value) == "":
            raise KeyGenerationError(
                f"Record key field '{self.record_key_field}' cannot be null or empty",
                context={
                    "field_name": self.record_key_field,
                    "key_generator": type(self).__name__
                }
            )
        return RecordKey(
            record_key=str(value),
            partition_path=self._partition_path(record, self.partition_path_field)
        )


class ComplexKeyGenerator(KeyGenerator):
    """
    Composite key over several fields.

    The key is rendered as "field:value,field:value"; partitions are joined
    with "/". Null and empty values use placeholders, but a key whose fields
    are all null or empty is rejected.
    """

    def __init__(
        self,
        record_key_fields: List[str],
        partition_path_fields: Optional[List[str]] = None,
        props: Optional[Dict[str, Any]] = None
    ):
        super().__init__(props)
        if not record_key_fields:
            raise ValueError("ComplexKeyGenerator needs at least one record key field")
        self.record_key_fields = record_key_fields
        self.partition_path_fields = partition_path_fields or []

    def get_key(self, record: Dict[str, Any]) -> RecordKey:
        parts = []
        key_is_null_or_empty = True
        for field in self.record_key_fields:
            value = get_nested_field_value(record, field, return_null_if_not_found=True)
            if value is None:
                parts.append(f"{field}:{NULL_RECORDKEY_PLACEHOLDER}")
            elif str(value) == "":
                parts.append(f"{field}:{EMPTY_RECORDKEY_PLACEHOLDER}")
            else:
                parts.append(f"{field}:{value}")
                key_is_null_or_empty = False

        if key_is_null_or_empty:
            raise KeyGenerationError(
                f"Record key values for fields {self.record_key_fields} cannot all be null or empty",
                context={
                    "field_name": ",".join(self.record_key_fields),
                    "key_generator": type(self).__name__
                }
            )

        partition_path = "/".join(
            self._partition_path(record, field) for field in self.partition_path_fields
        )
        return RecordKey(record_key=",".join(parts), partition_path=partition_path)


class NonPartitionedKeyGenerator(SimpleKeyGenerator):
    """Simple key, every record goes to the same (empty) partition"""

    def __init__(self, record_key_field: str = "id", props: Optional[Dict[str, Any]] = None):
        super().__init__(record_key_field=record_key_field, partition_path_field=None, props=props)


def create_key_generator(
    record_key_field: str,
    partition_path_field: Optional[str] = None,
    props: Optional[Dict[str, Any]] = None
) -> KeyGenerator:
    """Pick a key generator from comma separated field settings"""
    key_fields = [f.strip() for f in record_key_field.split(",") if f.strip()]
    partition_fields = [f.strip() for f in (partition_path_field or "").split(",") if f.strip()]

    if len(key_fields) > 1 or len(partition_fields) > 1:
        return ComplexKeyGenerator(key_fields, partition_fields, props)
    if not partition_fields:
        return NonPartitionedKeyGenerator(key_fields[0], props)
    return SimpleKeyGenerator(key_fields[0], partition_fields[0], props)
