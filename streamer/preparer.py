"""
Turn raw records into prepared records and collapse in-batch duplicates
"""

from typing import Any, Dict, Iterable, List
import logging

from core.exceptions import RecordPreparationError
from schemas.records import PreparedRecord, RecordKey
from streamer.keygen import KeyGenerator, get_nested_field_value

logger = logging.getLogger(__name__)


class RecordPreparer:
    """
    Attach a key and an ordering value to every raw record.

    Responsibilities:
    - Key extraction through the configured KeyGenerator
    - Ordering value lookup (dotted field path, must be present)
    - Payload construction
    """

    def __init__(self, key_generator: KeyGenerator, ordering_field: str):
        self.key_generator = key_generator
        self.ordering_field = ordering_field

    def prepare(self, record: Dict[str, Any]) -> PreparedRecord:
        key = self.key_generator.get_key(record)
        try:
            ordering_value = get_nested_field_value(record, self.ordering_field)
        except KeyError as e:
            raise RecordPreparationError(
                f"Ordering field '{self.ordering_field}' not found in record",
                context={
                    "ordering_field": self.ordering_field,
                    "record_key": key.record_key
                },
                original_exception=e
            )
        return PreparedRecord(key=key, ordering_value=ordering_value, payload=record)

    def prepare_all(self, records: Iterable[Dict[str, Any]]) -> List[PreparedRecord]:
        prepared = [self.prepare(r) for r in records]
        logger.debug(f"Prepared {len(prepared)} records")
        return prepared


class DedupFilter:
    """
    Keep at most one record per key within a batch.

    The record with the greatest ordering value wins; on equal ordering
    values the later record in the batch wins. Output preserves the order in
    which keys were first seen.
    """

    def filter(self, records: List[PreparedRecord]) -> List[PreparedRecord]:
        winners: Dict[RecordKey, PreparedRecord] = {}
        for record in records:
            current = winners.get(record.key)
            if current is None or not self._precedes(record, current):
                winners[record.key] = record

        dropped = len(records) - len(winners)
        if dropped:
            logger.info(f"Dropped {dropped} duplicate records, {len(winners)} remain")
        return list(winners.values())

    @staticmethod
    def _precedes(candidate: PreparedRecord, current: PreparedRecord) -> bool:
        """True when candidate loses against the record already kept"""
        if candidate.ordering_value is None:
            return current.ordering_value is not None
        if current.ordering_value is None:
            return False
        try:
            return candidate.ordering_value < current.ordering_value
        except TypeError as e:
            raise RecordPreparationError(
                "Ordering values of duplicate records are not comparable",
                context={
                    "record_key": candidate.record_key,
                    "values": [repr(current.ordering_value), repr(candidate.ordering_value)]
                },
                original_exception=e
            )
