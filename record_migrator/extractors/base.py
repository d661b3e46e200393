"""Base interface for reading from the source org."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
import logging

from ..models.record import SourceRecord

logger = logging.getLogger(__name__)


class BaseSourceOrg(ABC):
    """
    Base class for source org access.

    A source org answers two questions for the engine: what an object
    type looks like (describe metadata) and what a single record
    contains (fetch by id).
    """

    @abstractmethod
    def describe(self, object_type: str) -> Dict[str, Any]:
        """
        Describe an object type.

        Returns:
            Describe metadata with at least a "fields" list; each field
            carries name, label, type, referenceTo, nillable and createable.
        """
        pass

    @abstractmethod
    def fetch_by_id(self, object_type: str, record_id: str) -> Optional[SourceRecord]:
        """
        Fetch one record.

        Returns:
            The record, or None if no record with that id exists

        Raises:
            RecordFetchError: if the fetch itself failed
        """
        pass

    def fetch_many(self, object_type: str, record_ids: List[str]) -> List[SourceRecord]:
        """Fetch several records of one type, skipping ids that do not exist."""
        records = []
        for record_id in record_ids:
            record = self.fetch_by_id(object_type, record_id)
            if record is not None:
                records.append(record)
        return records
