"""Base interface for the target org."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass
class CreateOutcome:
    """Result of creating one record in the target org."""
    target_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.target_id is not None and self.error is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "target_id": self.target_id,
            "success": self.success,
            "error": self.error,
            "error_code": self.error_code,
        }


@dataclass
class UpdateOutcome:
    """Result of updating one record in the target org."""
    success: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {"success": self.success, "error": self.error}


class BaseTargetStore(ABC):
    """
    Base class for target org clients.

    Per-record problems are reported through CreateOutcome/UpdateOutcome.
    An org that cannot be reached at all raises TargetStoreUnavailableError.
    """

    def __init__(self, target_name: str, batch_size: int = 200):
        """
        Initialize the target store.

        Args:
            target_name: Name of the target org, for logs and reports
            batch_size: Maximum records per create call
        """
        self.target_name = target_name
        self.batch_size = batch_size

    @abstractmethod
    def create_many(self, object_type: str, payloads: List[Dict[str, Any]]) -> List[CreateOutcome]:
        """
        Create records of one object type.

        Args:
            object_type: Object type of every payload
            payloads: Field values of the records to create

        Returns:
            One CreateOutcome per payload, in payload order
        """
        pass

    @abstractmethod
    def update_by_id(self, object_type: str, target_id: str, fields: Dict[str, Any]) -> UpdateOutcome:
        """Update fields on an existing target record."""
        pass

    @abstractmethod
    def query_by_field(
        self,
        object_type: str,
        field_name: str,
        value: Any,
        filters: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        """
        Find a target record by field value.

        Args:
            object_type: Object type to search
            field_name: Field to match on
            value: Value to match
            filters: Additional field = value conditions

        Returns:
            The target id, or None if no record matches
        """
        pass

    def validate_connection(self) -> bool:
        """Validate the connection to the target org."""
        return True
