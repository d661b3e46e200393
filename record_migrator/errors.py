"""Error kinds and exceptions raised by the migration engine."""

from enum import Enum
from typing import Any, Optional, Sequence


class ErrorKind(str, Enum):
    """Tags attached to warnings, plan issues and per-record result entries."""
    RELATED_RECORD_FETCH_FAILED = "RelatedRecordFetchFailed"
    EXTERNAL_KEY_NOT_FOUND = "ExternalKeyNotFound"
    MISSING_REQUIRED_DEPENDENCY = "MissingRequiredDependency"
    CYCLIC_DEPENDENCY = "CyclicDependencyError"
    RECORD_CREATE_FAILED = "RecordCreateFailed"
    RECORD_UPDATE_FAILED = "RecordUpdateFailed"
    UNRESOLVED_PARENT = "UnresolvedParent"


class MigrationError(Exception):
    """Base class for migration errors."""


class RecordFetchError(MigrationError):
    """A related record could not be fetched from the source org."""

    def __init__(self, object_type: str, record_id: str, reason: str):
        self.object_type = object_type
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"Could not fetch {object_type} {record_id}: {reason}")


class CyclicDependencyError(MigrationError):
    """Object types reference each other in a cycle that deferred updates cannot break."""

    def __init__(self, object_types: Sequence[str]):
        self.object_types = list(object_types)
        super().__init__(
            "Cyclic dependency between object types: " + " -> ".join(self.object_types)
        )


class TargetStoreUnavailableError(MigrationError):
    """
    The target org cannot be reached at all.

    This is the only failure that stops a run; ordinary per-record
    failures are reported in the migration result instead.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        # Set by the execution engine: what was created before the outage
        self.partial_result: Optional[Any] = None
        super().__init__(message)


class PlanNotFoundError(MigrationError):
    """No analyzed plan with the given id exists in this session."""
