"""Execution results: the remapping table and per-object outcomes."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple
import threading
import uuid

from .migration import MigrationStatus
from ..errors import ErrorKind


class RemappingTable:
    """
    Source -> target identifier mapping for one execution run.

    Written by the stage currently executing, read by the stages after it.
    """

    def __init__(self) -> None:
        self._ids: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def set(self, object_type: str, source_id: str, target_id: str) -> None:
        with self._lock:
            self._ids[(object_type, source_id)] = target_id

    def get(self, object_type: str, source_id: str) -> Optional[str]:
        with self._lock:
            return self._ids.get((object_type, source_id))

    def __contains__(self, key: Tuple[str, str]) -> bool:
        with self._lock:
            return key in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def items(self) -> Iterator[Tuple[Tuple[str, str], str]]:
        with self._lock:
            return iter(list(self._ids.items()))

    def to_dict(self) -> Dict[str, Dict[str, str]]:
        """Convert to {object_type: {source_id: target_id}}."""
        result: Dict[str, Dict[str, str]] = {}
        for (object_type, source_id), target_id in self.items():
            result.setdefault(object_type, {})[source_id] = target_id
        return result


@dataclass
class RecordError:
    """A per-record problem reported in the migration result."""
    kind: ErrorKind
    reference: str  # Human-identifiable source record, e.g. "Account 'Acme' (001...)"
    message: str
    source_id: Optional[str] = None
    field_name: Optional[str] = None

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.reference}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "kind": self.kind.value,
            "reference": self.reference,
            "message": self.message,
            "source_id": self.source_id,
            "field_name": self.field_name,
        }


@dataclass
class ObjectResult:
    """
    Outcome counters for one object type.

    A record that was not attempted because a parent it includes was not
    created counts as failed, with an UnresolvedParent error. Deferred
    self-reference updates are counted separately in updated/update_failed.
    """
    object_type: str
    inserted: int = 0
    failed: int = 0
    updated: int = 0
    update_failed: int = 0
    errors: List[RecordError] = field(default_factory=list)

    @property
    def error_messages(self) -> List[str]:
        return [str(e) for e in self.errors]

    def errors_of(self, kind: ErrorKind) -> List[RecordError]:
        return [e for e in self.errors if e.kind == kind]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "object_type": self.object_type,
            "inserted": self.inserted,
            "failed": self.failed,
            "updated": self.updated,
            "update_failed": self.update_failed,
            "error_messages": self.error_messages,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class MigrationResult:
    """Result of executing one migration plan against one target org."""
    plan_id: str
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: MigrationStatus = MigrationStatus.PENDING
    dry_run: bool = False
    objects: Dict[str, ObjectResult] = field(default_factory=dict)
    completed_stages: List[str] = field(default_factory=list)
    skipped_stages: List[str] = field(default_factory=list)
    remapping: RemappingTable = field(default_factory=RemappingTable)
    fatal_error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def for_object(self, object_type: str) -> ObjectResult:
        with self._lock:
            if object_type not in self.objects:
                self.objects[object_type] = ObjectResult(object_type=object_type)
            return self.objects[object_type]

    def object_results(self) -> List[ObjectResult]:
        """Per-object results, safe to read while the run is still executing."""
        with self._lock:
            return list(self.objects.values())

    @property
    def inserted_records(self) -> int:
        return sum(o.inserted for o in self.object_results())

    @property
    def failed_records(self) -> int:
        return sum(o.failed for o in self.object_results())

    @property
    def updated_records(self) -> int:
        return sum(o.updated for o in self.object_results())

    @property
    def failed_updates(self) -> int:
        return sum(o.update_failed for o in self.object_results())

    @property
    def success(self) -> bool:
        return (
            self.status == MigrationStatus.COMPLETED
            and self.failed_records == 0
            and self.failed_updates == 0
        )

    @property
    def errors(self) -> List[RecordError]:
        return [e for o in self.object_results() for e in o.errors]

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "plan_id": self.plan_id,
            "run_id": self.run_id,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "success": self.success,
            "inserted_records": self.inserted_records,
            "failed_records": self.failed_records,
            "updated_records": self.updated_records,
            "failed_updates": self.failed_updates,
            "objects": {o.object_type: o.to_dict() for o in self.object_results()},
            "completed_stages": self.completed_stages,
            "skipped_stages": self.skipped_stages,
            "id_mapping": self.remapping.to_dict(),
            "fatal_error": self.fatal_error,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }
