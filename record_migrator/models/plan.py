"""Migration plan models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union
from enum import Enum
import uuid

from .record import RecordNode
from ..errors import ErrorKind


class RemappingKind(str, Enum):
    """How a relationship value is rewritten at execution."""
    INCLUDE = "include"  # Parent created earlier in the run
    DEFERRED = "deferred"  # Same-type parent, set by an update after creation
    EXTERNAL_KEY = "external_key"  # Existing target record matched by key


@dataclass(frozen=True)
class PendingRemapping:
    """A relationship field the engine will rewrite for one record."""
    object_type: str
    source_id: str
    field_name: str
    kind: RemappingKind
    parent_type: str
    parent_value: str  # Source id, or the key value for external-key lookups
    key_field: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "object_type": self.object_type,
            "source_id": self.source_id,
            "field_name": self.field_name,
            "kind": self.kind.value,
            "parent_type": self.parent_type,
            "parent_value": self.parent_value,
            "key_field": self.key_field,
        }


@dataclass(frozen=True)
class PlanIssue:
    """A problem found during compilation that the user should review before executing."""
    kind: ErrorKind
    object_type: str
    source_id: str
    field_name: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "kind": self.kind.value,
            "object_type": self.object_type,
            "source_id": self.source_id,
            "field_name": self.field_name,
            "message": self.message,
        }


@dataclass(frozen=True)
class MigrationPlan:
    """
    Stage-based insertion order for one analysis.

    Immutable once compiled; re-analyzing produces a new plan.
    """
    object_order: Tuple[str, ...]
    records_by_type: Dict[str, Tuple[RecordNode, ...]]
    pending_remappings: Tuple[PendingRemapping, ...] = ()
    issues: Tuple[PlanIssue, ...] = ()
    warnings: Tuple[str, ...] = ()
    plan_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def total_records(self) -> int:
        return sum(len(nodes) for nodes in self.records_by_type.values())

    @property
    def object_counts(self) -> Dict[str, int]:
        return {object_type: len(self.records_by_type.get(object_type, ())) for object_type in self.object_order}

    @property
    def has_deferred_updates(self) -> bool:
        return any(r.kind == RemappingKind.DEFERRED for r in self.pending_remappings)

    @property
    def missing_required_dependencies(self) -> List[PlanIssue]:
        return [i for i in self.issues if i.kind == ErrorKind.MISSING_REQUIRED_DEPENDENCY]

    def nodes(self) -> List[RecordNode]:
        """All nodes in stage order."""
        return [node for object_type in self.object_order for node in self.records_by_type.get(object_type, ())]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation (the plan review)."""
        return {
            "plan_id": self.plan_id,
            "created_at": self.created_at.isoformat(),
            "object_order": list(self.object_order),
            "object_counts": self.object_counts,
            "total_records": self.total_records,
            "records_by_type": {
                object_type: [node.to_dict() for node in self.records_by_type.get(object_type, ())]
                for object_type in self.object_order
            },
            "pending_remappings": [r.to_dict() for r in self.pending_remappings],
            "issues": [i.to_dict() for i in self.issues],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class Compiled:
    """Successful compilation."""
    plan: MigrationPlan

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class CyclicDependency:
    """Compilation rejected: the listed object types depend on each other in a cycle."""
    object_types: Tuple[str, ...]

    @property
    def ok(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return "Cyclic dependency between object types: " + " -> ".join(self.object_types)


CompileResult = Union[Compiled, CyclicDependency]
