"""Record models for migration data."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

# Fields that identify a record in a human-readable way, in order of preference
DISPLAY_NAME_FIELDS = ("Name", "DeveloperName", "Subject", "Title", "CaseNumber", "LastName")


def is_blank(value: Any) -> bool:
    """A relationship value that carries no reference."""
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


@dataclass(frozen=True)
class SourceRecord:
    """A record fetched from the source org."""
    object_type: str
    source_id: str
    fields: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    @property
    def key(self) -> Tuple[str, str]:
        return (self.object_type, self.source_id)

    @property
    def display_name(self) -> Optional[str]:
        for name in DISPLAY_NAME_FIELDS:
            value = self.fields.get(name)
            if not is_blank(value) and not isinstance(value, dict):
                return str(value)
        return None

    @property
    def reference(self) -> str:
        """Human-identifiable reference used in error messages."""
        name = self.display_name
        if name:
            return f"{self.object_type} '{name}' ({self.source_id})"
        return f"{self.object_type} ({self.source_id})"

    def get_field(self, path: str, default: Any = None) -> Any:
        """Get a field value by dot-notation path (e.g., 'Account.Name')."""
        value: Any = self.fields
        for part in path.split("."):
            if isinstance(value, Mapping):
                value = value.get(part)
            else:
                return default
            if value is None:
                return default
        return value

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "object_type": self.object_type,
            "source_id": self.source_id,
            "fields": dict(self.fields),
        }

    @classmethod
    def from_api_record(cls, data: Dict[str, Any], object_type: Optional[str] = None) -> "SourceRecord":
        """
        Create from a record as returned by the org's REST API.

        The object type comes from the record's ``attributes.type`` unless
        given explicitly.
        """
        attributes = data.get("attributes") or {}
        resolved_type = object_type or attributes.get("type")
        if not resolved_type:
            raise ValueError("Record has no object type (missing attributes.type)")
        record_id = data.get("Id") or data.get("id")
        if not record_id:
            raise ValueError(f"{resolved_type} record has no Id")
        return cls(object_type=resolved_type, source_id=str(record_id), fields=data)


@dataclass(frozen=True)
class DependencyEdge:
    """
    A child -> parent reference: the child cannot be created before the
    parent's target identifier is known.

    Deferred edges connect two records of the same object type; they take
    no part in ordering and are set by an update after creation.
    """
    child_type: str
    child_id: str
    field_name: str
    parent_type: str
    parent_id: str
    deferred: bool = False

    @property
    def parent_key(self) -> Tuple[str, str]:
        return (self.parent_type, self.parent_id)

    @property
    def child_key(self) -> Tuple[str, str]:
        return (self.child_type, self.child_id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "child_type": self.child_type,
            "child_id": self.child_id,
            "field_name": self.field_name,
            "parent_type": self.parent_type,
            "parent_id": self.parent_id,
            "deferred": self.deferred,
        }


@dataclass(frozen=True)
class ExternalKeyReference:
    """
    A match-by-key relationship value, resolved against the target org at execution.

    Without an explicit key field the value is the source id, tried as a
    target id first; the fallback key (e.g. a record type's DeveloperName,
    scoped by SobjectType) is tried next when one is known.
    """
    field_name: str
    target_type: str
    key_field: Optional[str]
    value: str
    is_required: bool = False
    fallback_key_field: Optional[str] = None
    fallback_value: Optional[str] = None
    fallback_filters: Tuple[Tuple[str, str], ...] = ()

    @property
    def description(self) -> str:
        if self.key_field:
            return f"{self.target_type}.{self.key_field} = '{self.value}'"
        text = f"{self.target_type}.Id = '{self.value}'"
        if self.fallback_key_field and self.fallback_value is not None:
            text += f" or {self.target_type}.{self.fallback_key_field} = '{self.fallback_value}'"
        return text

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "field_name": self.field_name,
            "target_type": self.target_type,
            "key_field": self.key_field,
            "value": self.value,
            "is_required": self.is_required,
            "fallback_key_field": self.fallback_key_field,
            "fallback_value": self.fallback_value,
            "fallback_filters": dict(self.fallback_filters),
        }


@dataclass(frozen=True)
class DroppedReference:
    """An included relationship downgraded to skip for one record."""
    field_name: str
    parent_type: Optional[str]
    parent_id: str
    is_required: bool
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "field_name": self.field_name,
            "parent_type": self.parent_type,
            "parent_id": self.parent_id,
            "is_required": self.is_required,
            "reason": self.reason,
        }


@dataclass
class RecordNode:
    """
    One source record in the working set of an analysis, together with
    the relationships that decide how its payload is built.
    """
    record: SourceRecord
    is_root: bool = False
    edges: List[DependencyEdge] = field(default_factory=list)
    deferred_edges: List[DependencyEdge] = field(default_factory=list)
    key_references: List[ExternalKeyReference] = field(default_factory=list)
    dropped_references: List[DroppedReference] = field(default_factory=list)
    omitted_fields: Set[str] = field(default_factory=set)
    warnings: List[str] = field(default_factory=list)

    @property
    def key(self) -> Tuple[str, str]:
        return self.record.key

    @property
    def object_type(self) -> str:
        return self.record.object_type

    @property
    def source_id(self) -> str:
        return self.record.source_id

    def add_warning(self, kind: str, message: str) -> None:
        self.warnings.append(f"[{kind}] {self.record.reference}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "object_type": self.object_type,
            "source_id": self.source_id,
            "reference": self.record.reference,
            "is_root": self.is_root,
            "edges": [e.to_dict() for e in self.edges],
            "deferred_edges": [e.to_dict() for e in self.deferred_edges],
            "key_references": [r.to_dict() for r in self.key_references],
            "dropped_references": [r.to_dict() for r in self.dropped_references],
            "omitted_fields": sorted(self.omitted_fields),
            "warnings": self.warnings,
        }


@dataclass
class RelationshipGraph:
    """Records to create, grouped by object type, and the references between them."""
    nodes_by_type: Dict[str, Dict[str, RecordNode]] = field(default_factory=dict)

    def get(self, object_type: str, source_id: str) -> Optional[RecordNode]:
        return self.nodes_by_type.get(object_type, {}).get(source_id)

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return self.get(*key) is not None

    def add(self, node: RecordNode) -> RecordNode:
        """Add a node unless one already exists for its key; return the stored node."""
        existing = self.get(*node.key)
        if existing is not None:
            return existing
        self.nodes_by_type.setdefault(node.object_type, {})[node.source_id] = node
        return node

    def nodes(self) -> List[RecordNode]:
        return [node for by_id in self.nodes_by_type.values() for node in by_id.values()]

    @property
    def edges(self) -> Set[DependencyEdge]:
        return {edge for node in self.nodes() for edge in node.edges}

    @property
    def deferred_edges(self) -> Set[DependencyEdge]:
        return {edge for node in self.nodes() for edge in node.deferred_edges}

    @property
    def total_records(self) -> int:
        return sum(len(by_id) for by_id in self.nodes_by_type.values())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "nodes_by_type": {
                object_type: [node.to_dict() for node in by_id.values()]
                for object_type, by_id in sorted(self.nodes_by_type.items())
            },
            "edges": [e.to_dict() for e in sorted(self.edges, key=_edge_sort_key)],
            "deferred_edges": [e.to_dict() for e in sorted(self.deferred_edges, key=_edge_sort_key)],
        }


def _edge_sort_key(edge: DependencyEdge) -> Tuple[str, str, str]:
    return (edge.child_type, edge.child_id, edge.field_name)
