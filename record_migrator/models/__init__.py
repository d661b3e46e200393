"""Data models for the migration application."""

from .relationship import (
    ActionType,
    FieldAction,
    FieldActions,
    RelationshipDescriptor,
)
from .record import (
    SourceRecord,
    DependencyEdge,
    ExternalKeyReference,
    DroppedReference,
    RecordNode,
    RelationshipGraph,
)
from .plan import (
    MigrationPlan,
    PendingRemapping,
    PlanIssue,
    RemappingKind,
    Compiled,
    CyclicDependency,
    CompileResult,
)
from .migration import (
    MigrationConfig,
    MigrationStatus,
    OrgCredentials,
)
from .result import (
    MigrationResult,
    ObjectResult,
    RecordError,
    RemappingTable,
)

__all__ = [
    "ActionType",
    "FieldAction",
    "FieldActions",
    "RelationshipDescriptor",
    "SourceRecord",
    "DependencyEdge",
    "ExternalKeyReference",
    "DroppedReference",
    "RecordNode",
    "RelationshipGraph",
    "MigrationPlan",
    "PendingRemapping",
    "PlanIssue",
    "RemappingKind",
    "Compiled",
    "CyclicDependency",
    "CompileResult",
    "MigrationConfig",
    "MigrationStatus",
    "OrgCredentials",
    "MigrationResult",
    "ObjectResult",
    "RecordError",
    "RemappingTable",
]
