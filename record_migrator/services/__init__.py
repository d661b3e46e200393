"""Service layer for the migration engine."""

from .catalog import RelationshipCatalog
from .key_resolver import ExternalKeyResolver
from .graph_builder import GraphBuilder
from .plan_compiler import PlanCompiler
from .execution import ExecutionEngine

__all__ = [
    "RelationshipCatalog",
    "ExternalKeyResolver",
    "GraphBuilder",
    "PlanCompiler",
    "ExecutionEngine",
]
