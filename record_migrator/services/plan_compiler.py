"""Migration plan compiler: orders object types so references resolve at creation time."""

import heapq
import logging
from typing import Dict, List, Optional, Set

from ..errors import ErrorKind
from ..models.plan import (
    CompileResult,
    Compiled,
    CyclicDependency,
    MigrationPlan,
    PendingRemapping,
    PlanIssue,
    RemappingKind,
)
from ..models.record import RelationshipGraph

logger = logging.getLogger(__name__)


class PlanCompiler:
    """
    Turns a relationship graph into a stage-based insertion order.

    Every object type is one stage. A type is placed after every type it
    references through a non-deferred include edge. Ties are broken by
    type name so the same graph always compiles to the same order.
    """

    def compile(self, graph: RelationshipGraph) -> CompileResult:
        """
        Compile a relationship graph.

        Returns:
            Compiled(plan), or CyclicDependency listing the object types in a cycle
        """
        types = set(graph.nodes_by_type)
        children: Dict[str, Set[str]] = {t: set() for t in types}
        in_degree: Dict[str, int] = {t: 0 for t in types}

        for edge in graph.edges:
            if edge.deferred or edge.parent_type == edge.child_type:
                continue
            if edge.child_type not in children[edge.parent_type]:
                children[edge.parent_type].add(edge.child_type)
                in_degree[edge.child_type] += 1

        ready = [t for t in types if in_degree[t] == 0]
        heapq.heapify(ready)
        order: List[str] = []

        while ready:
            object_type = heapq.heappop(ready)
            order.append(object_type)
            for child in children[object_type]:
                in_degree[child] -= 1
                if in_degree[child] == 0:
                    heapq.heappush(ready, child)

        if len(order) < len(types):
            remaining = {t for t in types if in_degree[t] > 0}
            cycle = self._find_cycle(remaining, children) or sorted(remaining)
            logger.error(f"Cyclic dependency between object types: {' -> '.join(cycle)}")
            return CyclicDependency(object_types=tuple(cycle))

        plan = MigrationPlan(
            object_order=tuple(order),
            records_by_type={t: tuple(graph.nodes_by_type[t].values()) for t in order},
            pending_remappings=tuple(self._pending_remappings(graph, order)),
            issues=tuple(self._issues(graph, order)),
            warnings=tuple(w for t in order for node in graph.nodes_by_type[t].values() for w in node.warnings),
        )

        logger.info(f"Compiled plan {plan.plan_id}: {len(order)} stages, {plan.total_records} records")
        for object_type, count in plan.object_counts.items():
            logger.info(f"  {object_type}: {count}")
        if plan.issues:
            logger.warning(f"{len(plan.issues)} missing required dependencies; review before executing")
        return Compiled(plan=plan)

    def _find_cycle(self, types: Set[str], children: Dict[str, Set[str]]) -> Optional[List[str]]:
        """Depth-first search for one cycle among the types Kahn's algorithm could not place."""
        visiting: List[str] = []
        on_path: Set[str] = set()
        done: Set[str] = set()

        def visit(object_type: str) -> Optional[List[str]]:
            visiting.append(object_type)
            on_path.add(object_type)
            for child in sorted(children[object_type] & types):
                if child in on_path:
                    return visiting[visiting.index(child):] + [child]
                if child not in done:
                    found = visit(child)
                    if found:
                        return found
            visiting.pop()
            on_path.discard(object_type)
            done.add(object_type)
            return None

        for object_type in sorted(types):
            if object_type not in done:
                found = visit(object_type)
                if found:
                    return found
        return None

    def _pending_remappings(self, graph: RelationshipGraph, order: List[str]) -> List[PendingRemapping]:
        remappings = []
        for object_type in order:
            for node in graph.nodes_by_type[object_type].values():
                for edge in node.edges:
                    remappings.append(PendingRemapping(
                        object_type=object_type,
                        source_id=node.source_id,
                        field_name=edge.field_name,
                        kind=RemappingKind.INCLUDE,
                        parent_type=edge.parent_type,
                        parent_value=edge.parent_id,
                    ))
                for edge in node.deferred_edges:
                    remappings.append(PendingRemapping(
                        object_type=object_type,
                        source_id=node.source_id,
                        field_name=edge.field_name,
                        kind=RemappingKind.DEFERRED,
                        parent_type=edge.parent_type,
                        parent_value=edge.parent_id,
                    ))
                for ref in node.key_references:
                    remappings.append(PendingRemapping(
                        object_type=object_type,
                        source_id=node.source_id,
                        field_name=ref.field_name,
                        kind=RemappingKind.EXTERNAL_KEY,
                        parent_type=ref.target_type,
                        parent_value=ref.value,
                        key_field=ref.key_field,
                    ))
        return remappings

    def _issues(self, graph: RelationshipGraph, order: List[str]) -> List[PlanIssue]:
        """Required include relationships whose parent could not be resolved."""
        issues = []
        for object_type in order:
            for node in graph.nodes_by_type[object_type].values():
                for dropped in node.dropped_references:
                    if not dropped.is_required:
                        continue
                    issues.append(PlanIssue(
                        kind=ErrorKind.MISSING_REQUIRED_DEPENDENCY,
                        object_type=object_type,
                        source_id=node.source_id,
                        field_name=dropped.field_name,
                        message=(
                            f"{node.record.reference}: required field {dropped.field_name} "
                            f"has no parent to reference ({dropped.reason})"
                        ),
                    ))
        return issues
