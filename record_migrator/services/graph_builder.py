"""Relationship graph builder: discovers the records a migration must carry along."""

import logging
from collections import deque
from typing import Deque, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .catalog import RelationshipCatalog
from ..errors import ErrorKind, RecordFetchError
from ..extractors.base import BaseSourceOrg
from ..models.migration import DEFAULT_KEY_FIELDS, DEFAULT_KEY_SCOPES
from ..models.record import (
    DependencyEdge,
    DroppedReference,
    ExternalKeyReference,
    RecordNode,
    RelationshipGraph,
    SourceRecord,
    is_blank,
)
from ..models.relationship import ActionType, FieldAction, FieldActions, RelationshipDescriptor

logger = logging.getLogger(__name__)

# Keys of an API record that are never part of a create payload
SYSTEM_KEYS = {"Id", "attributes"}

FetchResult = Union[SourceRecord, str]  # The record, or why it could not be fetched


class GraphBuilder:
    """
    Builds the relationship graph for a set of root records.

    Starting from the roots, every relationship field is treated according
    to its configured action:

    - include: the referenced record is fetched (once per analysis) and
      becomes a node, with a dependency edge from the referencing record;
    - match_by_key: the value is recorded for lookup in the target org;
    - skip: the field is left out of the payload.
    """

    def __init__(
        self,
        catalog: RelationshipCatalog,
        source: BaseSourceOrg,
        default_key_fields: Optional[Dict[str, str]] = None,
        default_key_scopes: Optional[Dict[str, Sequence[str]]] = None
    ):
        """
        Initialize the graph builder.

        Args:
            catalog: Relationship metadata for the source org
            source: Source org used to fetch related records
            default_key_fields: Fallback business key per object type
            default_key_scopes: Fields scoping each fallback business key
        """
        self.catalog = catalog
        self.source = source
        self.default_key_fields = DEFAULT_KEY_FIELDS if default_key_fields is None else default_key_fields
        self.default_key_scopes = DEFAULT_KEY_SCOPES if default_key_scopes is None else default_key_scopes

    def build_graph(
        self,
        root_records: Iterable[SourceRecord],
        field_actions: Optional[FieldActions] = None
    ) -> RelationshipGraph:
        """
        Compute every record to create, grouped by object type.

        Args:
            root_records: Records selected by the user
            field_actions: Configured actions; unconfigured fields use the catalog defaults

        Returns:
            RelationshipGraph with one node per (object type, source id)
        """
        field_actions = field_actions or FieldActions()
        graph = RelationshipGraph()
        fetched: Dict[Tuple[str, str], FetchResult] = {}
        queue: Deque[RecordNode] = deque()

        for record in root_records:
            existing = graph.get(*record.key)
            if existing is not None:
                existing.is_root = True
                continue
            queue.append(graph.add(RecordNode(record=record, is_root=True)))
            fetched[record.key] = record

        while queue:
            node = queue.popleft()
            queue.extend(self._expand(node, graph, field_actions, fetched))

        logger.info(
            f"Relationship graph: {graph.total_records} records across "
            f"{len(graph.nodes_by_type)} object types, {len(graph.edges)} dependencies, "
            f"{len(graph.deferred_edges)} deferred self-references"
        )
        return graph

    def _expand(
        self,
        node: RecordNode,
        graph: RelationshipGraph,
        field_actions: FieldActions,
        fetched: Dict[Tuple[str, str], FetchResult]
    ) -> List[RecordNode]:
        """Process one node's relationship fields; return the nodes it discovered."""
        object_type = node.object_type
        fields = node.record.fields
        discovered: List[RecordNode] = []

        createable = self.catalog.createable_fields(object_type)
        for name in fields:
            if name in SYSTEM_KEYS:
                continue
            if name not in createable or name in self.catalog.excluded_fields:
                node.omitted_fields.add(name)

        for descriptor in self.catalog.describe_relationships(object_type):
            name = descriptor.field_name
            if name not in fields:
                continue
            if not descriptor.is_createable or self.catalog.is_excluded(descriptor):
                node.omitted_fields.add(name)
                continue

            value = fields.get(name)
            if is_blank(value):
                # No reference to carry, whatever the action
                node.omitted_fields.add(name)
                continue
            value = str(value)

            generic = field_actions.get(object_type, name) or self.catalog.default_action(descriptor)
            concrete_type = self._concrete_type(descriptor, value, generic)
            if concrete_type is None:
                self._drop(
                    node, descriptor, None, value,
                    f"could not determine which of {', '.join(descriptor.reference_to)} {value} references",
                )
                continue

            action = field_actions.get(object_type, name, concrete_type) or generic
            if action.action == ActionType.SKIP or concrete_type in self.catalog.excluded_objects:
                node.omitted_fields.add(name)
            elif action.action == ActionType.MATCH_BY_KEY:
                self._add_key_reference(node, descriptor, concrete_type, value, action, fetched)
            else:
                parent = self._include(node, descriptor, concrete_type, value, graph, fetched)
                if parent is not None:
                    discovered.append(parent)

        return discovered

    def _concrete_type(
        self,
        descriptor: RelationshipDescriptor,
        value: str,
        action: FieldAction
    ) -> Optional[str]:
        """Resolve which object type a (possibly polymorphic) reference points at."""
        if not descriptor.is_polymorphic:
            return descriptor.reference_to[0]
        by_prefix = self.catalog.object_type_for_id(value, descriptor.reference_to)
        if by_prefix is not None:
            return by_prefix
        # The configured type only decides when id prefixes cannot
        if action.reference_to in descriptor.reference_to and not self.catalog.has_key_prefixes(descriptor.reference_to):
            return action.reference_to
        return None

    def _include(
        self,
        node: RecordNode,
        descriptor: RelationshipDescriptor,
        parent_type: str,
        parent_id: str,
        graph: RelationshipGraph,
        fetched: Dict[Tuple[str, str], FetchResult]
    ) -> Optional[RecordNode]:
        """Add a dependency edge to the referenced record, creating its node if new."""
        discovered = None
        parent = graph.get(parent_type, parent_id)

        if parent is None:
            result = self._fetch(parent_type, parent_id, fetched)
            if isinstance(result, str):
                self._drop(node, descriptor, parent_type, parent_id, result)
                return None
            parent = graph.add(RecordNode(record=result))
            discovered = parent

        edge = DependencyEdge(
            child_type=node.object_type,
            child_id=node.source_id,
            field_name=descriptor.field_name,
            parent_type=parent_type,
            parent_id=parent_id,
            deferred=parent_type == node.object_type,
        )
        if edge.deferred:
            node.deferred_edges.append(edge)
        else:
            node.edges.append(edge)
        return discovered

    def _add_key_reference(
        self,
        node: RecordNode,
        descriptor: RelationshipDescriptor,
        target_type: str,
        source_id: str,
        action: FieldAction,
        fetched: Dict[Tuple[str, str], FetchResult]
    ) -> None:
        """Record a match-by-key reference; the parent never becomes a node."""
        name = descriptor.field_name

        if action.key_field:
            key_value, problem = self._key_value(node, descriptor, target_type, source_id, action.key_field, fetched)
            if key_value is None:
                self._drop(node, descriptor, target_type, source_id, problem)
                return
            node.key_references.append(ExternalKeyReference(
                field_name=name,
                target_type=target_type,
                key_field=action.key_field,
                value=key_value,
                is_required=descriptor.is_required,
            ))
            return

        fallback_field = self.default_key_fields.get(target_type)
        fallback_value = None
        fallback_filters: Tuple[Tuple[str, str], ...] = ()
        if fallback_field:
            result = self._fetch(target_type, source_id, fetched)
            if isinstance(result, SourceRecord):
                raw = result.fields.get(fallback_field)
                fallback_value = None if is_blank(raw) else str(raw)
                fallback_filters = tuple(
                    (scope, str(result.fields[scope]))
                    for scope in self.default_key_scopes.get(target_type, ())
                    if not is_blank(result.fields.get(scope))
                )
            else:
                node.add_warning(
                    ErrorKind.RELATED_RECORD_FETCH_FAILED.value,
                    f"{name}: {result}; matching by id only",
                )

        node.key_references.append(ExternalKeyReference(
            field_name=name,
            target_type=target_type,
            key_field=None,
            value=source_id,
            is_required=descriptor.is_required,
            fallback_key_field=fallback_field,
            fallback_value=fallback_value,
            fallback_filters=fallback_filters,
        ))

    def _key_value(
        self,
        node: RecordNode,
        descriptor: RelationshipDescriptor,
        target_type: str,
        source_id: str,
        key_field: str,
        fetched: Dict[Tuple[str, str], FetchResult]
    ) -> Tuple[Optional[str], str]:
        """
        The referenced record's business-key value.

        Read from the nested relationship object when the root query
        selected it (e.g. Account.External_Id__c), otherwise fetched from
        the source org.

        Returns:
            (value, "") or (None, why the value is unavailable)
        """
        if descriptor.relationship_name:
            nested = node.record.get_field(f"{descriptor.relationship_name}.{key_field}")
            if not is_blank(nested) and not isinstance(nested, dict):
                return str(nested), ""

        result = self._fetch(target_type, source_id, fetched)
        if isinstance(result, str):
            return None, result
        raw = result.fields.get(key_field)
        if is_blank(raw):
            return None, f"{target_type} {source_id} has no value for {key_field}"
        return str(raw), ""

    def _fetch(
        self,
        object_type: str,
        record_id: str,
        fetched: Dict[Tuple[str, str], FetchResult]
    ) -> FetchResult:
        """Fetch a source record once per analysis; failures are remembered too."""
        key = (object_type, record_id)
        if key in fetched:
            return fetched[key]

        try:
            record = self.source.fetch_by_id(object_type, record_id)
        except RecordFetchError as e:
            logger.warning(str(e))
            fetched[key] = f"could not fetch {object_type} {record_id}: {e.reason}"
            return fetched[key]

        if record is None:
            fetched[key] = f"{object_type} {record_id} not found in source org"
        else:
            fetched[key] = record
        return fetched[key]

    def _drop(
        self,
        node: RecordNode,
        descriptor: RelationshipDescriptor,
        parent_type: Optional[str],
        parent_id: str,
        reason: str
    ) -> None:
        """Downgrade a relationship to skip for this one record."""
        node.omitted_fields.add(descriptor.field_name)
        node.dropped_references.append(DroppedReference(
            field_name=descriptor.field_name,
            parent_type=parent_type,
            parent_id=parent_id,
            is_required=descriptor.is_required,
            reason=reason,
        ))
        node.add_warning(
            ErrorKind.RELATED_RECORD_FETCH_FAILED.value,
            f"{descriptor.field_name} skipped: {reason}",
        )
        logger.warning(f"{node.record.reference}: {descriptor.field_name} skipped ({reason})")
