"""Relationship catalog: reference-field metadata per object type."""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from ..extractors.base import BaseSourceOrg
from ..models.migration import DEFAULT_EXCLUDED_FIELDS, DEFAULT_EXCLUDED_OBJECTS
from ..models.relationship import ActionType, FieldAction, RelationshipDescriptor

logger = logging.getLogger(__name__)

# Reference fields matched in the target org instead of being created
AUTO_MATCH_FIELDS = {"RecordTypeId"}


class RelationshipCatalog:
    """
    Read-only view of the source schema's relationships.

    Describe calls are cached per object type for the lifetime of the
    catalog, so connect a new catalog when switching source orgs.
    """

    def __init__(
        self,
        source: BaseSourceOrg,
        excluded_fields: Optional[Iterable[str]] = None,
        excluded_objects: Optional[Iterable[str]] = None
    ):
        """
        Initialize the catalog.

        Args:
            source: Source org to describe object types from
            excluded_fields: Fields never migrated (owner/audit/system fields)
            excluded_objects: Object types never carried along
        """
        self.source = source
        self.excluded_fields: Set[str] = set(
            DEFAULT_EXCLUDED_FIELDS if excluded_fields is None else excluded_fields
        )
        self.excluded_objects: Set[str] = set(
            DEFAULT_EXCLUDED_OBJECTS if excluded_objects is None else excluded_objects
        )
        self._describe_cache: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def describe(self, object_type: str) -> Dict[str, Any]:
        """Get the object description, with caching."""
        with self._lock:
            cached = self._describe_cache.get(object_type)
        if cached is not None:
            return cached

        description = self.source.describe(object_type)
        with self._lock:
            self._describe_cache[object_type] = description
        return description

    def clear_cache(self) -> None:
        with self._lock:
            self._describe_cache.clear()

    def describe_relationships(self, object_type: str) -> List[RelationshipDescriptor]:
        """Get all lookup/reference relationships for an object type."""
        description = self.describe(object_type)
        descriptors = []

        for field in description.get("fields", []):
            if field.get("type") != "reference":
                continue
            reference_to = field.get("referenceTo") or []
            if not reference_to:
                continue
            descriptors.append(RelationshipDescriptor(
                field_name=field["name"],
                field_label=field.get("label", field["name"]),
                reference_to=tuple(reference_to),
                is_required=not field.get("nillable", True),
                is_createable=field.get("createable", False),
                relationship_name=field.get("relationshipName"),
            ))

        return descriptors

    def createable_fields(self, object_type: str) -> Set[str]:
        """Fields that may be set when creating a record."""
        description = self.describe(object_type)
        return {
            f["name"] for f in description.get("fields", [])
            if f.get("createable") and not f.get("calculated")
        }

    def external_id_fields(self, object_type: str) -> List[str]:
        """Fields usable as a business key for match-by-key lookups."""
        description = self.describe(object_type)
        return sorted(
            f["name"] for f in description.get("fields", [])
            if f.get("externalId") or (f.get("idLookup") and f["name"] != "Id")
        )

    def key_prefix(self, object_type: str) -> Optional[str]:
        """The three-character id prefix of an object type, if it has one."""
        return self.describe(object_type).get("keyPrefix")

    def object_type_for_id(self, record_id: str, candidates: Sequence[str]) -> Optional[str]:
        """
        Determine which of the candidate object types an id belongs to.

        Used for polymorphic fields, where the value alone does not say
        which object type it references.
        """
        if len(candidates) == 1:
            return candidates[0]
        if not isinstance(record_id, str) or len(record_id) < 3:
            return None

        prefix = record_id[:3]
        # Excluded types last: describing them is only needed to recognize them
        ordered = sorted(candidates, key=lambda c: c in self.excluded_objects)
        for candidate in ordered:
            try:
                candidate_prefix = self.key_prefix(candidate)
            except Exception as e:
                logger.warning(f"Could not describe {candidate}: {e}")
                continue
            if candidate_prefix == prefix:
                return candidate
        return None

    def has_key_prefixes(self, candidates: Sequence[str]) -> bool:
        """True when every candidate type has a known id prefix."""
        for candidate in candidates:
            try:
                if not self.key_prefix(candidate):
                    return False
            except Exception as e:
                logger.warning(f"Could not describe {candidate}: {e}")
                return False
        return True

    def is_excluded(self, descriptor: RelationshipDescriptor) -> bool:
        """True when a relationship field is never eligible for migration."""
        if descriptor.field_name in self.excluded_fields:
            return True
        return all(target in self.excluded_objects for target in descriptor.reference_to)

    def default_action(self, descriptor: RelationshipDescriptor) -> FieldAction:
        """
        Default action for a relationship field.

        Createable references are included unless excluded; record types
        are matched in the target org rather than created.
        """
        if not descriptor.is_createable or self.is_excluded(descriptor):
            return FieldAction.skip()
        if descriptor.field_name in AUTO_MATCH_FIELDS:
            return FieldAction.match_by_key(reference_to=descriptor.reference_to[0])
        eligible = [t for t in descriptor.reference_to if t not in self.excluded_objects]
        return FieldAction(ActionType.INCLUDE, reference_to=eligible[0])

    def default_field_actions(self, object_type: str) -> Dict[str, FieldAction]:
        """Default actions for every createable relationship field of an object type."""
        return {
            d.field_name: self.default_action(d)
            for d in self.describe_relationships(object_type)
            if d.is_createable
        }
