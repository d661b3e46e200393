"""Relationship metadata and per-field migration actions."""

from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Tuple
from enum import Enum


class ActionType(str, Enum):
    """Treatment of a relationship field during migration."""
    SKIP = "skip"
    INCLUDE = "include"  # Carry the related record along and create it
    MATCH_BY_KEY = "match_by_key"  # Match an existing record in the target org


@dataclass(frozen=True)
class RelationshipDescriptor:
    """A reference-typed field of an object type, as described by the catalog."""
    field_name: str
    field_label: str
    reference_to: Tuple[str, ...]
    is_required: bool = False
    is_createable: bool = True
    relationship_name: Optional[str] = None

    @property
    def is_polymorphic(self) -> bool:
        """True when the field may point at more than one object type."""
        return len(self.reference_to) > 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "field_name": self.field_name,
            "field_label": self.field_label,
            "reference_to": list(self.reference_to),
            "is_required": self.is_required,
            "is_createable": self.is_createable,
            "relationship_name": self.relationship_name,
        }


@dataclass(frozen=True)
class FieldAction:
    """Configured action for one relationship field."""
    action: ActionType = ActionType.SKIP
    key_field: Optional[str] = None  # Only for MATCH_BY_KEY; None means id first, then default key
    reference_to: Optional[str] = None  # Chosen concrete type for polymorphic fields

    @classmethod
    def skip(cls) -> "FieldAction":
        return cls(ActionType.SKIP)

    @classmethod
    def include(cls, reference_to: Optional[str] = None) -> "FieldAction":
        return cls(ActionType.INCLUDE, reference_to=reference_to)

    @classmethod
    def match_by_key(
        cls,
        key_field: Optional[str] = None,
        reference_to: Optional[str] = None
    ) -> "FieldAction":
        return cls(ActionType.MATCH_BY_KEY, key_field=key_field, reference_to=reference_to)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "action": self.action.value,
            "key_field": self.key_field,
            "reference_to": self.reference_to,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldAction":
        """Create from dictionary representation."""
        action = data.get("action", "skip")
        # Legacy keys: "matchByExternalId" / "externalIdField" / "referenceTo"
        if action == "matchByExternalId":
            action = ActionType.MATCH_BY_KEY.value
        return cls(
            action=ActionType(action),
            key_field=data.get("key_field") or data.get("externalIdField"),
            reference_to=data.get("reference_to") or data.get("referenceTo"),
        )


class FieldActions:
    """
    Field actions for every object type that takes part in an analysis.

    Actions are keyed by (object_type, field_name). Polymorphic fields may
    carry an extra entry per concrete target type, which wins over the
    generic entry once the record's concrete type is known.
    """

    def __init__(self) -> None:
        self._actions: Dict[Tuple[str, str, Optional[str]], FieldAction] = {}

    def set(
        self,
        object_type: str,
        field_name: str,
        action: FieldAction,
        concrete_type: Optional[str] = None
    ) -> "FieldActions":
        self._actions[(object_type, field_name, concrete_type)] = action
        return self

    def get(
        self,
        object_type: str,
        field_name: str,
        concrete_type: Optional[str] = None
    ) -> Optional[FieldAction]:
        """Look up an action, preferring a concrete-type entry over the generic one."""
        if concrete_type is not None:
            specific = self._actions.get((object_type, field_name, concrete_type))
            if specific is not None:
                return specific
        return self._actions.get((object_type, field_name, None))

    def has_object_type(self, object_type: str) -> bool:
        return any(key[0] == object_type for key in self._actions)

    def __iter__(self) -> Iterator[Tuple[Tuple[str, str, Optional[str]], FieldAction]]:
        return iter(sorted(self._actions.items(), key=lambda item: (item[0][0], item[0][1], item[0][2] or "")))

    def __len__(self) -> int:
        return len(self._actions)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        """Convert to {object_type: {field_name: action | {concrete_type: action}}}."""
        result: Dict[str, Dict[str, Any]] = {}
        for (object_type, field_name, concrete_type), action in self:
            fields = result.setdefault(object_type, {})
            if concrete_type is None:
                fields[field_name] = action.to_dict()
            else:
                per_type = fields.setdefault(f"{field_name}:by_type", {})
                per_type[concrete_type] = action.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Dict[str, Any]]) -> "FieldActions":
        """
        Create from dictionary representation.

        Accepts the shape produced by to_dict, where a value is either an
        action dict or a plain action string ("include", "skip").
        """
        actions = cls()
        for object_type, fields in data.items():
            for field_name, value in fields.items():
                if field_name.endswith(":by_type"):
                    base_name = field_name[: -len(":by_type")]
                    for concrete_type, per_type in value.items():
                        actions.set(object_type, base_name, _coerce_action(per_type), concrete_type)
                else:
                    actions.set(object_type, field_name, _coerce_action(value))
        return actions


def _coerce_action(value: Any) -> FieldAction:
    if isinstance(value, FieldAction):
        return value
    if isinstance(value, str):
        return FieldAction.from_dict({"action": value})
    return FieldAction.from_dict(value)
