"""Dry-run target store: simulates creates without touching the target org."""

import itertools
import logging
import threading
from typing import Any, Dict, List, Optional

from .base import BaseTargetStore, CreateOutcome, UpdateOutcome

logger = logging.getLogger(__name__)


class DryRunTargetStore(BaseTargetStore):
    """
    Mints placeholder ids for created records and records every call.

    Lookups are delegated to a real target store when one is given, so a
    dry run still shows which match-by-key references would resolve.
    """

    def __init__(self, lookup_store: Optional[BaseTargetStore] = None, batch_size: int = 200):
        super().__init__("dry-run", batch_size)
        self.lookup_store = lookup_store
        self.created: Dict[str, List[Dict[str, Any]]] = {}
        self.updated: List[Dict[str, Any]] = []
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def create_many(self, object_type: str, payloads: List[Dict[str, Any]]) -> List[CreateOutcome]:
        outcomes = []
        with self._lock:
            for payload in payloads:
                target_id = f"DRYRUN-{object_type}-{next(self._counter):06d}"
                self.created.setdefault(object_type, []).append(dict(payload, Id=target_id))
                outcomes.append(CreateOutcome(target_id=target_id))
        logger.debug(f"[dry run] Would create {len(payloads)} {object_type} records")
        return outcomes

    def update_by_id(self, object_type: str, target_id: str, fields: Dict[str, Any]) -> UpdateOutcome:
        with self._lock:
            self.updated.append({"object_type": object_type, "target_id": target_id, "fields": dict(fields)})
        logger.debug(f"[dry run] Would update {object_type} {target_id}: {sorted(fields)}")
        return UpdateOutcome(success=True)

    def query_by_field(
        self,
        object_type: str,
        field_name: str,
        value: Any,
        filters: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        if self.lookup_store is None:
            return None
        return self.lookup_store.query_by_field(object_type, field_name, value, filters)
