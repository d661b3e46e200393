"""External-key resolution against the target org."""

import logging
import threading
from concurrent.futures import Future
from typing import Any, Dict, Optional, Tuple

from ..loaders.base import BaseTargetStore
from ..models.record import ExternalKeyReference

logger = logging.getLogger(__name__)

ID_FIELD = "Id"

CacheKey = Tuple[str, str, Tuple[Tuple[str, Any], ...]]


class ExternalKeyResolver:
    """
    Resolves business-key values to existing target record ids.

    Results (including misses) are cached per (object type, key field)
    for the session. Concurrent lookups of the same value share a single
    target-org query.
    """

    def __init__(self, store: BaseTargetStore):
        """
        Initialize the resolver.

        Args:
            store: Target store to query
        """
        self.store = store
        self._cache: Dict[CacheKey, Dict[Any, Optional[str]]] = {}
        self._in_flight: Dict[Tuple[CacheKey, Any], Future] = {}
        self._lock = threading.Lock()
        self.queries = 0

    def resolve(
        self,
        target_type: str,
        key_field: str,
        value: Any,
        filters: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        """
        Look up the target id of the record whose key field equals value.

        Returns:
            The target id, or None when no target record matches

        Raises:
            TargetStoreUnavailableError: if the target org cannot be reached
        """
        cache_key: CacheKey = (target_type, key_field, tuple(sorted((filters or {}).items())))

        with self._lock:
            values = self._cache.setdefault(cache_key, {})
            if value in values:
                return values[value]
            flight_key = (cache_key, value)
            future = self._in_flight.get(flight_key)
            leader = future is None
            if leader:
                future = Future()
                self._in_flight[flight_key] = future

        if not leader:
            return future.result()

        try:
            with self._lock:
                self.queries += 1
            target_id = self.store.query_by_field(target_type, key_field, value, filters)
        except BaseException as e:
            # Errors are not cached; the next caller queries again
            with self._lock:
                del self._in_flight[flight_key]
            future.set_exception(e)
            raise

        with self._lock:
            values[value] = target_id
            del self._in_flight[flight_key]
        future.set_result(target_id)

        if target_id is None:
            logger.debug(f"No {target_type} with {key_field} = {value!r} in target org")
        return target_id

    def resolve_reference(self, reference: ExternalKeyReference) -> Optional[str]:
        """
        Resolve a match-by-key reference.

        With an explicit key field this is a single lookup. Without one,
        the source id is tried as a target id first (orgs cloned from the
        same source share ids), then the fallback key when one is known.
        """
        if reference.key_field:
            return self.resolve(reference.target_type, reference.key_field, reference.value)

        target_id = self.resolve(reference.target_type, ID_FIELD, reference.value)
        if target_id is not None:
            return target_id

        if reference.fallback_key_field and reference.fallback_value is not None:
            return self.resolve(
                reference.target_type,
                reference.fallback_key_field,
                reference.fallback_value,
                dict(reference.fallback_filters) or None,
            )
        return None

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
