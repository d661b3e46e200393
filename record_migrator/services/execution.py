"""Execution engine: creates a compiled plan's records in the target org, stage by stage."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .key_resolver import ExternalKeyResolver
from ..errors import ErrorKind, TargetStoreUnavailableError
from ..loaders.base import BaseTargetStore, CreateOutcome, UpdateOutcome
from ..models.migration import MigrationStatus
from ..models.plan import MigrationPlan
from ..models.record import RecordNode
from ..models.result import MigrationResult, ObjectResult, RecordError, RemappingTable

logger = logging.getLogger(__name__)

# Keys of a fetched record that are never sent to the target org
SYSTEM_KEYS = {"Id", "attributes"}


@dataclass
class PreparedRecord:
    """A create payload, or the reason the record cannot be attempted."""
    node: RecordNode
    payload: Dict[str, Any] = field(default_factory=dict)
    blocked: Optional[RecordError] = None
    notes: List[RecordError] = field(default_factory=list)


class ExecutionEngine:
    """
    Runs a migration plan against a target store.

    Stages run strictly in plan order. Within a stage, payloads are built
    and create batches submitted on a bounded worker pool; the stage ends
    only when every outcome is recorded, since the next stage reads the
    identifiers this one minted.

    Unresolved-parent policy: a record whose included parent has no
    target id (the parent failed or was never created) is marked failed
    without an insert attempt, with an UnresolvedParent error. The same
    applies to deferred self-reference updates.
    """

    def __init__(
        self,
        store: BaseTargetStore,
        resolver: Optional[ExternalKeyResolver] = None,
        batch_size: int = 200,
        max_workers: int = 4,
        dry_run: bool = False
    ):
        """
        Initialize the engine.

        Args:
            store: Target store records are created in
            resolver: Resolver for match-by-key fields (one per session)
            batch_size: Records per create call
            max_workers: Concurrent target calls within a stage
            dry_run: Marks results as previews
        """
        self.store = store
        self.resolver = resolver or ExternalKeyResolver(store)
        self.batch_size = max(1, min(batch_size, store.batch_size or batch_size))
        self.max_workers = max(1, max_workers)
        self.dry_run = dry_run
        self._cancel = threading.Event()
        self.result: Optional[MigrationResult] = None

    def cancel(self) -> None:
        """Request cancellation; honoured before the next stage starts."""
        logger.info("Cancellation requested; stopping after the current stage")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def execute(self, plan: MigrationPlan, run_id: Optional[str] = None) -> MigrationResult:
        """
        Execute a plan.

        Args:
            plan: Compiled plan to execute
            run_id: Identifier for this run; generated when not given

        Returns:
            MigrationResult with per-object counters and the id mapping

        Raises:
            TargetStoreUnavailableError: if the target org cannot be reached;
                the partial result is attached as ``partial_result``
        """
        result = MigrationResult(plan_id=plan.plan_id, dry_run=self.dry_run)
        if run_id:
            result.run_id = run_id
        result.status = MigrationStatus.EXECUTING
        result.started_at = datetime.utcnow()
        self.result = result
        order = list(plan.object_order)

        try:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                for index, object_type in enumerate(order):
                    if self.cancelled:
                        result.skipped_stages = order[index:]
                        break
                    logger.info(f"Stage {index + 1}/{len(order)}: {object_type}")
                    self._run_stage(plan, object_type, result, pool)
                    result.completed_stages.append(object_type)

                if plan.has_deferred_updates and not self.cancelled:
                    logger.info("Deferred pass: setting self-references")
                    self._run_deferred_updates(plan, result, pool)

        except TargetStoreUnavailableError as e:
            logger.error(f"Target org unavailable, stopping run: {e}")
            result.status = MigrationStatus.FAILED
            result.fatal_error = str(e)
            result.completed_at = datetime.utcnow()
            e.partial_result = result
            raise

        result.status = MigrationStatus.CANCELLED if self.cancelled else MigrationStatus.COMPLETED
        result.completed_at = datetime.utcnow()
        logger.info(
            f"Execution {result.status.value}: {result.inserted_records} inserted, "
            f"{result.failed_records} failed, {result.updated_records} updated, "
            f"{result.failed_updates} updates failed"
        )
        return result

    def build_payload(self, node: RecordNode, remapping: RemappingTable) -> PreparedRecord:
        """
        Build the create payload for one record.

        Source fields are copied minus omitted fields, system keys, nested
        relationship objects and deferred self-references. Included
        references are rewritten to the parent's target id; match-by-key
        references are resolved in the target org or left out.
        """
        prepared = PreparedRecord(node=node)
        reference = node.record.reference
        deferred = {edge.field_name for edge in node.deferred_edges}

        prepared.payload = {
            name: value for name, value in node.record.fields.items()
            if name not in SYSTEM_KEYS
            and name not in node.omitted_fields
            and name not in deferred
            and not name.endswith("__r")
            and not isinstance(value, dict)
        }

        for edge in node.edges:
            target_id = remapping.get(edge.parent_type, edge.parent_id)
            if target_id is None:
                prepared.blocked = RecordError(
                    kind=ErrorKind.UNRESOLVED_PARENT,
                    reference=reference,
                    message=f"{edge.field_name} references {edge.parent_type} {edge.parent_id}, which was not created",
                    source_id=node.source_id,
                    field_name=edge.field_name,
                )
                return prepared
            prepared.payload[edge.field_name] = target_id

        for ref in node.key_references:
            target_id = self.resolver.resolve_reference(ref)
            if target_id is not None:
                prepared.payload[ref.field_name] = target_id
                continue

            prepared.payload.pop(ref.field_name, None)
            error = RecordError(
                kind=ErrorKind.EXTERNAL_KEY_NOT_FOUND,
                reference=reference,
                message=f"no target record with {ref.description}; {ref.field_name} left unset",
                source_id=node.source_id,
                field_name=ref.field_name,
            )
            if ref.is_required:
                error.message = f"no target record with {ref.description}; {ref.field_name} is required"
                prepared.blocked = error
                return prepared
            prepared.notes.append(error)

        return prepared

    def _run_stage(
        self,
        plan: MigrationPlan,
        object_type: str,
        result: MigrationResult,
        pool: ThreadPoolExecutor
    ) -> None:
        """Create every record of one object type; returns when all outcomes are recorded."""
        nodes = plan.records_by_type.get(object_type, ())
        object_result = result.for_object(object_type)

        prepared, fatal = self._gather(
            [pool.submit(self.build_payload, node, result.remapping) for node in nodes]
        )
        if fatal is not None:
            raise fatal

        ready: List[PreparedRecord] = []
        for item in prepared:
            object_result.errors.extend(item.notes)
            if item.blocked is not None:
                object_result.failed += 1
                object_result.errors.append(item.blocked)
                logger.warning(str(item.blocked))
            else:
                ready.append(item)

        batches = list(self._batches(ready))
        outcomes, fatal = self._gather(
            [pool.submit(self._create_batch, object_type, batch) for batch in batches]
        )

        for batch, batch_outcomes in zip(batches, outcomes):
            if batch_outcomes is None:
                continue
            for item, outcome in zip(batch, batch_outcomes):
                self._record_create(item.node, outcome, object_result, result.remapping)
        if fatal is not None:
            raise fatal

        logger.info(
            f"{object_type}: {object_result.inserted} inserted, {object_result.failed} failed"
        )

    def _create_batch(self, object_type: str, batch: List[PreparedRecord]) -> List[CreateOutcome]:
        """Submit one create call; anything but an outage fails just this batch's records."""
        payloads = [item.payload for item in batch]
        try:
            outcomes = self.store.create_many(object_type, payloads)
        except TargetStoreUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Create call for {len(batch)} {object_type} records failed: {e}")
            return [CreateOutcome(error=str(e)) for _ in batch]

        if len(outcomes) != len(batch):
            missing = len(batch) - len(outcomes)
            outcomes = list(outcomes)[:len(batch)]
            if missing > 0:
                outcomes.extend(CreateOutcome(error="no outcome returned by target org") for _ in range(missing))
        return outcomes

    def _record_create(
        self,
        node: RecordNode,
        outcome: CreateOutcome,
        object_result: ObjectResult,
        remapping: RemappingTable
    ) -> None:
        if outcome.success:
            remapping.set(node.object_type, node.source_id, outcome.target_id)
            object_result.inserted += 1
            return

        object_result.failed += 1
        error = RecordError(
            kind=ErrorKind.RECORD_CREATE_FAILED,
            reference=node.record.reference,
            message=outcome.error or "create failed",
            source_id=node.source_id,
        )
        object_result.errors.append(error)
        logger.warning(str(error))

    def _run_deferred_updates(
        self,
        plan: MigrationPlan,
        result: MigrationResult,
        pool: ThreadPoolExecutor
    ) -> None:
        """Set same-type references on records created in the stages before."""
        updates: List[Tuple[RecordNode, str, Dict[str, str]]] = []

        for node in plan.nodes():
            if not node.deferred_edges:
                continue
            target_id = result.remapping.get(node.object_type, node.source_id)
            if target_id is None:
                # Never created; already reported as a failed insert
                continue

            object_result = result.for_object(node.object_type)
            fields: Dict[str, str] = {}
            unresolved = []
            for edge in node.deferred_edges:
                parent_target = result.remapping.get(edge.parent_type, edge.parent_id)
                if parent_target is None:
                    unresolved.append(edge)
                else:
                    fields[edge.field_name] = parent_target

            if unresolved:
                object_result.update_failed += 1
                for edge in unresolved:
                    object_result.errors.append(RecordError(
                        kind=ErrorKind.UNRESOLVED_PARENT,
                        reference=node.record.reference,
                        message=f"{edge.field_name} references {edge.parent_type} {edge.parent_id}, which was not created",
                        source_id=node.source_id,
                        field_name=edge.field_name,
                    ))
            if fields:
                updates.append((node, target_id, fields))

        outcomes, fatal = self._gather(
            [pool.submit(self._update, node.object_type, target_id, fields) for node, target_id, fields in updates]
        )

        for (node, _, fields), outcome in zip(updates, outcomes):
            if outcome is None:
                continue
            object_result = result.for_object(node.object_type)
            if outcome.success:
                object_result.updated += 1
                continue
            object_result.update_failed += 1
            error = RecordError(
                kind=ErrorKind.RECORD_UPDATE_FAILED,
                reference=node.record.reference,
                message=f"setting {', '.join(sorted(fields))} failed: {outcome.error or 'update failed'}",
                source_id=node.source_id,
            )
            object_result.errors.append(error)
            logger.warning(str(error))
        if fatal is not None:
            raise fatal

    def _update(self, object_type: str, target_id: str, fields: Dict[str, Any]) -> UpdateOutcome:
        try:
            return self.store.update_by_id(object_type, target_id, fields)
        except TargetStoreUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Update of {object_type} {target_id} failed: {e}")
            return UpdateOutcome(success=False, error=str(e))

    def _batches(self, records: List[PreparedRecord]) -> Iterator[List[PreparedRecord]]:
        """Iterate over records in batches."""
        for i in range(0, len(records), self.batch_size):
            yield records[i:i + self.batch_size]

    def _gather(self, futures: List[Future]) -> Tuple[List[Any], Optional[TargetStoreUnavailableError]]:
        """
        Wait for every future, in submission order.

        An outage does not stop the wait: callers record every outcome
        that did arrive before re-raising it, so the remapping table
        reflects every create that actually happened.
        """
        results = []
        fatal: Optional[TargetStoreUnavailableError] = None
        for future in futures:
            try:
                results.append(future.result())
            except TargetStoreUnavailableError as e:
                fatal = fatal or e
                results.append(None)
        return results, fatal
