"""Migration orchestrator - coordinates analysis, review and execution."""

import json
import logging
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .connection import connect
from .errors import CyclicDependencyError, PlanNotFoundError, TargetStoreUnavailableError
from .extractors.base import BaseSourceOrg
from .extractors.salesforce_extractor import SalesforceSourceOrg
from .loaders.base import BaseTargetStore
from .loaders.dry_run_loader import DryRunTargetStore
from .loaders.salesforce_loader import SalesforceTargetStore
from .models.migration import MigrationConfig, OrgCredentials
from .models.plan import CyclicDependency, MigrationPlan
from .models.record import SourceRecord
from .models.relationship import FieldActions
from .models.result import MigrationResult
from .services.catalog import RelationshipCatalog
from .services.execution import ExecutionEngine
from .services.graph_builder import GraphBuilder
from .services.key_resolver import ExternalKeyResolver
from .services.plan_compiler import PlanCompiler

logger = logging.getLogger(__name__)


class MigrationOrchestrator:
    """
    Orchestrates a record migration between two orgs.

    Handles:
    - Relationship discovery from the selected root records
    - Plan compilation and review
    - Execution against the target org (or a dry-run store)
    - Cancellation between stages
    - Plan and result reporting
    """

    def __init__(
        self,
        config: MigrationConfig,
        source: BaseSourceOrg,
        store: Optional[BaseTargetStore] = None,
        catalog: Optional[RelationshipCatalog] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Migration configuration
            source: Source org the root records come from
            store: Target org client; only lookups are made during dry runs
            catalog: Relationship catalog (defaults to one over the source)
        """
        self.config = config
        self.source = source
        self.store = store
        self.catalog = catalog or RelationshipCatalog(
            source,
            excluded_fields=config.excluded_fields,
            excluded_objects=config.excluded_objects,
        )
        self.builder = GraphBuilder(
            self.catalog,
            source,
            default_key_fields=config.default_key_fields,
            default_key_scopes=config.default_key_scopes,
        )
        self.compiler = PlanCompiler()
        # One resolver per session so key lookups are shared across runs
        self.resolver = ExternalKeyResolver(store or DryRunTargetStore(batch_size=config.batch_size))

        # Runtime state
        self.plans: Dict[str, MigrationPlan] = {}
        self.runs: Dict[str, MigrationResult] = {}
        self._engines: Dict[str, ExecutionEngine] = {}
        self._lock = threading.Lock()

        self._setup_directories()

    @classmethod
    def from_credentials(
        cls,
        config: MigrationConfig,
        source_credentials: OrgCredentials,
        target_credentials: Optional[OrgCredentials] = None
    ) -> "MigrationOrchestrator":
        """Connect to the source (and target) org and create an orchestrator."""
        source_sf = connect(source_credentials, timeout=config.request_timeout, api_version=config.api_version)
        store = None
        if target_credentials is not None:
            target_sf = connect(target_credentials, timeout=config.request_timeout, api_version=config.api_version)
            store = SalesforceTargetStore(
                target_sf,
                target_name=target_credentials.username or target_credentials.instance_url or "target",
                batch_size=config.batch_size,
                rate_limit=config.rate_limit,
            )
        elif not config.dry_run:
            raise ValueError("Target org credentials are required unless running a dry run")
        return cls(config, SalesforceSourceOrg(source_sf), store)

    @classmethod
    def from_environment(cls, config: MigrationConfig) -> "MigrationOrchestrator":
        """Create an orchestrator from SOURCE_ORG_* and TARGET_ORG_* settings."""
        source = OrgCredentials.from_env("SOURCE_ORG")
        target = OrgCredentials.from_env("TARGET_ORG")
        has_target = bool(target.session_id or target.username)
        return cls.from_credentials(config, source, target if has_target else None)

    def _setup_directories(self):
        """Create output directories."""
        self.logs_dir = Path(self.config.output_dir) / "logs"
        if self.config.save_report:
            self.logs_dir.mkdir(parents=True, exist_ok=True)

    def default_field_actions(self, object_types: Iterable[str]) -> FieldActions:
        """Default actions for every createable relationship of the given object types."""
        actions = FieldActions()
        for object_type in object_types:
            for field_name, action in self.catalog.default_field_actions(object_type).items():
                actions.set(object_type, field_name, action)
        return actions

    def relationship_options(self, object_type: str) -> Dict[str, Any]:
        """Relationship fields of an object type with their defaults and usable key fields."""
        options = []
        for descriptor in self.catalog.describe_relationships(object_type):
            if not descriptor.is_createable:
                continue
            entry = descriptor.to_dict()
            entry["default_action"] = self.catalog.default_action(descriptor).to_dict()
            entry["excluded"] = self.catalog.is_excluded(descriptor)
            entry["key_fields"] = {
                target: self.catalog.external_id_fields(target)
                for target in descriptor.reference_to
                if target not in self.catalog.excluded_objects
            }
            options.append(entry)
        return {"object_type": object_type, "relationships": options}

    def fetch_roots(self, object_type: str, record_ids: List[str]) -> List[SourceRecord]:
        """Fetch root records by id from the source org."""
        records = self.source.fetch_many(object_type, record_ids)
        if len(records) < len(record_ids):
            found = {r.source_id for r in records}
            missing = [i for i in record_ids if i not in found]
            logger.warning(f"{len(missing)} {object_type} records not found in source org: {', '.join(missing)}")
        return records

    def analyze(
        self,
        root_records: List[SourceRecord],
        field_actions: Optional[FieldActions] = None
    ) -> MigrationPlan:
        """
        Discover related records and compile a plan for review.

        Raises:
            CyclicDependencyError: if object types reference each other in a cycle
        """
        logger.info("=== PHASE 1: ANALYSIS ===")
        logger.info(f"Analyzing {len(root_records)} root records")

        graph = self.builder.build_graph(root_records, field_actions)
        compiled = self.compiler.compile(graph)
        if isinstance(compiled, CyclicDependency):
            raise CyclicDependencyError(compiled.object_types)

        plan = compiled.plan
        with self._lock:
            self.plans[plan.plan_id] = plan

        for warning in plan.warnings:
            logger.warning(warning)
        for issue in plan.issues:
            logger.warning(f"[{issue.kind.value}] {issue.message}")

        if self.config.save_report:
            self._save_plan(plan)
        return plan

    def get_plan(self, plan_id: str) -> MigrationPlan:
        with self._lock:
            plan = self.plans.get(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Plan not found: {plan_id}")
        return plan

    def get_run(self, run_id: str) -> Optional[MigrationResult]:
        """A finished run's result, or the live result of a run in progress."""
        with self._lock:
            if run_id in self.runs:
                return self.runs[run_id]
            engine = self._engines.get(run_id)
        return engine.result if engine is not None else None

    def validate_target(self) -> None:
        """
        Check the target org is reachable.

        Raises:
            TargetStoreUnavailableError: if it is not
        """
        if self.store is None:
            return
        if not self.store.validate_connection():
            raise TargetStoreUnavailableError(f"Cannot connect to target org {self.store.target_name}")

    def execute_migration(
        self,
        plan: MigrationPlan,
        run_id: Optional[str] = None,
        dry_run: Optional[bool] = None
    ) -> MigrationResult:
        """
        Execute a reviewed plan.

        Args:
            plan: Plan returned by analyze
            run_id: Identifier for the run, so it can be cancelled while executing
            dry_run: Override the configured dry-run setting

        Returns:
            MigrationResult with per-object counters and the id mapping

        Raises:
            TargetStoreUnavailableError: if the target org becomes unreachable;
                the partial result is saved and attached to the error
        """
        dry_run = self.config.dry_run if dry_run is None else dry_run
        run_id = run_id or str(uuid.uuid4())
        engine = self._create_engine(dry_run)
        with self._lock:
            self._engines[run_id] = engine

        logger.info(f"=== PHASE 2: EXECUTION{' (DRY RUN)' if dry_run else ''} ===")
        logger.info(f"Executing plan {plan.plan_id}: {' -> '.join(plan.object_order)}")

        try:
            result = engine.execute(plan, run_id=run_id)
        except TargetStoreUnavailableError as e:
            if e.partial_result is not None:
                self._finish_run(e.partial_result)
            logger.error(f"Migration failed: {e}")
            raise
        finally:
            with self._lock:
                self._engines.pop(run_id, None)

        self._finish_run(result)
        logger.info(f"=== MIGRATION {result.status.value.upper()} ===")
        return result

    def cancel(self, run_id: Optional[str] = None) -> bool:
        """
        Cancel a running migration after its current stage.

        Args:
            run_id: Run to cancel; every active run when omitted

        Returns:
            True if a running migration was found
        """
        with self._lock:
            if run_id is None:
                engines = list(self._engines.values())
            else:
                engines = [self._engines[run_id]] if run_id in self._engines else []
        for engine in engines:
            engine.cancel()
        return bool(engines)

    def _create_engine(self, dry_run: bool) -> ExecutionEngine:
        """Create the engine for one run."""
        if dry_run:
            store: BaseTargetStore = DryRunTargetStore(lookup_store=self.store, batch_size=self.config.batch_size)
        elif self.store is None:
            raise ValueError("No target org configured; only dry runs are possible")
        else:
            store = self.store

        return ExecutionEngine(
            store,
            resolver=self.resolver,
            batch_size=self.config.batch_size,
            max_workers=self.config.max_workers,
            dry_run=dry_run,
        )

    def _finish_run(self, result: MigrationResult):
        with self._lock:
            self.runs[result.run_id] = result
        if self.config.save_report:
            self._save_report(result)

    def _save_plan(self, plan: MigrationPlan):
        """Save the plan review."""
        filepath = self.logs_dir / f"plan_{plan.plan_id}.json"
        with open(filepath, 'w') as f:
            json.dump(plan.to_dict(), f, indent=2, default=str)
        logger.info(f"Saved plan to {filepath}")

    def _save_report(self, result: MigrationResult):
        """Save the migration report and the id mapping."""
        filepath = self.logs_dir / f"migration_report_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.json"
        with open(filepath, 'w') as f:
            json.dump(result.to_dict(), f, indent=2, default=str)
        logger.info(f"Saved migration report to {filepath}")

        mapping_path = self.logs_dir / f"id_mapping_{result.run_id}.json"
        with open(mapping_path, 'w') as f:
            json.dump(result.remapping.to_dict(), f, indent=2)
        logger.info(f"Saved id mapping to {mapping_path}")
