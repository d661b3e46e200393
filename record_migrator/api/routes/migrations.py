"""Migration analysis and execution endpoints."""

import logging
import uuid
from functools import lru_cache
from typing import Dict

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from ..models import (
    AnalyzeRequest,
    ExecuteRequest,
    PlanResponse,
    RunResponse,
    RunStatusEnum,
)
from ...errors import CyclicDependencyError, PlanNotFoundError, TargetStoreUnavailableError
from ...models.migration import MigrationConfig
from ...models.plan import MigrationPlan
from ...models.record import SourceRecord
from ...models.relationship import FieldAction, FieldActions
from ...orchestrator import MigrationOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

# run_id -> plan_id for every run started through the API
_scheduled_runs: Dict[str, str] = {}


@lru_cache()
def get_orchestrator() -> MigrationOrchestrator:
    """Session orchestrator, connected from SOURCE_ORG_* / TARGET_ORG_* settings."""
    return MigrationOrchestrator.from_environment(MigrationConfig(dry_run=True))


def _plan_response(plan: MigrationPlan) -> PlanResponse:
    data = plan.to_dict()
    data["has_deferred_updates"] = plan.has_deferred_updates
    return PlanResponse(**data)


def _field_actions(request: AnalyzeRequest) -> FieldActions:
    actions = FieldActions()
    for item in request.field_actions:
        action = FieldAction.from_dict({
            "action": item.action.value,
            "key_field": item.key_field,
            "reference_to": item.reference_to,
        })
        actions.set(item.object_type, item.field_name, action, item.concrete_type)
    return actions


@router.post("/analyze", response_model=PlanResponse)
def analyze(request: AnalyzeRequest, orchestrator: MigrationOrchestrator = Depends(get_orchestrator)):
    """Discover related records and compile a plan for review."""
    try:
        roots = [SourceRecord.from_api_record(r, object_type=request.object_type) for r in request.records]
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if request.record_ids:
        if not request.object_type:
            raise HTTPException(status_code=400, detail="object_type is required with record_ids")
        roots.extend(orchestrator.fetch_roots(request.object_type, request.record_ids))

    if not roots:
        raise HTTPException(status_code=400, detail="No root records selected")

    try:
        plan = orchestrator.analyze(roots, _field_actions(request))
    except CyclicDependencyError as e:
        raise HTTPException(status_code=409, detail={"message": str(e), "object_types": e.object_types})

    return _plan_response(plan)


@router.get("/plans/{plan_id}", response_model=PlanResponse)
def get_plan(plan_id: str, orchestrator: MigrationOrchestrator = Depends(get_orchestrator)):
    """Get a compiled plan."""
    try:
        return _plan_response(orchestrator.get_plan(plan_id))
    except PlanNotFoundError:
        raise HTTPException(status_code=404, detail="Plan not found")


@router.post("/plans/{plan_id}/execute", response_model=RunResponse)
def execute_plan(
    plan_id: str,
    background_tasks: BackgroundTasks,
    request: ExecuteRequest = ExecuteRequest(),
    orchestrator: MigrationOrchestrator = Depends(get_orchestrator)
):
    """Start executing a plan; poll the run for its result."""
    try:
        plan = orchestrator.get_plan(plan_id)
    except PlanNotFoundError:
        raise HTTPException(status_code=404, detail="Plan not found")

    if plan.issues and not request.accept_issues:
        raise HTTPException(
            status_code=400,
            detail=f"Plan has {len(plan.issues)} missing required dependencies; set accept_issues to execute"
        )

    dry_run = orchestrator.config.dry_run if request.dry_run is None else request.dry_run
    if not dry_run:
        try:
            orchestrator.validate_target()
        except TargetStoreUnavailableError as e:
            raise HTTPException(status_code=502, detail=str(e))

    run_id = str(uuid.uuid4())
    _scheduled_runs[run_id] = plan_id
    background_tasks.add_task(run_migration_task, orchestrator, plan, run_id, dry_run)

    return RunResponse(run_id=run_id, plan_id=plan_id, status=RunStatusEnum.PENDING, dry_run=dry_run)


@router.get("/runs/{run_id}", response_model=RunResponse)
def get_run(run_id: str, orchestrator: MigrationOrchestrator = Depends(get_orchestrator)):
    """Get the status and result of a run."""
    plan_id = _scheduled_runs.get(run_id)
    if plan_id is None:
        raise HTTPException(status_code=404, detail="Run not found")

    result = orchestrator.get_run(run_id)
    if result is None:
        return RunResponse(run_id=run_id, plan_id=plan_id, status=RunStatusEnum.PENDING)
    return RunResponse(**result.to_dict())


@router.post("/runs/{run_id}/cancel")
def cancel_run(run_id: str, orchestrator: MigrationOrchestrator = Depends(get_orchestrator)):
    """Cancel a run after its current stage."""
    if run_id not in _scheduled_runs:
        raise HTTPException(status_code=404, detail="Run not found")

    if not orchestrator.cancel(run_id):
        raise HTTPException(status_code=400, detail="Run is not executing")
    return {"status": "cancelling", "run_id": run_id}


def run_migration_task(orchestrator: MigrationOrchestrator, plan: MigrationPlan, run_id: str, dry_run: bool):
    """Background task executing a plan."""
    try:
        orchestrator.execute_migration(plan, run_id=run_id, dry_run=dry_run)
    except TargetStoreUnavailableError as e:
        # The partial result is kept by the orchestrator
        logger.error(f"Run {run_id} stopped: {e}")
    except Exception as e:
        logger.exception(f"Run {run_id} failed: {e}")
