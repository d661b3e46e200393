"""Pydantic models for API requests and responses."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from enum import Enum
from datetime import datetime


class ActionTypeEnum(str, Enum):
    SKIP = "skip"
    INCLUDE = "include"
    MATCH_BY_KEY = "match_by_key"


class RunStatusEnum(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Request Models
class FieldActionCreate(BaseModel):
    object_type: str
    field_name: str
    action: ActionTypeEnum = ActionTypeEnum.INCLUDE
    key_field: Optional[str] = None
    reference_to: Optional[str] = None
    concrete_type: Optional[str] = None  # Per-type action for a polymorphic field


class AnalyzeRequest(BaseModel):
    """Root records to migrate: full records, or ids to fetch from the source org."""
    object_type: Optional[str] = None
    records: List[Dict[str, Any]] = Field(default_factory=list)
    record_ids: List[str] = Field(default_factory=list)
    field_actions: List[FieldActionCreate] = Field(default_factory=list)


class ExecuteRequest(BaseModel):
    dry_run: Optional[bool] = None
    accept_issues: bool = False


# Response Models
class PlanIssueResponse(BaseModel):
    kind: str
    object_type: str
    source_id: str
    field_name: str
    message: str


class PlanResponse(BaseModel):
    plan_id: str
    created_at: datetime
    object_order: List[str]
    object_counts: Dict[str, int]
    total_records: int
    has_deferred_updates: bool = False
    issues: List[PlanIssueResponse] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    records_by_type: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    pending_remappings: List[Dict[str, Any]] = Field(default_factory=list)


class ObjectResultResponse(BaseModel):
    object_type: str
    inserted: int = 0
    failed: int = 0
    updated: int = 0
    update_failed: int = 0
    error_messages: List[str] = Field(default_factory=list)


class RunResponse(BaseModel):
    run_id: str
    plan_id: str
    status: RunStatusEnum
    dry_run: bool = False
    success: bool = False
    inserted_records: int = 0
    failed_records: int = 0
    updated_records: int = 0
    failed_updates: int = 0
    objects: Dict[str, ObjectResultResponse] = Field(default_factory=dict)
    completed_stages: List[str] = Field(default_factory=list)
    skipped_stages: List[str] = Field(default_factory=list)
    id_mapping: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    fatal_error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
