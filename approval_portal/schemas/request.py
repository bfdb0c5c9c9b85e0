"""
Approval Request Schemas
Pydantic models for approval request endpoints
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from approval_portal.config.workflows import get_workflow
from approval_portal.schemas.workflow import RequestState, WorkflowKind, WorkflowAction


class RequestCreate(BaseModel):
    """Schema for submitting a new request"""
    kind: WorkflowKind
    payload: Dict[str, Any]


class ApproveAction(BaseModel):
    """Schema for signing the current stage"""
    comment: Optional[str] = None
    extras: Optional[Dict[str, Any]] = None


class RejectAction(BaseModel):
    """Schema for rejecting; the engine enforces a non-empty comment"""
    comment: Optional[str] = None


class ResubmitAction(BaseModel):
    """Schema for editing and resubmitting a rejected or revoked request"""
    payload: Dict[str, Any]


class StageInfo(BaseModel):
    """Current stage summary"""
    name: str
    label: str
    required_permission: str


class ApprovalEntryResponse(BaseModel):
    """Schema for one approval log entry"""
    stage: str
    actor_id: int
    action: WorkflowAction
    comment: Optional[str] = None
    created_at: datetime
    is_system: bool = False
    cycle: int


class RequestResponse(BaseModel):
    """Schema for request response"""
    id: int
    request_number: str
    kind: WorkflowKind
    status: str
    current_step: int
    total_steps: int
    current_stage: Optional[StageInfo] = None
    submitter_id: int
    payload: Dict[str, Any]
    stage_fields: Dict[str, Any]
    rejection_reason: Optional[str] = None
    rejected_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    cycle: int
    version: int
    approvals: List[ApprovalEntryResponse] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_state(cls, state: RequestState) -> "RequestResponse":
        workflow = get_workflow(state.kind)
        stage = workflow.get_stage(state.status)
        return cls(
            id=state.id,
            request_number=state.request_number,
            kind=state.kind,
            status=state.status,
            current_step=state.current_step,
            total_steps=len(workflow.stages),
            current_stage=StageInfo(
                name=stage.name,
                label=stage.label,
                required_permission=stage.required_permission
            ) if stage else None,
            submitter_id=state.submitter_id,
            payload=state.payload,
            stage_fields=state.stage_fields,
            rejection_reason=state.rejection_reason,
            rejected_by=state.rejected_by,
            rejected_at=state.rejected_at,
            cycle=state.cycle,
            version=state.version,
            approvals=[ApprovalEntryResponse(**entry.model_dump()) for entry in state.approvals],
            created_at=state.created_at,
            updated_at=state.updated_at
        )
