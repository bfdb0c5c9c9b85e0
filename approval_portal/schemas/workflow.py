"""
Workflow Schemas
Value types the workflow engine reads and produces
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, FrozenSet
from datetime import datetime
from enum import Enum


class WorkflowKind(str, Enum):
    """Which workflow definition applies to a request"""
    PAYMENT = "payment"
    ERP_PRODUCT = "erp_product"
    ERP_SUPPLIER = "erp_supplier"


class TerminalStatus(str, Enum):
    """Statuses outside every stage sequence"""
    COMPLETED = "completed"
    REJECTED = "rejected"
    REVOKED = "revoked"


class WorkflowAction(str, Enum):
    """Actions an approver can take on a stage"""
    APPROVE = "approve"
    REJECT = "reject"


class Actor(BaseModel):
    """A user together with their resolved permission codes"""
    id: int
    permissions: FrozenSet[str] = frozenset()

    def has(self, permission_code: str) -> bool:
        return permission_code in self.permissions


class ApprovalEntry(BaseModel):
    """One recorded action in the append-only approvals log"""
    stage: str
    actor_id: int
    action: WorkflowAction
    comment: Optional[str] = None
    created_at: datetime
    is_system: bool = False
    cycle: int = 1

    class Config:
        from_attributes = True


class RequestState(BaseModel):
    """Snapshot of an approval request as the engine sees it"""
    id: Optional[int] = None
    request_number: Optional[str] = None
    kind: WorkflowKind
    status: str
    current_step: int
    submitter_id: int
    payload: Dict[str, Any] = Field(default_factory=dict)
    approvals: List[ApprovalEntry] = Field(default_factory=list)
    rejection_reason: Optional[str] = None
    rejected_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    stage_fields: Dict[str, Any] = Field(default_factory=dict)
    cycle: int = 1
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in {s.value for s in TerminalStatus}

    def current_cycle_approvals(self) -> List[ApprovalEntry]:
        return [entry for entry in self.approvals if entry.cycle == self.cycle]


class TransitionResult(BaseModel):
    """Engine output: the new state plus what the store must write"""
    state: RequestState
    expected_status: str
    expected_version: int
    new_entries: List[ApprovalEntry] = Field(default_factory=list)
    skipped_stage: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.state.status == TerminalStatus.COMPLETED.value
