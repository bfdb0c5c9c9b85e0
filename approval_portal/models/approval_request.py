"""
Approval Request Model
Persisted instance of a payment, ERP product or ERP supplier workflow
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship
from datetime import datetime

from approval_portal.config.database import Base
from approval_portal.schemas.workflow import WorkflowKind


class ApprovalRequest(Base):
    """Approval request model"""
    __tablename__ = "approval_requests"

    id = Column(Integer, primary_key=True, index=True)
    request_number = Column(String, unique=True, index=True, nullable=False)

    kind = Column(Enum(WorkflowKind), nullable=False, index=True)

    # Workflow position; status is the compare-and-swap key
    status = Column(String, nullable=False, index=True)
    current_step = Column(Integer, nullable=False, default=1)
    cycle = Column(Integer, nullable=False, default=1)
    version = Column(Integer, nullable=False, default=0)

    submitter_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Domain fields, opaque to the workflow
    payload = Column(JSON, nullable=False, default=dict)

    # Current-cycle sign-offs: {prefix}_at / {prefix}_by / {prefix}_url
    stage_fields = Column(JSON, nullable=False, default=dict)

    # Rejection
    rejection_reason = Column(Text, nullable=True)
    rejected_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejected_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    submitter = relationship("User", foreign_keys=[submitter_id])
    approvals = relationship(
        "ApprovalEntryRecord",
        back_populates="request",
        order_by="ApprovalEntryRecord.id",
        cascade="all, delete-orphan"
    )
    audit_logs = relationship("AuditLog", back_populates="request")

    def __repr__(self):
        return f"<ApprovalRequest {self.request_number} - {self.kind.value} - {self.status}>"
