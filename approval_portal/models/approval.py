"""
Approval Model
Append-only log of sign-offs and rejections on approval requests
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum, ForeignKey, Text, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime

from approval_portal.config.database import Base
from approval_portal.schemas.workflow import WorkflowAction


class ApprovalEntryRecord(Base):
    """Approval log entry; rows are only ever inserted"""
    __tablename__ = "approval_entries"

    id = Column(Integer, primary_key=True, index=True)

    request_id = Column(Integer, ForeignKey("approval_requests.id"), nullable=False, index=True)
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    cycle = Column(Integer, nullable=False, default=1)
    stage = Column(String, nullable=False)
    action = Column(Enum(WorkflowAction), nullable=False)
    comment = Column(Text, nullable=True)

    # Entries written by the skip rule rather than a person
    is_system = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    request = relationship("ApprovalRequest", back_populates="approvals")
    actor = relationship("User", foreign_keys=[actor_id])

    def __repr__(self):
        return f"<ApprovalEntry {self.stage} - {self.action.value}>"
