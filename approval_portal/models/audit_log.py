"""
Audit Log Model
Tracks every committed workflow transition for compliance
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship
from datetime import datetime

from approval_portal.config.database import Base


class AuditLog(Base):
    """Audit log model"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    # User who performed the action
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Action details
    action = Column(String, nullable=False)  # e.g. "approve", "resubmit", "rbac.assign_role"
    entity_type = Column(String, nullable=False)  # e.g. "approval_request", "role"
    entity_id = Column(Integer, nullable=True)

    description = Column(Text, nullable=False)
    changes = Column(JSON, nullable=True)  # {"status": [before, after]}

    request_id = Column(Integer, ForeignKey("approval_requests.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="audit_logs")
    request = relationship("ApprovalRequest", back_populates="audit_logs")

    def __repr__(self):
        return f"<AuditLog {self.action} by User {self.user_id}>"
