"""
Notification Model
In-app notifications about approval requests
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean, Enum
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from approval_portal.config.database import Base


class NotificationType(str, enum.Enum):
    """Notification types"""
    APPROVAL_REQUIRED = "approval_required"
    REQUEST_COMPLETED = "request_completed"
    REQUEST_REJECTED = "request_rejected"
    SYSTEM = "system"


class Notification(Base):
    """Notification model"""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    type = Column(Enum(NotificationType), nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)

    request_id = Column(Integer, ForeignKey("approval_requests.id"), nullable=True)

    is_read = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    read_at = Column(DateTime, nullable=True)

    # Relationships
    user = relationship("User", back_populates="notifications")
    request = relationship("ApprovalRequest", foreign_keys=[request_id], lazy="select")

    def __repr__(self):
        return f"<Notification {self.type.value} - User {self.user_id}>"
