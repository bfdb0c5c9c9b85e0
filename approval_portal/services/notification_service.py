"""
Notification Service
Creates in-app notifications for workflow transitions
"""

from sqlalchemy.orm import Session

from approval_portal.config.settings import settings
from approval_portal.config.workflows import get_workflow
from approval_portal.database.registry import Notification
from approval_portal.models.notification import NotificationType
from approval_portal.schemas.workflow import RequestState
from approval_portal.services.permission_service import permission_service
from approval_portal.utils.logger import setup_logger

logger = setup_logger()


class NotificationService:
    """Service for managing notifications"""

    def notify_approval_required(self, db: Session, request: RequestState) -> int:
        """
        Notify every holder of the current stage's permission

        Args:
            db: Database session
            request: Request that just entered a pending stage

        Returns:
            int: Number of notifications created
        """
        if not settings.NOTIFICATIONS_ENABLED:
            return 0

        stage = get_workflow(request.kind).get_stage(request.status)
        if not stage:
            logger.warning(f"No pending stage for {request.request_number} in status {request.status}")
            return 0

        approvers = permission_service.get_users_with_permission(db, stage.required_permission)
        if not approvers:
            logger.warning(
                f"No active holders of {stage.required_permission} to notify for {request.request_number}"
            )
            return 0

        for approver in approvers:
            db.add(Notification(
                user_id=approver.id,
                type=NotificationType.APPROVAL_REQUIRED,
                title="Request Awaiting Your Sign-off",
                message=f"{request.kind.value} request {request.request_number} is waiting at {stage.label}.",
                request_id=request.id
            ))

        logger.info(f"Notified {len(approvers)} approvers of {stage.name} for {request.request_number}")
        return len(approvers)

    def notify_request_completed(self, db: Session, request: RequestState):
        """Tell the submitter their request passed every stage"""
        if not settings.NOTIFICATIONS_ENABLED:
            return

        db.add(Notification(
            user_id=request.submitter_id,
            type=NotificationType.REQUEST_COMPLETED,
            title="Request Completed",
            message=f"Your {request.kind.value} request {request.request_number} has been fully approved.",
            request_id=request.id
        ))
        logger.info(f"Notified user {request.submitter_id} that {request.request_number} completed")

    def notify_request_rejected(self, db: Session, request: RequestState):
        """Tell the submitter their request was rejected and why"""
        if not settings.NOTIFICATIONS_ENABLED:
            return

        db.add(Notification(
            user_id=request.submitter_id,
            type=NotificationType.REQUEST_REJECTED,
            title="Request Rejected",
            message=f"Your {request.kind.value} request {request.request_number} was rejected: {request.rejection_reason}",
            request_id=request.id
        ))
        logger.info(f"Notified user {request.submitter_id} that {request.request_number} was rejected")


# Create singleton instance
notification_service = NotificationService()
