"""
Notification Routes
User notification management endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from datetime import datetime

from approval_portal.config.database import get_db
from approval_portal.database.registry import User, Notification
from approval_portal.services.auth_service import auth_service
from approval_portal.utils.logger import setup_logger

logger = setup_logger()
router = APIRouter()


@router.get("/my-notifications")
async def get_my_notifications(
    unread_only: bool = False,
    skip: int = 0,
    limit: int = 50,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """
    Get current user's notifications

    **Parameters:**
    - unread_only: If True, only return unread notifications
    - skip: Number of records to skip (pagination)
    - limit: Maximum number of records to return
    """
    query = db.query(Notification).filter(Notification.user_id == current_user.id)

    if unread_only:
        query = query.filter(Notification.is_read == False)  # noqa: E712

    total_count = query.count()

    notifications = query.order_by(
        Notification.created_at.desc(), Notification.id.desc()
    ).offset(skip).limit(limit).all()

    unread_count = db.query(Notification).filter(
        Notification.user_id == current_user.id,
        Notification.is_read == False  # noqa: E712
    ).count()

    notifications_list = []
    for notif in notifications:
        notifications_list.append({
            "id": notif.id,
            "type": notif.type.value,
            "title": notif.title,
            "message": notif.message,
            "request_id": notif.request_id,
            "request_number": notif.request.request_number if notif.request else None,
            "request_status": notif.request.status if notif.request else None,
            "is_read": notif.is_read,
            "read_at": notif.read_at.isoformat() if notif.read_at else None,
            "created_at": notif.created_at.isoformat()
        })

    logger.info(f"User {current_user.username} fetched {len(notifications_list)} notifications (unread: {unread_count})")

    return {
        "success": True,
        "total": total_count,
        "unread_count": unread_count,
        "notifications": notifications_list
    }


@router.put("/{notification_id}/read")
async def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Mark one of your notifications as read"""
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == current_user.id
    ).first()

    if not notification:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found"
        )

    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.utcnow()
        db.commit()

    return {"success": True, "id": notification.id, "is_read": True}


@router.put("/mark-all-read")
async def mark_all_notifications_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Mark all of your notifications as read"""
    updated = db.query(Notification).filter(
        Notification.user_id == current_user.id,
        Notification.is_read == False  # noqa: E712
    ).update({"is_read": True, "read_at": datetime.utcnow()}, synchronize_session=False)
    db.commit()

    logger.info(f"User {current_user.username} marked {updated} notifications as read")
    return {"success": True, "updated": updated}
