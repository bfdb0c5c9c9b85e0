"""
Authentication Service
Resolves the calling user from the identity asserted by the portal gateway.

Credentials are verified upstream; requests reach this service with an
X-User-Id header naming the signed-in employee.
"""

from typing import Optional
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from approval_portal.config.database import get_db
from approval_portal.database.registry import User
from approval_portal.services.permission_service import permission_service
from approval_portal.utils.logger import setup_logger

logger = setup_logger()


class AuthService:
    """Authentication service"""

    async def get_current_user(
        self,
        x_user_id: Optional[int] = Header(None),
        db: Session = Depends(get_db)
    ) -> User:
        """
        Get current user from the gateway identity header

        Args:
            x_user_id: Value of the X-User-Id header
            db: Database session

        Returns:
            User: Current user

        Raises:
            HTTPException: 401 if missing or unknown, 403 if inactive
        """
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not identify the calling user"
        )

        if x_user_id is None:
            raise credentials_exception

        user = db.query(User).filter(User.id == x_user_id).first()
        if user is None:
            logger.warning(f"Request with unknown user id {x_user_id}")
            raise credentials_exception

        if not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="User account is inactive"
            )

        return user

    def require_permission(self, permission: str):
        """
        Dependency factory requiring a specific permission code

        Args:
            permission: Required permission code
        """
        async def permission_checker(
            current_user: User = Depends(self.get_current_user),
            db: Session = Depends(get_db)
        ):
            if not permission_service.has_permission(db, current_user.id, permission):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Permission denied: {permission} required"
                )
            return current_user

        return permission_checker


# Create singleton instance
auth_service = AuthService()
