"""
Permission Service
Resolves RBAC permissions and administers role assignments
"""

from sqlalchemy.orm import Session
from typing import FrozenSet, List, Iterable

from approval_portal.database.registry import User, Role, Permission, user_roles, role_permissions
from approval_portal.schemas.workflow import Actor
from approval_portal.utils.exceptions import ValidationError
from approval_portal.utils.logger import setup_logger

logger = setup_logger()


class PermissionService:
    """Service for permission checks and role management"""

    def get_user_permissions(self, db: Session, user_id: int) -> FrozenSet[str]:
        """
        Get every permission code granted to a user through their roles

        Args:
            db: Database session
            user_id: User ID

        Returns:
            Frozen set of permission codes (empty for unknown or inactive users)
        """
        rows = (
            db.query(Permission.code)
            .join(role_permissions, role_permissions.c.permission_id == Permission.id)
            .join(user_roles, user_roles.c.role_id == role_permissions.c.role_id)
            .join(User, User.id == user_roles.c.user_id)
            .filter(User.id == user_id, User.is_active == True)  # noqa: E712
            .distinct()
            .all()
        )
        return frozenset(code for (code,) in rows)

    def has_permission(self, db: Session, user_id: int, permission_code: str) -> bool:
        """Check whether a user holds a permission code"""
        return permission_code in self.get_user_permissions(db, user_id)

    def resolve_actor(self, db: Session, user_id: int) -> Actor:
        """Build an engine Actor with the user's permissions resolved up front"""
        return Actor(id=user_id, permissions=self.get_user_permissions(db, user_id))

    def get_users_with_permission(self, db: Session, permission_code: str) -> List[User]:
        """Active users holding a permission code through any role"""
        return (
            db.query(User)
            .join(user_roles, user_roles.c.user_id == User.id)
            .join(role_permissions, role_permissions.c.role_id == user_roles.c.role_id)
            .join(Permission, Permission.id == role_permissions.c.permission_id)
            .filter(Permission.code == permission_code, User.is_active == True)  # noqa: E712
            .distinct()
            .all()
        )

    # ------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------

    def _get_role(self, db: Session, role_code: str) -> Role:
        role = db.query(Role).filter(Role.code == role_code).first()
        if not role:
            raise ValidationError(f"Unknown role '{role_code}'", fields=["role_code"])
        return role

    def _get_user(self, db: Session, user_id: int) -> User:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise ValidationError(f"Unknown user {user_id}", fields=["user_id"])
        return user

    def assign_role(self, db: Session, user_id: int, role_code: str) -> User:
        """Give a user a role (no-op if already held)"""
        user = self._get_user(db, user_id)
        role = self._get_role(db, role_code)
        if role not in user.roles:
            user.roles.append(role)
            db.flush()
            logger.info(f"Assigned role {role_code} to user {user.username}")
        return user

    def remove_role(self, db: Session, user_id: int, role_code: str) -> User:
        """Take a role away from a user (no-op if not held)"""
        user = self._get_user(db, user_id)
        role = self._get_role(db, role_code)
        if role in user.roles:
            user.roles.remove(role)
            db.flush()
            logger.info(f"Removed role {role_code} from user {user.username}")
        return user

    def set_role_permissions(self, db: Session, role_code: str, permission_codes: Iterable[str]) -> Role:
        """
        Replace the full permission set of a role

        Raises:
            ValidationError: If any code does not exist
        """
        role = self._get_role(db, role_code)
        codes = sorted(set(permission_codes))
        permissions = db.query(Permission).filter(Permission.code.in_(codes)).all() if codes else []

        unknown = sorted(set(codes) - {p.code for p in permissions})
        if unknown:
            raise ValidationError(
                f"Unknown permission codes: {', '.join(unknown)}",
                fields=unknown
            )

        role.permissions = permissions
        db.flush()
        logger.info(f"Role {role_code} now grants {len(permissions)} permissions")
        return role

    def list_roles(self, db: Session) -> List[Role]:
        return db.query(Role).order_by(Role.code).all()

    def list_permissions(self, db: Session) -> List[Permission]:
        return db.query(Permission).order_by(Permission.code).all()


# Create singleton instance
permission_service = PermissionService()
