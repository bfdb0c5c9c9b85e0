"""
Admin Routes
RBAC administration endpoints, guarded by the rbac.manage permission
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from approval_portal.config.database import get_db
from approval_portal.config.workflows import RBAC_MANAGE_PERMISSION
from approval_portal.database.registry import User, AuditLog
from approval_portal.schemas.rbac import (
    RoleAssignment,
    RolePermissionsUpdate,
    RoleResponse,
    PermissionResponse,
    UserPermissionsResponse,
)
from approval_portal.services.auth_service import auth_service
from approval_portal.services.permission_service import permission_service
from approval_portal.utils.logger import setup_logger, log_audit

logger = setup_logger()
router = APIRouter()

require_rbac_admin = auth_service.require_permission(RBAC_MANAGE_PERMISSION)


def _role_response(role) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        code=role.code,
        name=role.name,
        description=role.description,
        permissions=sorted(p.code for p in role.permissions)
    )


def _user_permissions_response(db: Session, user: User) -> UserPermissionsResponse:
    return UserPermissionsResponse(
        user_id=user.id,
        username=user.username,
        roles=sorted(r.code for r in user.roles),
        permissions=sorted(permission_service.get_user_permissions(db, user.id))
    )


@router.get("/rbac/roles")
async def list_roles(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_rbac_admin)
):
    """List roles with their permission codes"""
    return [_role_response(role) for role in permission_service.list_roles(db)]


@router.get("/rbac/permissions")
async def list_permissions(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_rbac_admin)
):
    """List every permission code"""
    return [PermissionResponse.model_validate(p) for p in permission_service.list_permissions(db)]


@router.put("/rbac/roles/{role_code}/permissions")
async def update_role_permissions(
    role_code: str,
    update_data: RolePermissionsUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_rbac_admin)
):
    """Replace the permission set of a role"""
    try:
        role = permission_service.set_role_permissions(db, role_code, update_data.permission_codes)
        db.add(AuditLog(
            user_id=current_user.id,
            action="rbac.set_role_permissions",
            entity_type="role",
            entity_id=role.id,
            description=f"Role {role_code} permissions replaced",
            changes={"permissions": sorted(update_data.permission_codes)}
        ))
        db.commit()
    except Exception:
        db.rollback()
        raise

    log_audit(current_user.id, "rbac.set_role_permissions", f"{role_code}: {len(update_data.permission_codes)} codes")
    return _role_response(role)


@router.get("/rbac/users/{user_id}")
async def get_user_permissions(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_rbac_admin)
):
    """A user's roles and resolved permissions"""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return _user_permissions_response(db, user)


@router.post("/rbac/users/{user_id}/roles")
async def assign_role(
    user_id: int,
    assignment: RoleAssignment,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_rbac_admin)
):
    """Assign a role to a user"""
    try:
        user = permission_service.assign_role(db, user_id, assignment.role_code)
        db.add(AuditLog(
            user_id=current_user.id,
            action="rbac.assign_role",
            entity_type="user",
            entity_id=user_id,
            description=f"Assigned {assignment.role_code} to {user.username}"
        ))
        db.commit()
    except Exception:
        db.rollback()
        raise

    log_audit(current_user.id, "rbac.assign_role", f"user={user_id} role={assignment.role_code}")
    return _user_permissions_response(db, user)


@router.delete("/rbac/users/{user_id}/roles/{role_code}")
async def remove_role(
    user_id: int,
    role_code: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_rbac_admin)
):
    """Remove a role from a user"""
    try:
        user = permission_service.remove_role(db, user_id, role_code)
        db.add(AuditLog(
            user_id=current_user.id,
            action="rbac.remove_role",
            entity_type="user",
            entity_id=user_id,
            description=f"Removed {role_code} from {user.username}"
        ))
        db.commit()
    except Exception:
        db.rollback()
        raise

    log_audit(current_user.id, "rbac.remove_role", f"user={user_id} role={role_code}")
    return _user_permissions_response(db, user)
