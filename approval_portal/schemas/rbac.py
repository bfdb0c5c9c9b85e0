"""
RBAC Schemas
Pydantic models for role and permission administration
"""

from pydantic import BaseModel, Field
from typing import Optional, List


class RoleAssignment(BaseModel):
    """Schema for assigning or removing a role"""
    role_code: str = Field(..., min_length=1)


class RolePermissionsUpdate(BaseModel):
    """Schema for replacing a role's permission set"""
    permission_codes: List[str]


class PermissionResponse(BaseModel):
    """Schema for permission response"""
    id: int
    code: str
    module: Optional[str] = None
    description: Optional[str] = None

    class Config:
        from_attributes = True


class RoleResponse(BaseModel):
    """Schema for role response"""
    id: int
    code: str
    name: str
    description: Optional[str] = None
    permissions: List[str] = Field(default_factory=list)


class UserPermissionsResponse(BaseModel):
    """Schema for a user's roles and resolved permissions"""
    user_id: int
    username: str
    roles: List[str]
    permissions: List[str]
