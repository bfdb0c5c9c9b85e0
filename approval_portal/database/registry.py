"""
Model Registry
Imports every mapped class so relationship strings resolve, and creates tables
"""

from approval_portal.config.database import Base, engine
from approval_portal.models.rbac import Role, Permission, user_roles, role_permissions  # noqa: F401
from approval_portal.models.user import User  # noqa: F401
from approval_portal.models.approval_request import ApprovalRequest  # noqa: F401
from approval_portal.models.approval import ApprovalEntryRecord  # noqa: F401
from approval_portal.models.audit_log import AuditLog  # noqa: F401
from approval_portal.models.notification import Notification  # noqa: F401
from approval_portal.models.supplier import Supplier  # noqa: F401


def create_tables(bind=None):
    """Create all tables on the given engine (defaults to the app engine)"""
    Base.metadata.create_all(bind=bind or engine)


def drop_tables(bind=None):
    """Drop all tables on the given engine"""
    Base.metadata.drop_all(bind=bind or engine)
