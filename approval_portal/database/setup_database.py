"""
Database Setup Script
Creates all tables, workflow permissions, standard roles and demo users
"""

from sqlalchemy.orm import Session

from approval_portal.config.database import SessionLocal
from approval_portal.config.workflows import all_stage_permissions, RBAC_MANAGE_PERMISSION
from approval_portal.database.registry import create_tables, User, Role, Permission
from approval_portal.utils.logger import setup_logger

logger = setup_logger()


# role code -> (name, permission codes)
STANDARD_ROLES = {
    "unit_manager": ("Unit Manager", ["payment.approve.manager"]),
    "accountant": ("Accountant", ["payment.approve.accountant"]),
    "audit_manager": ("Audit Manager", ["payment.approve.audit_manager"]),
    "cashier": ("Cashier", ["payment.approve.cashier"]),
    "boss": ("Release Manager", ["payment.approve.boss"]),
    "purchasing": ("Purchasing", ["erp.product_request.approve.purchasing"]),
    "dept_manager": ("Department Manager", ["erp.product_request.approve.dept_manager"]),
    "erp_reviewer": ("ERP Reviewer", ["erp.product_request.approve.review"]),
    "erp_creator": ("ERP Creator", ["erp.product_request.approve.create", "erp.supplier.approve.creator"]),
    "finance": ("Finance", ["erp.supplier.approve.finance"]),
    "erp_accounting": ("ERP Accounting", ["erp.supplier.approve.accounting"]),
    "admin": ("Administrator", [RBAC_MANAGE_PERMISSION]),
}

DEMO_USERS = [
    ("admin", "System Administrator", "IT", ["admin"]),
    ("manager", "Unit Manager", "Operations", ["unit_manager"]),
    ("accountant", "Staff Accountant", "Finance", ["accountant"]),
    ("auditor", "Audit Manager", "Audit", ["audit_manager"]),
    ("cashier", "Cashier", "Finance", ["cashier"]),
    ("boss", "Release Manager", "Management", ["boss"]),
    ("employee", "Regular Employee", "Operations", []),
]


def create_permissions(db: Session) -> int:
    """Create every workflow permission plus rbac.manage; returns how many were added"""
    wanted = dict(all_stage_permissions())
    wanted[RBAC_MANAGE_PERMISSION] = "Administer roles and permissions"

    existing = {code for (code,) in db.query(Permission.code).all()}
    added = 0
    for code, description in sorted(wanted.items()):
        if code in existing:
            continue
        db.add(Permission(code=code, module=code.split(".")[0], description=description))
        added += 1
    db.flush()
    logger.info(f"Permissions ready ({added} added)")
    return added


def create_roles(db: Session) -> int:
    """Create the standard roles with their permission sets; returns how many were added"""
    permissions = {p.code: p for p in db.query(Permission).all()}
    added = 0
    for code, (name, permission_codes) in STANDARD_ROLES.items():
        if db.query(Role).filter(Role.code == code).first():
            continue
        db.add(Role(
            code=code,
            name=name,
            permissions=[permissions[c] for c in permission_codes]
        ))
        added += 1
    db.flush()
    logger.info(f"Roles ready ({added} added)")
    return added


def create_demo_users(db: Session) -> int:
    """Create one demo user per standard approver role"""
    if db.query(User).first():
        logger.info("Users already exist, skipping demo users")
        return 0

    roles = {r.code: r for r in db.query(Role).all()}
    for idx, (username, full_name, department, role_codes) in enumerate(DEMO_USERS, start=1):
        db.add(User(
            username=username,
            full_name=full_name,
            employee_id=f"EMP{idx:03d}",
            department=department,
            is_active=True,
            roles=[roles[c] for c in role_codes]
        ))
    db.flush()
    logger.info(f"Created {len(DEMO_USERS)} demo users")
    return len(DEMO_USERS)


def seed(db: Session, with_demo_users: bool = True):
    """Create permissions, roles and optionally demo users, then commit"""
    try:
        create_permissions(db)
        create_roles(db)
        if with_demo_users:
            create_demo_users(db)
        db.commit()
    except Exception:
        db.rollback()
        raise


def main():
    """Run database setup"""
    logger.info("Setting up Approval Portal database...")
    create_tables()

    db = SessionLocal()
    try:
        seed(db)
    finally:
        db.close()

    logger.info("Database setup completed")


if __name__ == "__main__":
    main()
