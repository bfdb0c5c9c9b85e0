"""
Shared test database, dependency override and fixtures
"""

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from approval_portal.main import app
from approval_portal.config.database import get_db
from approval_portal.database.registry import create_tables, drop_tables, User
from approval_portal.database.setup_database import seed
from approval_portal.services.permission_service import permission_service

# Test database
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    """Override database dependency for testing"""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


def user_id(username: str) -> int:
    """Look up a seeded user's id"""
    db = TestingSessionLocal()
    try:
        return db.query(User).filter(User.username == username).first().id
    finally:
        db.close()


def add_user(username: str, role_codes=()) -> int:
    """Create an extra user holding the given roles"""
    db = TestingSessionLocal()
    try:
        user = User(username=username, full_name=username.title(), department="Testing", is_active=True)
        db.add(user)
        db.flush()
        for code in role_codes:
            permission_service.assign_role(db, user.id, code)
        db.commit()
        return user.id
    finally:
        db.close()


@pytest.fixture(scope="function")
def test_db():
    """Create test database"""
    create_tables(bind=engine)
    yield
    drop_tables(bind=engine)


@pytest.fixture
def seeded_db(test_db):
    """Test database with permissions, standard roles and demo users"""
    db = TestingSessionLocal()
    seed(db)
    db.close()
    yield
