"""
Shared pytest fixtures.

The environment is configured before the application package is imported so
the settings sections validate against test values.
"""

import os

os.environ["ENV"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key-with-at-least-32-characters"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from plenaria_legal.core.constants import (
    PLAN_BASIC, PLAN_PREMIUM, ROLE_ADMIN, ROLE_CUSTOMER, ROLE_LAWYER, USER_ACTIVE, USER_PENDING,
)
from plenaria_legal.core.database import get_db, get_session_factory
from plenaria_legal.core.security import create_access_token, get_password_hash
from plenaria_legal.models import Base, User

NOW = datetime(2024, 5, 15, 12, 0, 0)
PASSWORD = "s3cret-password"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(role=ROLE_CUSTOMER, status=USER_ACTIVE, plan=None, email=None, phone=None):
        counter["n"] += 1
        if role == ROLE_CUSTOMER and plan is None:
            plan = PLAN_BASIC
        user = User(
            email=email or f"{role}{counter['n']}@example.com",
            phone=phone,
            password_hash=get_password_hash(PASSWORD),
            role=role,
            status=status,
            plan=plan,
            created_at=NOW,
            updated_at=NOW,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def customer(make_user):
    return make_user(ROLE_CUSTOMER, plan=PLAN_BASIC)


@pytest.fixture
def premium_customer(make_user):
    return make_user(ROLE_CUSTOMER, plan=PLAN_PREMIUM)


@pytest.fixture
def lawyer(make_user):
    return make_user(ROLE_LAWYER)


@pytest.fixture
def other_lawyer(make_user):
    return make_user(ROLE_LAWYER)


@pytest.fixture
def pending_lawyer(make_user):
    return make_user(ROLE_LAWYER, status=USER_PENDING)


@pytest.fixture
def admin(make_user):
    return make_user(ROLE_ADMIN)


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def client(session_factory):
    from plenaria_legal.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
