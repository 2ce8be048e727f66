import os
import uuid
from datetime import date, time

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from civicportal.auth.security import create_access_token
from civicportal.db import Base, enable_sqlite_savepoints, get_db
from civicportal.main import app
from civicportal.models.models import Establishment, Role, User
from civicportal.schemas.activities import ActivityCreate
from civicportal.services import activity_service


@pytest.fixture()
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def establishment(db):
    row = Establishment(name="Maison des Jeunes", sector="youth", commune="Centre")
    db.add(row)
    db.commit()
    return row


@pytest.fixture()
def other_establishment(db):
    row = Establishment(name="Centre Sportif", sector="sport", commune="Nord")
    db.add(row)
    db.commit()
    return row


def _user(db, username, role_names, managed=None):
    roles = []
    for name in role_names:
        role = db.query(Role).filter(Role.name == name).first()
        if role is None:
            role = Role(name=name)
            db.add(role)
        roles.append(role)
    user = User(
        username=username,
        email=f"{username}@example.org",
        managed_establishment_ids=[str(e) for e in (managed or [])],
    )
    user.roles = roles
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def admin(db):
    return _user(db, "admin", ["admin"])


@pytest.fixture()
def coordinator(db, establishment):
    return _user(db, "coordinator", ["coordinator"], managed=[establishment.id])


@pytest.fixture()
def citizen(db):
    return _user(db, "citizen", [])


def auth_headers(user):
    token = create_access_token(str(user.id), [r.name for r in user.roles])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def client(db):
    # One session for the test and the app, so both see the same transaction
    def _get_db():
        try:
            yield db
        finally:
            db.rollback()

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def make_activity(db, establishment, admin):
    def _make(**overrides):
        values = dict(
            establishment_id=establishment.id,
            title="Atelier peinture",
            activity_type="culture",
            date=date(2024, 1, 1),
            start_time=time(9, 0),
            end_time=time(11, 0),
        )
        values.update(overrides)
        activity = activity_service.create_activity(db, ActivityCreate(**values), actor=admin)
        db.commit()
        return activity

    return _make


def virtual_id(parent, day):
    return f"{parent.id}@{day.isoformat()}"


def new_uuid():
    return str(uuid.uuid4())
