# clientlane/conftest.py
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import insert

from clientlane.core.auth import create_session_token
from clientlane.core.database import Database, files, new_id, portals, subscriptions
from clientlane.features.mailer.service import RecordingMailer
from clientlane.features.plans.service import seed_plans
from clientlane.features.users.service import create_user
from clientlane.models.user import Role

MB = 1024 * 1024
TEST_PASSWORD = "correct-horse-battery"


@pytest.fixture
def db():
    """
    Fresh in-memory database per test.

    The in-memory URL gets a StaticPool, so every session (and the app's
    worker threads) share one connection and see the same data.
    """
    database = Database("sqlite+pysqlite:///:memory:")
    database.create_all()
    seed_plans(database)
    yield database
    database.drop_all()
    database.dispose()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def billing():
    """No billing provider by default (billing disabled)."""
    return None


@pytest.fixture
def app(db, mailer, billing):
    from clientlane.main import create_app

    return create_app(database=db, mailer=mailer, billing=billing)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def now():
    return datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def auth_headers(user: dict) -> dict:
    token = create_session_token(user["id"], user["email"], user["role"], name=user["name"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(db):
    """Create a user and return {id, email, name, role, headers}."""

    def _make(email: str, role: Role = Role.FREELANCER, name: str = "Test User", password: str = TEST_PASSWORD):
        with db.session() as session:
            user_id = create_user(session, email=email, name=name, role=role, password=password)
        user = {"id": user_id, "email": email.lower(), "name": name, "role": Role(role)}
        user["headers"] = auth_headers(user)
        return user

    return _make


@pytest.fixture
def freelancer(make_user):
    return make_user("freelancer@studio.io", Role.FREELANCER, name="Fran Lancer")


@pytest.fixture
def subscribe(db):
    """Insert a subscription row for a catalog plan id."""

    def _subscribe(user_id: str, plan_id: str, *, starts_at=None, ends_at=None, is_active: bool = True):
        starts_at = starts_at or datetime.now(timezone.utc) - timedelta(days=1)
        ends_at = ends_at or datetime.now(timezone.utc) + timedelta(days=30)
        with db.session() as session:
            session.execute(
                insert(subscriptions).values(
                    id=new_id(),
                    user_id=user_id,
                    plan_id=plan_id,
                    starts_at=starts_at,
                    ends_at=ends_at,
                    is_active=is_active,
                )
            )

    return _subscribe


@pytest.fixture
def make_portal(db):
    """Insert a portal row directly, bypassing admission checks."""

    def _make(owner_id: str, client_id=None, name: str = "Website Redesign"):
        portal_id = new_id()
        with db.session() as session:
            session.execute(
                insert(portals).values(id=portal_id, name=name, created_by=owner_id, client_id=client_id)
            )
        return portal_id

    return _make


@pytest.fixture
def add_file(db):
    """Insert file metadata directly; ``size`` is in bytes."""

    def _add(portal_id: str, user_id: str, size: int, name: str = "brief.pdf"):
        with db.session() as session:
            session.execute(
                insert(files).values(
                    id=new_id(),
                    portal_id=portal_id,
                    user_id=user_id,
                    file_name=name,
                    file_url=f"https://cdn.example.com/{name}",
                    file_size=size,
                )
            )

    return _add
