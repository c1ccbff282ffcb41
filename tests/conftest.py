"""
Shared pytest fixtures for the Unit Escalation Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - now: Fixed "current time" shared by a test's service calls
    - org / other_org: A tenant with one user per role, a program and a workstream
    - make_unit: Factory for units inside a given org
    - auth_header: Builds a Bearer JWT header for a user
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from app import create_app
from app.models import db as _db
from app.models.auth import (
    CLIENT_VIEWER,
    FIELD_CONTRIBUTOR,
    PLATFORM_ADMIN,
    PROGRAM_OWNER,
    WORKSTREAM_LEAD,
    Tenant,
    User,
)
from app.models.program import Program, Workstream
from app.models.unit import Unit
from app.services.jwt_service import generate_access_token
from app.services.tenant_guard import Principal

FIXED_NOW = datetime(2025, 6, 2, 12, 0, tzinfo=timezone.utc)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def now():
    return FIXED_NOW


# ── Organization fixtures ────────────────────────────────────────────────


def _make_org(slug: str) -> SimpleNamespace:
    """Tenant + one active user per role + program + workstream."""
    tenant = Tenant(name=slug.title(), slug=slug)
    _db.session.add(tenant)
    _db.session.flush()

    users = {}
    for role, local in (
        (PROGRAM_OWNER, "owner"),
        (WORKSTREAM_LEAD, "lead"),
        (FIELD_CONTRIBUTOR, "field"),
        (CLIENT_VIEWER, "client"),
    ):
        user = User(
            tenant_id=tenant.id,
            email=f"{local}@{slug}.example.com",
            full_name=f"{local.title()} {slug}",
            role=role,
        )
        _db.session.add(user)
        users[role] = user
    _db.session.flush()

    program = Program(tenant_id=tenant.id, name=f"{slug} rollout", owner_id=users[PROGRAM_OWNER].id)
    _db.session.add(program)
    _db.session.flush()
    workstream = Workstream(
        tenant_id=tenant.id, program_id=program.id, name="Site works",
        lead_id=users[WORKSTREAM_LEAD].id,
    )
    _db.session.add(workstream)
    _db.session.flush()

    return SimpleNamespace(
        tenant=tenant,
        program=program,
        workstream=workstream,
        users=users,
        owner=users[PROGRAM_OWNER],
        lead=users[WORKSTREAM_LEAD],
        field=users[FIELD_CONTRIBUTOR],
        client=users[CLIENT_VIEWER],
    )


@pytest.fixture()
def org():
    return _make_org("acme")


@pytest.fixture()
def other_org():
    return _make_org("globex")


@pytest.fixture()
def platform_admin(org):
    """Platform admin whose home tenant is ``org``."""
    user = User(
        tenant_id=org.tenant.id,
        email="admin@platform.example.com",
        full_name="Platform Admin",
        role=PLATFORM_ADMIN,
    )
    _db.session.add(user)
    _db.session.flush()
    return user


@pytest.fixture()
def make_unit(now):
    """Factory: ``make_unit(org, **overrides)`` → flushed Unit."""

    def _make(org, **overrides):
        fields = {
            "tenant_id": org.tenant.id,
            "workstream_id": org.workstream.id,
            "title": "Install switchgear",
            "created_at": now - timedelta(days=5),
            "deadline": now + timedelta(days=5),
        }
        fields.update(overrides)
        unit = Unit(**fields)
        _db.session.add(unit)
        _db.session.flush()
        return unit

    return _make


def principal_for(user: User) -> Principal:
    return Principal.from_user(user)


@pytest.fixture()
def as_principal():
    return principal_for


@pytest.fixture()
def auth_header(app):
    """Build an ``Authorization: Bearer <jwt>`` header for a user."""

    def _header(user: User) -> dict:
        token = generate_access_token(user.id, user.tenant_id, user.role, user.email)
        return {"Authorization": f"Bearer {token}"}

    return _header
