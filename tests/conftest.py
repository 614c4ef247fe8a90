"""
Shared pytest fixtures for the Business Roadmap Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - organization: Pre-created startup Organization
    - other_organization: Second tenant for isolation tests
    - failing_audit_insert: Makes every AuditLog insert fail
"""

import pytest
from sqlalchemy import event

from roadmap import create_app
from roadmap.models import db as _db
from roadmap.models.audit import AuditLog
from roadmap.models.organization import Organization


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


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def organization():
    """A startup-stage organization (Lean Startup methodology)."""
    org = Organization(
        name="Acme Labs",
        slug="acme-labs",
        industry="SaaS",
        business_stage="startup",
        company_size="2-5",
        business_description="Scheduling software for clinics",
        main_objectives="Reach 100 paying clinics",
        biggest_challenge="Customer acquisition",
    )
    _db.session.add(org)
    _db.session.commit()
    return org


@pytest.fixture()
def other_organization():
    """An established company, used in tenant isolation tests."""
    org = Organization(
        name="Globex",
        slug="globex",
        industry="Manufacturing",
        business_stage="consolidated",
        company_size="51-200",
    )
    _db.session.add(org)
    _db.session.commit()
    return org


@pytest.fixture()
def failing_audit_insert():
    """Reject every AuditLog insert at flush time; other rows are unaffected."""
    def _reject(mapper, connection, target):
        raise RuntimeError("audit_logs unavailable")

    event.listen(AuditLog, "before_insert", _reject)
    yield
    event.remove(AuditLog, "before_insert", _reject)
