"""
Shared pytest fixtures for the Document Lifecycle Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_document helpers and auth_headers()
"""

from datetime import datetime, timedelta, timezone

import pytest

from doclife import create_app
from doclife.models import db as _db

# Fixed clock shared by service tests
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


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


# ── Builders ─────────────────────────────────────────────────────────────


_counter = {"n": 0}


def _next():
    _counter["n"] += 1
    return _counter["n"]


def make_user(*, name=None, role="USER", department=None, is_active=True):
    """Create a User directly in DB."""
    from doclife.models.auth import User
    n = _next()
    user = User(
        email=f"user{n}@example.com",
        name=name or f"User {n}",
        role=role,
        department=department,
        is_active=is_active,
    )
    _db.session.add(user)
    _db.session.commit()
    return user


def make_document(*, author=None, title="Quality Manual", status="PUBLISHED",
                  expires_in=None, department=None):
    """Create a Document directly in DB; ``expires_in`` is a timedelta from NOW."""
    from doclife.models.document import Document
    author = author or make_user()
    doc = Document(
        title=title,
        document_number=f"DOC-{_next():04d}",
        status=status,
        expiration_date=NOW + expires_in if expires_in is not None else None,
        author_id=author.id,
        department=department,
    )
    _db.session.add(doc)
    _db.session.commit()
    return doc


def auth_headers(user):
    return {"X-User-Id": str(user.id)}


def days(n):
    return timedelta(days=n)
