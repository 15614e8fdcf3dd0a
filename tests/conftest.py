"""
Test configuration and fixtures.

The database URL and feature switches are set through environment
variables before the package is imported, so the engine, limiter and
settings all pick up the test values.
"""

import os
import tempfile

test_db_dir = tempfile.mkdtemp(prefix="doctrack-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(test_db_dir, 'test.db')}"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["GEOIP_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["IP_HASH_SALT"] = "test-salt"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import datetime
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from doctrack.core.security import create_access_token, get_password_hash
from doctrack.core.tokens import generate_share_token
from doctrack.database import Base, SessionLocal, engine
from doctrack.models import Document, ShareLink, User

VIEWER_IP = "203.0.113.10"
CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


@pytest.fixture(autouse=True)
def reset_database():
    """Fresh tables for every test"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    from doctrack.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def owner(db) -> User:
    user = User(email="owner@example.com")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin(db) -> User:
    user = User(email="ops@example.com", is_admin=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def owner_headers(owner) -> dict:
    return auth_headers(owner)


@pytest.fixture
def admin_headers(admin) -> dict:
    return auth_headers(admin)


@pytest.fixture
def document(db, owner) -> Document:
    doc = Document(owner_id=owner.id, title="Series A deck", storage_key="decks/series-a.pdf")
    db.add(doc)
    db.commit()
    db.refresh(doc)
    return doc


@pytest.fixture
def make_link(db, document):
    """Factory for share links on the default document"""

    def _make(password=None, document_id=None, **fields) -> ShareLink:
        link = ShareLink(
            document_id=document_id or document.id,
            share_token=fields.pop("share_token", None) or generate_share_token(db=db),
            password_hash=get_password_hash(password) if password else None,
            **fields
        )
        db.add(link)
        db.commit()
        db.refresh(link)
        return link

    return _make


@pytest.fixture
def link(make_link) -> ShareLink:
    return make_link()


def open_session(client: TestClient, share_token: str, ip: str = VIEWER_IP, user_agent: str = CHROME_UA, **body):
    """POST to the access endpoint as a viewer"""
    return client.post(
        f"/share/{share_token}/access",
        json=body,
        headers={"X-Forwarded-For": ip, "User-Agent": user_agent},
    )


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 6, 15, 12, 0, 0)
