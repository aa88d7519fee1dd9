import os
from datetime import date
from decimal import Decimal

# Keep the app's own engine off disk; tests use the engine fixture below
os.environ.setdefault("DATABASE_URL", "sqlite://")

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import models  # noqa: F401
from app import app, get_mail_transport
from auth import JWT_ALGORITHM, JWT_SECRET
from db import get_session
from models import Client, Project, Service, TimeEntry

ACCOUNT_ID = 1
OTHER_ACCOUNT_ID = 2


class FakeTransport:
    """Records outgoing mail instead of talking to SMTP."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.sent = []

    def __call__(self, subject, body, recipients, attachments=None):
        if self.error:
            raise self.error
        self.sent.append(
            {"subject": subject, "body": body, "recipients": recipients, "attachments": attachments or []}
        )
        return True


@pytest.fixture(scope="function")
def engine():
    """Fresh in-memory database shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def test_session(engine):
    """Create a test database session."""
    with Session(engine) as session:
        yield session


@pytest.fixture(scope="function")
def transport():
    return FakeTransport()


@pytest.fixture(scope="function")
def client(test_session, transport):
    """Create a test client with dependency overrides."""

    def get_test_session():
        yield test_session

    app.dependency_overrides[get_session] = get_test_session
    app.dependency_overrides[get_mail_transport] = lambda: transport
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def auth_headers(account_id: int = ACCOUNT_ID) -> dict:
    token = jwt.encode({"user_id": account_id}, JWT_SECRET, algorithm=JWT_ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_client(test_session):
    def _make(name="Acme Corp", contact="billing@acme.example", account_id=ACCOUNT_ID):
        c = Client(user_id=account_id, name=name, contact=contact)
        test_session.add(c)
        test_session.commit()
        test_session.refresh(c)
        return c

    return _make


@pytest.fixture
def make_project(test_session):
    def _make(client, title="Website Redesign", rate=Decimal("100.00"), due_date=None):
        p = Project(client_id=client.id, title=title, rate=rate, due_date=due_date)
        test_session.add(p)
        test_session.commit()
        test_session.refresh(p)
        return p

    return _make


@pytest.fixture
def make_entry(test_session):
    def _make(project, hours="1", entry_date=date(2024, 1, 15), description=None, billed=False):
        e = TimeEntry(
            project_id=project.id,
            date=entry_date,
            hours=Decimal(hours),
            description=description,
            billed=billed,
        )
        test_session.add(e)
        test_session.commit()
        test_session.refresh(e)
        return e

    return _make


@pytest.fixture
def make_service(test_session):
    def _make(name="Domain setup", fee="250.00", account_id=ACCOUNT_ID):
        s = Service(user_id=account_id, name=name, fee=Decimal(fee))
        test_session.add(s)
        test_session.commit()
        test_session.refresh(s)
        return s

    return _make
