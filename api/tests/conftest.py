import os
from typing import Dict

import pytest
from fastapi.testclient import TestClient
from minio.error import S3Error
from sqlmodel import SQLModel, Session, create_engine

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("ADMIN_ACCESS_TOKEN", "admin-test-token")
os.environ.setdefault("SECRET_KEY", "test-secret")

from roofdesk.main import app  # noqa: E402
from roofdesk import db as db_module  # noqa: E402
from roofdesk.db import get_session  # noqa: E402
from roofdesk import notifications as notifications_module  # noqa: E402
from roofdesk import receipts as receipts_module  # noqa: E402
from roofdesk import storage as storage_module  # noqa: E402
from roofdesk import worker as worker_module  # noqa: E402
from roofdesk.routers import documents as documents_router  # noqa: E402
from roofdesk.enums import PERMISSION_LEVELS, Role  # noqa: E402
from roofdesk.identity import Principal, issue_session_token  # noqa: E402
from roofdesk.models import Branch, Customer  # noqa: E402

ADMIN_HEADERS = {"X-Access-Token": os.environ["ADMIN_ACCESS_TOKEN"]}


def make_principal(role: Role, branch_id=None, customer_id=None, company_id=None, subject_id=None) -> Principal:
    return Principal(
        subject_id=subject_id or f"{role.value}-user",
        role=role,
        permission_level=PERMISSION_LEVELS[role],
        branch_id=branch_id,
        customer_id=customer_id,
        company_id=company_id,
    )


def headers_for(principal: Principal) -> dict:
    return {"X-Access-Token": issue_session_token(principal.subject_id, principal.to_claims())}


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    return engine


@pytest.fixture
def setup_db(test_engine):
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def session(test_engine, setup_db):
    db_module.engine = test_engine
    with Session(test_engine) as s:
        yield s


@pytest.fixture
def mock_storage(monkeypatch) -> Dict[str, bytes]:
    store: Dict[str, bytes] = {}

    def fake_put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
        store[key] = bytes(data)

    def fake_get_bytes(key: str) -> bytes:
        if key not in store:
            raise S3Error("NoSuchKey", "missing", f"/{key}", "test-request", "test-host", None)
        return store[key]

    for target in (storage_module, receipts_module, documents_router):
        if hasattr(target, "put_bytes"):
            monkeypatch.setattr(target, "put_bytes", fake_put_bytes)
        if hasattr(target, "get_bytes"):
            monkeypatch.setattr(target, "get_bytes", fake_get_bytes)
    return store


@pytest.fixture
def sent_emails(monkeypatch):
    messages = []

    def fake_send_email(to, subject, body, html_body=None, sender_name=None, reply_to=None):
        messages.append(
            {
                "to": to,
                "subject": subject,
                "text": body,
                "html": html_body,
                "reply_to": reply_to,
            }
        )

    monkeypatch.setattr(notifications_module, "send_email", fake_send_email)
    return messages


class QueuedTask:
    def __init__(self):
        self.calls = []

    def delay(self, *args):
        self.calls.append(args)


@pytest.fixture
def queued_archives(monkeypatch) -> QueuedTask:
    task = QueuedTask()
    monkeypatch.setattr(worker_module, "archive_receipt", task)
    return task


@pytest.fixture
def client(test_engine, setup_db, mock_storage, sent_emails, queued_archives):
    db_module.engine = test_engine

    def override_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def two_branches(session):
    b1 = Branch(name="North")
    b2 = Branch(name="South")
    session.add(b1)
    session.add(b2)
    session.commit()
    c1 = Customer(name="Alice Roofs", branch_id=b1.id)
    c1.customer_id = c1.id
    c2 = Customer(name="Bob Gutters", branch_id=b2.id)
    c2.customer_id = c2.id
    session.add(c1)
    session.add(c2)
    session.commit()
    for row in (b1, b2, c1, c2):
        session.refresh(row)
    return {"b1": b1, "b2": b2, "c1": c1, "c2": c2}
