"""
Shared fixtures: an in-memory SQLite database, a TestClient and a mail
outbox that captures everything the email task would have sent
"""

import os
import re
from types import SimpleNamespace
from typing import Dict, List, Optional

# Settings are read at import time
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"
os.environ["EMAIL_DELIVERY"] = "console"
os.environ["API_RATE_LIMIT"] = "10000"
os.environ["SECRET_KEY"] = "test-secret-key-for-the-suite-0123456789"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-for-the-suite-0123456789"
os.environ["FRONTEND_URL"] = "http://frontend.test"
os.environ["GOOGLE_CLIENT_ID"] = "google-client-id"
os.environ["GOOGLE_CLIENT_SECRET"] = "google-client-secret"
os.environ["FACEBOOK_CLIENT_ID"] = "facebook-client-id"
os.environ["FACEBOOK_CLIENT_SECRET"] = "facebook-client-secret"

import pytest
from fastapi.testclient import TestClient

from tenant_auth.core.database import SessionLocal, engine
from tenant_auth.main import app
from tenant_auth.models import Base

API = "/api/v1"
PASSWORD = "Passw0rd!"

_LINK_RE = re.compile(r"token=([0-9a-f]+)&uid=([0-9a-f-]+)")


@pytest.fixture(autouse=True)
def _tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


class Outbox:
    """Messages handed to the mail transport during a test"""

    def __init__(self):
        self.messages: List[Dict[str, str]] = []

    def __call__(self, to, subject, html_body, text_body):
        self.messages.append({"to": to, "subject": subject, "html": html_body, "text": text_body})

    def last_for(self, to: str) -> Dict[str, str]:
        matching = [m for m in self.messages if m["to"] == to]
        assert matching, f"no mail sent to {to}"
        return matching[-1]

    def link_params(self, to: str):
        """(token, uid) from the most recent link mailed to an address"""
        match = _LINK_RE.search(self.last_for(to)["text"])
        assert match, "no link in message"
        return match.group(1), match.group(2)


@pytest.fixture
def outbox(monkeypatch):
    box = Outbox()
    monkeypatch.setattr("tenant_auth.tasks.email_tasks.deliver_email", box)
    return box


def signup(client: TestClient, email: str, password: str = PASSWORD, tenant_slug: Optional[str] = None, name=None):
    payload = {"email": email, "password": password}
    if tenant_slug is not None:
        payload["tenant_slug"] = tenant_slug
    if name is not None:
        payload["name"] = name
    return client.post(f"{API}/auth/signup", json=payload)


def confirm(client: TestClient, outbox: Outbox, email: str):
    token, uid = outbox.link_params(email)
    return client.get(f"{API}/auth/confirm-email", params={"token": token, "uid": uid})


def login(client: TestClient, email: str, password: str = PASSWORD, tenant_id=None):
    payload = {"email": email, "password": password}
    if tenant_id is not None:
        payload["tenant_id"] = str(tenant_id)
    return client.post(f"{API}/auth/login", json=payload)


def register(client: TestClient, outbox: Outbox, email: str, tenant_slug: Optional[str] = None) -> dict:
    """Sign up, confirm and log in; returns the login body"""
    assert signup(client, email, tenant_slug=tenant_slug).status_code == 201
    assert confirm(client, outbox, email).status_code == 200
    response = login(client, email)
    assert response.status_code == 200, response.text
    return response.json()


def auth_header(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def helpers():
    return SimpleNamespace(
        API=API,
        PASSWORD=PASSWORD,
        signup=signup,
        confirm=confirm,
        login=login,
        register=register,
        auth_header=auth_header,
    )
