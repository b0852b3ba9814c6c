import re
from datetime import timedelta
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import pytest
from fastapi.testclient import TestClient

from eshop_api.core.app_factory import create_application
from eshop_api.core.config import Settings
from eshop_api.core.errors import EmailDeliveryError
from eshop_api.core.utils import utcnow
from eshop_api.domain.models import USER_ENTITY
from eshop_api.infrastructure.persistence.sqlite import SQLiteDocumentStore

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-pass-123"

_CODE_IN_BODY = re.compile(r">\s*(\d+)\s*</div>")


class FakeEmailSender:
    """Records outgoing mail instead of talking to SMTP; ``fail`` simulates a transport outage."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, str]] = []
        self.fail = False

    async def send(self, to: str, subject: str, html: str) -> None:
        if self.fail:
            raise EmailDeliveryError("SMTP unavailable")
        self.sent.append({"to": to, "subject": subject, "html": html})

    def last_code(self, to: Optional[str] = None) -> str:
        messages = [message for message in self.sent if to is None or message["to"] == to]
        assert messages, f"no email sent to {to}"
        match = _CODE_IN_BODY.search(messages[-1]["html"])
        assert match, "no code found in email body"
        return match.group(1)


class FrozenClock:
    def __init__(self) -> None:
        self.now = utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def store(tmp_path: Path) -> Iterator[SQLiteDocumentStore]:
    document_store = SQLiteDocumentStore(tmp_path / "store.db")
    yield document_store
    document_store.close()


@pytest.fixture
def users(store: SQLiteDocumentStore):
    return store.collection(USER_ENTITY)


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "api.db"))
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("ADMIN_EMAIL", ADMIN_EMAIL)
    monkeypatch.setenv("ADMIN_PASSWORD", ADMIN_PASSWORD)
    monkeypatch.setenv("EXPIRY_SWEEP_SECONDS", "3600")
    monkeypatch.setenv("SMTP_HOST", "")
    return Settings()


@pytest.fixture
def client(settings: Settings, email_sender: FakeEmailSender, clock: FrozenClock) -> Iterator[TestClient]:
    app = create_application(settings, email_sender=email_sender, clock=clock)
    with TestClient(app) as test_client:
        yield test_client


def auth_header(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def login(client: TestClient, email: str, password: str) -> str:
    res = client.post("/api/auth/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    return res.json()["result"]["token"]


def register_verified(
    client: TestClient,
    email_sender: FakeEmailSender,
    email: str = "jane@example.com",
    password: str = "secret-123",
    name: str = "Jane Doe",
) -> str:
    """Register, verify and log in a user; returns the bearer token."""
    res = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
    assert res.status_code == 201, res.text
    code = email_sender.last_code(email)
    res = client.post("/api/auth/verify-email", json={"email": email, "code": code})
    assert res.status_code == 200, res.text
    return login(client, email, password)


@pytest.fixture
def admin_token(client: TestClient) -> str:
    return login(client, ADMIN_EMAIL, ADMIN_PASSWORD)
