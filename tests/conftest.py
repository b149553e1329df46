import os

# settings are read once per process, so the environment must be in place
# before any application module is imported
for _name in ("DATABASE_URL", "DATABASE_NAME", "EMAIL_FROM", "S3_BUCKET", "NOTIFY_CUSTOMER"):
    os.environ.pop(_name, None)
os.environ["JWT_SECRET"] = "test-secret"
os.environ["OWNER_EMAIL"] = "owner@shop.com"
os.environ["EMAIL_TO"] = "ops@shop.com"
os.environ["NOTIFY_MODE"] = "background"

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from config import get_settings
from exceptions import NotificationError, UploadError
from main import app, get_image_store, get_mailer, limiter
from media import checked_image


class FakeMailer:
    def __init__(self):
        self.sent = []
        self.fail = False
        self.fail_for = set()

    def send(self, to, subject, text_body, html_body):
        if self.fail or to in self.fail_for:
            raise NotificationError(f"SES rejected email to {to}")
        self.sent.append({"to": to, "subject": subject, "text": text_body, "html": html_body})
        return f"msg-{len(self.sent)}"


class FakeImageStore:
    def __init__(self):
        self.calls = []
        self.failing = set()
        self.broken = set()

    def upload(self, payload, folder):
        self.calls.append((payload, folder))
        if payload in self.failing:
            raise UploadError("provider unavailable")
        if payload in self.broken:
            raise RuntimeError("unexpected provider response")
        return f"https://cdn.shop.com/{folder}/{len(self.calls)}.png"

    def upload_bytes(self, data, folder, declared=None):
        self.calls.append((data, folder))
        checked_image(data, declared)
        return f"https://cdn.shop.com/{folder}/{len(self.calls)}.png"


@pytest.fixture(autouse=True)
def mongo(monkeypatch):
    db = mongomock.MongoClient().storefront
    monkeypatch.setattr(database, "db", db)
    return db


@pytest.fixture(autouse=True)
def rate_limits():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def image_store():
    return FakeImageStore()


@pytest.fixture
def client(mailer, image_store):
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_image_store] = lambda: image_store
    yield TestClient(app)
    app.dependency_overrides.clear()


def register(client, name, email, password="secret123"):
    res = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
    assert res.status_code == 201, res.text
    return res.json()


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def jane(client):
    return register(client, "Jane", "jane@x.com")


@pytest.fixture
def owner(client):
    return register(client, "Shop Owner", "owner@shop.com")


MUG_ORDER = {
    "phone": "0712345678",
    "address": "12 Main St",
    "items": [{"name": "Mug", "price": 10, "qty": 2}],
    "total": 20,
}


def place(client, token, body=None):
    return client.post("/api/orders", json=body or MUG_ORDER, headers=auth_header(token))


# smallest headers the image sniffing accepts
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 16
