import asyncio
from datetime import datetime, timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

from auxin_api.db import MongoPool
from auxin_api.errors import MailDeliveryError, MailNotConfiguredError
from auxin_api.main import create_app
from auxin_api.services.container import wire_services
from auxin_api.utils.oauth import GoogleUser
from auxin_api.utils.security import TokenService

DB_NAME = "auxin_test"
JWT_SECRET = "test-secret"


# --- async facade over mongomock ---
# Every call yields to the event loop first, so concurrent coroutines
# interleave between their reads and writes the way they would against a
# real server.

class AsyncMockCursor:
    def __init__(self, cursor):
        self._cursor = cursor

    def sort(self, *args, **kwargs):
        self._cursor = self._cursor.sort(*args, **kwargs)
        return self

    def skip(self, count):
        self._cursor = self._cursor.skip(count)
        return self

    def limit(self, count):
        self._cursor = self._cursor.limit(count)
        return self

    async def to_list(self, length=None):
        await asyncio.sleep(0)
        docs = list(self._cursor)
        return docs if length is None else docs[:length]


class AsyncMockCollection:
    def __init__(self, collection):
        self.sync = collection

    def find(self, *args, **kwargs):
        return AsyncMockCursor(self.sync.find(*args, **kwargs))

    def __getattr__(self, name):
        method = getattr(self.sync, name)

        async def call(*args, **kwargs):
            await asyncio.sleep(0)
            return method(*args, **kwargs)

        return call


class AsyncMockDatabase:
    def __init__(self, db):
        self.sync = db

    def __getitem__(self, name):
        return AsyncMockCollection(self.sync[name])

    async def command(self, *args, **kwargs):
        await asyncio.sleep(0)
        return self.sync.command(*args, **kwargs)


class AsyncMockClient:
    def __init__(self):
        self.sync = mongomock.MongoClient()
        self.closed = False

    def __getitem__(self, name):
        return AsyncMockDatabase(self.sync[name])

    @property
    def admin(self):
        return AsyncMockDatabase(self.sync.admin)

    async def close(self):
        self.closed = True


# --- collaborators ---

class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeMailer:
    def __init__(self):
        self.configured = True
        self.fail = False
        self.sent = []

    def ensure_configured(self):
        if not self.configured:
            raise MailNotConfiguredError()

    async def send_verification_code(self, to_email, code, ttl_minutes=2):
        if self.fail:
            raise MailDeliveryError()
        self.sent.append({"to": to_email, "code": code, "ttl": ttl_minutes})

    @property
    def last_code(self):
        return self.sent[-1]["code"]


class FakeOAuth:
    def __init__(self):
        self.profile = GoogleUser(
            google_id="google-123",
            email="gina@example.com",
            name="Gina",
            avatar="https://example.com/gina.png",
        )
        self.codes = []

    def authorization_url(self, state=None):
        return "https://accounts.google.com/o/oauth2/v2/auth?client_id=test"

    async def exchange_code(self, code):
        self.codes.append(code)
        return self.profile


# --- fixtures ---

@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 6, 1, 8, 0))


@pytest.fixture
def mongo_client():
    return AsyncMockClient()


@pytest.fixture
def raw_db(mongo_client):
    """Synchronous handle for seeding and inspecting documents."""
    return mongo_client.sync[DB_NAME]


@pytest.fixture
def pool(mongo_client):
    return MongoPool("mongodb://localhost:27017", DB_NAME, client_factory=lambda uri: mongo_client)


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def oauth():
    return FakeOAuth()


@pytest.fixture
def tokens():
    return TokenService(JWT_SECRET)


@pytest.fixture
def services(pool, mailer, tokens, oauth, clock):
    return wire_services(pool, mailer, tokens, oauth, clock=clock, timezone="UTC")


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


@pytest.fixture
def make_user(raw_db, clock):
    def _make_user(email="ada@example.com", name="Ada", password=None, verified=True, **fields):
        doc = {
            "name": name,
            "email": email,
            "avatar": "",
            "isEmailVerified": verified,
            "createdAt": clock(),
            "updatedAt": clock(),
        }
        if password is not None:
            doc["password"] = password
        doc.update(fields)
        doc["_id"] = raw_db["users"].insert_one(doc).inserted_id
        return doc

    return _make_user


@pytest.fixture
def auth_headers(tokens):
    def _auth_headers(user):
        return {"Authorization": f"Bearer {tokens.create_access_token(user)}"}

    return _auth_headers
