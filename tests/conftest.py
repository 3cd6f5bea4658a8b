"""Pytest configuration and fixtures."""

import copy
import json
import os
import secrets
import time
from collections import defaultdict
from types import SimpleNamespace

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt
from postgrest.exceptions import APIError

# Identity-provider key pair for this run: tokens are verified networklessly
_RSA_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)
PRIVATE_PEM = _RSA_KEY.private_bytes(
    serialization.Encoding.PEM,
    serialization.PrivateFormat.PKCS8,
    serialization.NoEncryption(),
).decode()
PUBLIC_PEM = _RSA_KEY.public_key().public_bytes(
    serialization.Encoding.PEM,
    serialization.PublicFormat.SubjectPublicKeyInfo,
).decode()

TEST_SUBJECT = "user_TEST_ONLY_000000"
AUTHORIZED_PARTY = "http://localhost:3000"
LIVEKIT_API_KEY = "APItestkey"
LIVEKIT_API_SECRET = f"test-only-{secrets.token_urlsafe(32)}"

os.environ["ENVIRONMENT"] = "test"
os.environ["CLERK_SECRET_KEY"] = "sk_test_only"
os.environ["CLERK_JWT_KEY"] = PUBLIC_PEM
os.environ["CLERK_AUTHORIZED_PARTIES"] = f"{AUTHORIZED_PARTY}, https://app.zappytalk.test"
os.environ["LIVEKIT_API_KEY"] = LIVEKIT_API_KEY
os.environ["LIVEKIT_API_SECRET"] = LIVEKIT_API_SECRET
os.environ["LIVEKIT_URL"] = "wss://livekit.test"
os.environ["DEFAULT_AGENT_NAME"] = "voice-agent-test"
os.environ["SUPABASE_URL"] = "https://test.supabase.co"
os.environ["SUPABASE_SECRET_KEY"] = "test-secret-key"

from fastapi.testclient import TestClient  # noqa: E402

from zappytalk_api.database import get_db, get_optional_db  # noqa: E402
from zappytalk_api.dispatch import SessionDispatchCoordinator, get_dispatch_coordinator  # noqa: E402
from zappytalk_api.livekit_tokens import issue_room_token  # noqa: E402
from zappytalk_api.main import app  # noqa: E402
from zappytalk_api.rate_limit import limiter  # noqa: E402


# =============================================================================
# In-memory Supabase
# =============================================================================


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    """Chainable PostgREST-style query over one in-memory table."""

    def __init__(self, db, table):
        self._db = db
        self._table = table
        self._op = "select"
        self._columns = "*"
        self._count = None
        self._payload = None
        self._filters = []
        self._order = None
        self._range = None
        self._limit = None

    def select(self, columns="*", count=None):
        self._op, self._columns, self._count = "select", columns, count
        return self

    def insert(self, data):
        self._op, self._payload = "insert", data
        return self

    def update(self, data):
        self._op, self._payload = "update", data
        return self

    def eq(self, column, value):
        self._filters.append(lambda row: row.get(column) == value)
        return self

    def is_(self, column, value):
        assert value == "null"
        self._filters.append(lambda row: row.get(column) is None)
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def limit(self, size):
        self._limit = size
        return self

    def _matches(self):
        return [row for row in self._db.tables[self._table] if all(f(row) for f in self._filters)]

    def _project(self, row):
        if self._columns.strip() == "*":
            return dict(row)
        return {c.strip(): row.get(c.strip()) for c in self._columns.split(",")}

    def execute(self):
        if self._op == "insert":
            row = copy.deepcopy(self._payload)
            self._db.check_unique(self._table, row, exclude=[])
            self._db.tables[self._table].append(row)
            self._db.writes.append(("insert", self._table, row))
            return FakeResponse([dict(row)])

        if self._op == "update":
            rows = self._matches()
            self._db.check_unique(self._table, self._payload, exclude=rows)
            for row in rows:
                row.update(copy.deepcopy(self._payload))
            self._db.writes.append(("update", self._table, self._payload))
            return FakeResponse([dict(r) for r in rows])

        rows = self._matches()
        total = len(rows) if self._count == "exact" else None
        if self._order:
            column, desc = self._order
            rows = sorted(rows, key=lambda r: r.get(column) or "", reverse=desc)
        if self._range:
            start, end = self._range
            rows = rows[start:end + 1]
        if self._limit is not None:
            rows = rows[: self._limit]
        return FakeResponse([self._project(r) for r in rows], count=total)


class FakeSupabase:
    """Supabase client stand-in with unique users.user_id and users.email."""

    UNIQUE = {"users": ["user_id", "email"]}

    def __init__(self):
        self.tables = defaultdict(list)
        self.writes = []

    def table(self, name):
        return FakeQuery(self, name)

    def check_unique(self, table, values, exclude):
        for column in self.UNIQUE.get(table, []):
            if values.get(column) is None:
                continue
            for row in self.tables[table]:
                if any(row is other for other in exclude):
                    continue
                if row.get(column) == values[column]:
                    raise APIError(
                        {
                            "message": f'duplicate key value violates unique constraint "{table}_{column}_key"',
                            "code": "23505",
                            "hint": None,
                            "details": f"Key ({column})=({values[column]}) already exists.",
                        }
                    )


# =============================================================================
# LiveKit fakes
# =============================================================================


class RecordingDispatchClient:
    """Records create_dispatch calls; raises ``error`` if set."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = []

    async def create_dispatch(self, room, agent_name, metadata):
        self.calls.append({"room": room, "agent_name": agent_name, "metadata": json.loads(metadata)})
        if self.error:
            raise self.error
        return SimpleNamespace(id="AD_test", room=room, agent_name=agent_name)


class CountingIssuer:
    """Wraps issue_room_token and counts invocations."""

    def __init__(self, fail_with: Exception | None = None):
        self.calls = 0
        self.fail_with = fail_with

    def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.fail_with:
            raise self.fail_with
        return issue_room_token(*args, **kwargs)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def dispatch_client():
    return RecordingDispatchClient()


@pytest.fixture
def issuer():
    return CountingIssuer()


@pytest.fixture
def coordinator(dispatch_client, issuer):
    return SessionDispatchCoordinator(
        api_key=LIVEKIT_API_KEY,
        api_secret=LIVEKIT_API_SECRET,
        dispatch_client=dispatch_client,
        issuer=issuer,
    )


@pytest.fixture(autouse=True)
def override_dependencies(fake_db, coordinator):
    """Route persistence and LiveKit calls to in-memory fakes."""
    app.dependency_overrides[get_db] = lambda: fake_db
    app.dependency_overrides[get_optional_db] = lambda: fake_db
    app.dependency_overrides[get_dispatch_coordinator] = lambda: coordinator
    limiter.reset()
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    """Create a test client."""
    return TestClient(app)


@pytest.fixture
def session_token():
    """Factory for identity-provider session tokens signed with the test key."""

    def _make(subject: str | None = TEST_SUBJECT, key: str = PRIVATE_PEM, algorithm: str = "RS256", **claims):
        now = int(time.time())
        payload = {
            "sid": "sess_test",
            "azp": AUTHORIZED_PARTY,
            "iat": now,
            "nbf": now - 5,
            "exp": now + 60,
        }
        if subject is not None:
            payload["sub"] = subject
        payload.update(claims)
        return jwt.encode(payload, key, algorithm=algorithm, headers={"kid": "ins_test"})

    return _make


@pytest.fixture
def auth_headers(session_token):
    """Authorization header for TEST_SUBJECT."""
    return {"Authorization": f"Bearer {session_token()}"}


@pytest.fixture
def other_auth_headers(session_token):
    """Authorization header for a different user."""
    return {"Authorization": f"Bearer {session_token('user_SOMEONE_ELSE')}"}
