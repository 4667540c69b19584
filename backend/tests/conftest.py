"""
Pytest configuration and shared test helpers for backend tests.
"""
import copy
import os
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

# Skip MongoDB startup when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from models.subscriptions import SubscriptionPlan, SubscriptionStatus
from models.user import User, UserRole
from services.billing_service import BillingClient
from services.container import build_services
from services.esignature_service import ESignatureClient


# ============================================================================
# In-memory stand-in for the motor collections used by the services
# ============================================================================

def _resolve(value, parts):
    if not parts:
        return [value]
    if isinstance(value, list):
        out = []
        for item in value:
            out.extend(_resolve(item, parts))
        return out
    if isinstance(value, dict) and parts[0] in value:
        return _resolve(value[parts[0]], parts[1:])
    return []


def _candidates(doc, path):
    values = _resolve(doc, path.split("."))
    out = []
    for v in values:
        out.append(v)
        if isinstance(v, list):
            out.extend(v)
    return out


def _field_matches(doc, path, cond):
    values = _candidates(doc, path)
    if isinstance(cond, dict) and cond and all(k.startswith("$") for k in cond):
        for op, arg in cond.items():
            if op == "$in":
                if not any(v in arg for v in values):
                    return False
            elif op == "$ne":
                if any(v == arg for v in values):
                    return False
            elif op == "$gte":
                if not any(v is not None and v >= arg for v in values):
                    return False
            elif op == "$lt":
                if not any(v is not None and v < arg for v in values):
                    return False
            elif op == "$exists":
                if bool(values) != bool(arg):
                    return False
            else:
                raise NotImplementedError(op)
        return True
    if cond is None:
        return not values or any(v is None for v in values)
    return any(v == cond for v in values)


def matches(doc, query):
    for key, cond in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in cond):
                return False
        elif not _field_matches(doc, key, cond):
            return False
    return True


def _project(doc, projection):
    doc = copy.deepcopy(doc)
    if not projection:
        return doc
    included = [k for k, v in projection.items() if v and k != "_id"]
    if included:
        return {k: doc[k] for k in included if k in doc}
    for k, v in projection.items():
        if not v:
            doc.pop(k, None)
    return doc


def _set_path(doc, path, value):
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        if not isinstance(target.get(part), dict):
            target[part] = {}
        target = target[part]
    target[parts[-1]] = value


def _get_path(doc, path, default=None):
    target = doc
    for part in path.split("."):
        if not isinstance(target, dict) or part not in target:
            return default
        target = target[part]
    return target


def _unset_path(doc, path):
    parts = path.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.get(part)
        if not isinstance(target, dict):
            return
    target.pop(parts[-1], None)


def _apply_update(doc, update):
    for path, value in update.get("$set", {}).items():
        _set_path(doc, path, copy.deepcopy(value))
    for path, amount in update.get("$inc", {}).items():
        _set_path(doc, path, (_get_path(doc, path) or 0) + amount)
    for path in update.get("$unset", {}):
        _unset_path(doc, path)
    for path, value in update.get("$push", {}).items():
        current = _get_path(doc, path) or []
        _set_path(doc, path, current + [copy.deepcopy(value)])


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs
        self._skip = 0
        self._limit = 0

    def sort(self, key, direction=1):
        present = [d for d in self._docs if _get_path(d, key) is not None]
        absent = [d for d in self._docs if _get_path(d, key) is None]
        present.sort(key=lambda d: _get_path(d, key), reverse=direction < 0)
        self._docs = present + absent
        return self

    def skip(self, n):
        self._skip = n
        return self

    def limit(self, n):
        self._limit = n
        return self

    async def to_list(self, length=None):
        docs = self._docs[self._skip:]
        if self._limit:
            docs = docs[:self._limit]
        if length:
            docs = docs[:length]
        return docs


class FakeCollection:
    def __init__(self, name):
        self.name = name
        self.docs = []

    async def find_one(self, query=None, projection=None):
        for doc in self.docs:
            if matches(doc, query):
                return _project(doc, projection)
        return None

    def find(self, query=None, projection=None):
        return FakeCursor([_project(d, projection) for d in self.docs if matches(d, query)])

    async def insert_one(self, doc):
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=len(self.docs))

    async def replace_one(self, query, replacement):
        for i, doc in enumerate(self.docs):
            if matches(doc, query):
                self.docs[i] = copy.deepcopy(replacement)
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def update_one(self, query, update, upsert=False):
        for doc in self.docs:
            if matches(doc, query):
                _apply_update(doc, update)
                return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        if upsert:
            doc = {k: copy.deepcopy(v) for k, v in query.items() if not k.startswith("$") and not isinstance(v, dict)}
            _apply_update(doc, update)
            self.docs.append(doc)
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=len(self.docs))
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    async def delete_one(self, query):
        for i, doc in enumerate(self.docs):
            if matches(doc, query):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def count_documents(self, query):
        return sum(1 for d in self.docs if matches(d, query))


class FakeDB:
    def __init__(self):
        self._collections = {}

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]

    def __getitem__(self, name):
        return getattr(self, name)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def db():
    return FakeDB()


@pytest.fixture
def llm():
    """LLM stand-in; set llm.generate.return_value per test."""
    fake = MagicMock()
    fake.api_key = "test-key"
    fake.generate = AsyncMock(return_value="Generated document text")
    return fake


@pytest.fixture
def billing():
    return BillingClient(api_key="sk_test_dummy", webhook_secret="whsec_test")


@pytest.fixture
def services(db, llm, billing):
    return build_services(db, llm=llm, billing=billing, esignature=ESignatureClient(api_key=""))


def make_user(
    db,
    name="Test User",
    email=None,
    role=UserRole.USER,
    plan=SubscriptionPlan.FREE,
    **fields,
) -> User:
    user = User(
        name=name,
        email=email or f"{name.lower().replace(' ', '.')}@example.com",
        password_hash=fields.pop("password_hash", "not-a-real-hash"),
        role=role,
        **fields,
    )
    user.subscription.plan = plan
    user.subscription.status = SubscriptionStatus.ACTIVE
    db.users.docs.append(user.model_dump())
    return user


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.user_id)}"}


@pytest.fixture
def client(services):
    """TestClient for server:app wired to the in-memory services."""
    from server import app
    app.state.services = services
    return TestClient(app)
