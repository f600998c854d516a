"""
Shared fixtures.

The credential store runs against ``InMemoryCollection``, a small stand-in for
the pymongo async collection covering the calls ``UserStore`` makes, and mail
goes to ``RecordingMailer`` instead of SMTP.
"""

import asyncio
import os
import re
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

import pytest
from fastapi.testclient import TestClient
from pymongo.errors import DuplicateKeyError

os.environ.setdefault("ACCESS_TOKEN_SECRET", "test-access-secret")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret")

from blogapi.auth_service import AuthService  # noqa: E402
from blogapi.deps import get_mailer, get_user_store  # noqa: E402
from blogapi.errors import MailDeliveryError  # noqa: E402
from blogapi.main import create_app  # noqa: E402
from blogapi.security import PasswordHasher, TokenIssuer  # noqa: E402
from blogapi.settings import Settings, get_settings  # noqa: E402
from blogapi.users import UserStore  # noqa: E402


def pytest_configure(config) -> None:
    config.addinivalue_line("markers", "unit: fast tests with no external services")


def _matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    # equality only; None matches a missing field, as in MongoDB
    return all(doc.get(key) == value for key, value in query.items())


class InMemoryCollection:
    def __init__(self, unique: tuple = ("email_norm",)):
        self.docs: List[Dict[str, Any]] = []
        self.unique = unique

    async def find_one(self, query: Dict[str, Any], projection: Optional[Dict[str, Any]] = None):
        # yield like a real driver round-trip so concurrent requests interleave
        await asyncio.sleep(0)
        for doc in self.docs:
            if _matches(doc, query):
                if projection:
                    return {k: v for k, v in doc.items() if k in projection or k == "_id"}
                return dict(doc)
        return None

    async def insert_one(self, doc: Dict[str, Any]):
        for key in self.unique:
            if any(d.get(key) == doc.get(key) for d in self.docs):
                raise DuplicateKeyError(f"E11000 duplicate key error dup key: {key}")
        self.docs.append(dict(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def update_one(self, query: Dict[str, Any], update: Dict[str, Any]):
        await asyncio.sleep(0)
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(update.get("$set", {}))
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    def raw(self, email_norm: str) -> Dict[str, Any]:
        return next(d for d in self.docs if d["email_norm"] == email_norm)


class RecordingMailer:
    def __init__(self):
        self.sent: List[Dict[str, str]] = []
        self.fail = False

    async def send(self, to: str, subject: str, html: str) -> None:
        if self.fail:
            raise MailDeliveryError(context={"subject": subject})
        self.sent.append({"to": to, "subject": subject, "html": html})

    def last_token(self) -> str:
        match = re.search(r"token=([^\"&<\s]+)", self.sent[-1]["html"])
        return unquote(match.group(1))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        ENV="test",
        ACCESS_TOKEN_SECRET="test-access-secret",
        REFRESH_TOKEN_SECRET="test-refresh-secret",
        EMAIL_TOKEN_SECRET="test-email-secret",
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher()


@pytest.fixture
def collection() -> InMemoryCollection:
    return InMemoryCollection()


@pytest.fixture
def users(collection, hasher) -> UserStore:
    return UserStore(collection, hasher)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def tokens(settings) -> TokenIssuer:
    return TokenIssuer(settings)


@pytest.fixture
def service(settings, users, mailer, tokens) -> AuthService:
    return AuthService(settings, users, mailer, tokens)


@pytest.fixture
def app(settings, users, mailer):
    app = create_app(settings)
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_user_store] = lambda: users
    app.dependency_overrides[get_mailer] = lambda: mailer
    return app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)
