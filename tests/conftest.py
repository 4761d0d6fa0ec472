"""
Shared pytest fixtures for the job mail tracker tests.
"""

import base64
import os

# Must be set before jobtracker.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["SCHEDULER_ENABLED"] = "false"

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import jobtracker.models  # noqa: F401  (register tables)
from jobtracker.database import Base
from jobtracker.services import db_service
from jobtracker.services.sync_engine import SyncEngine

OWNER = "a@x.com"
FIXED_NOW = datetime(2026, 3, 10, 15, 30, 0, tzinfo=timezone.utc)


def encode_body(text: str) -> str:
    """base64url without padding, like Gmail sends it."""
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def gmail_message(message_id, internal_date, subject="Hello", body="Body text",
                  sender="jobs@acme.com", html=False):
    """Minimal Gmail 'full' message resource."""
    mime_type = "text/html" if html else "text/plain"
    return {
        "id": message_id,
        "threadId": f"thread-{message_id}",
        "snippet": body[:40],
        "labelIds": ["INBOX"],
        "internalDate": str(internal_date),
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "From", "value": sender},
                {"name": "to", "value": OWNER},
                {"name": "SUBJECT", "value": subject},
                {"name": "Date", "value": "Tue, 10 Mar 2026 10:00:00 -0400"},
            ],
            "parts": [
                {"mimeType": mime_type, "body": {"data": encode_body(body)}},
            ],
        },
    }


class FakeMailbox:
    """In-memory mailbox that honours after:<seconds> queries and paginates."""

    def __init__(self, messages=None, page_size=100, account=OWNER):
        self.messages = {}
        self.order = []
        self.page_size = page_size
        self.account = account
        self.queries = []
        self.list_calls = 0
        self.get_calls = []
        self.bundle = None
        for message in messages or []:
            self.add(message)

    def add(self, message):
        self.messages[message["id"]] = message
        self.order.append(message["id"])

    def profile_email(self):
        return self.account

    def _matching_ids(self, query):
        if query.startswith("after:") and " " not in query:
            after = int(query.split(":", 1)[1])
            return [
                mid for mid in self.order
                if int(self.messages[mid]["internalDate"]) // 1000 > after
            ]
        return list(self.order)

    def list_ids(self, query, page_token=None):
        self.queries.append(query)
        self.list_calls += 1
        ids = self._matching_ids(query)
        start = int(page_token or 0)
        end = start + self.page_size
        next_token = str(end) if end < len(ids) else None
        return ids[start:end], next_token

    def get(self, message_id):
        self.get_calls.append(message_id)
        return self.messages[message_id]

    def token_bundle(self):
        return self.bundle


class FakeClassifier:
    """Returns canned results per message id and records calls."""

    enabled = True

    def __init__(self, results=None):
        self.results = results or {}
        self.calls = []

    def classify(self, message):
        self.calls.append(message["id"])
        return self.results.get(message["id"])


@pytest.fixture
def session_factory():
    """Session factory on a fresh in-memory SQLite database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def connected_owner(db):
    """OWNER with a stored Gmail token bundle."""
    db_service.save_tokens(db, OWNER, {"token": "access-1", "refresh_token": "refresh-1"})
    return OWNER


@pytest.fixture
def mailbox():
    return FakeMailbox()


@pytest.fixture
def make_engine(db, mailbox):
    """Build a SyncEngine wired to the fake mailbox."""
    def _make(classifier=None, box=None):
        target = box or mailbox
        return SyncEngine(
            db,
            classifier=classifier,
            mailbox_factory=lambda owner, bundle: target,
            now=lambda: FIXED_NOW,
        )
    return _make
