"""
Shared fixtures for the chat subsystem tests.

Provides:
- An isolated in-memory Mongo database per test (mongomock-motor)
- Repositories, a recording realtime channel and a ChatService built on them
- Three seeded users (alice, bob, carol) and a conversation between alice and bob
"""

import asyncio
import uuid
from typing import Any, List, Tuple

import pytest
from mongomock_motor import AsyncMongoMockClient

from socialchat.core.config import Settings
from socialchat.core.errors import DeliveryError
from socialchat.repositories.conversation_repository import ConversationRepository
from socialchat.repositories.message_repository import MessageRepository
from socialchat.repositories.user_repository import UserRepository
from socialchat.services.chat_service import ChatService
from socialchat.utils.blob_store import LocalBlobStore


class RecordingRealtime:
    """Realtime channel double that records publishes and can be told to fail."""

    def __init__(self) -> None:
        self.published: List[Tuple[str, str, Any]] = []
        self.fail = False

    async def publish(self, room: str, event: str, data: Any) -> None:
        if self.fail:
            raise DeliveryError(f"publish to room {room} failed: broker down")
        self.published.append((room, event, data))


@pytest.fixture
def settings(tmp_path):
    return Settings(
        JWT_SECRET="test-secret",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        IDENTITY_TIMEOUT_SECONDS=1.0,
        _env_file=None,
    )


@pytest.fixture
def db():
    return AsyncMongoMockClient()[f"socialchat_test_{uuid.uuid4().hex}"]


@pytest.fixture
def user_repo(db):
    return UserRepository(db)


@pytest.fixture
def conversation_repo(db):
    return ConversationRepository(db)


@pytest.fixture
def message_repo(db):
    return MessageRepository(db)


@pytest.fixture
def realtime():
    return RecordingRealtime()


@pytest.fixture
def blob_store(settings):
    return LocalBlobStore(settings)


@pytest.fixture
def service(message_repo, conversation_repo, user_repo, realtime, blob_store):
    return ChatService(message_repo, conversation_repo, user_repo, realtime=realtime, blob_store=blob_store)


def _seed_users(user_repo):
    async def _create():
        return {
            "alice": await user_repo.create_user("alice", "alice@mail.test", "Alice Smith", "avatars/alice.png"),
            "bob": await user_repo.create_user("bob", "bob@mail.test", "Bob Jones"),
            "carol": await user_repo.create_user("carol", "carol@mail.test", "Carol King"),
        }
    return _create


@pytest.fixture
async def users(user_repo):
    return await _seed_users(user_repo)()


@pytest.fixture
def sync_users(user_repo):
    """Same users for synchronous (TestClient) tests."""
    return asyncio.run(_seed_users(user_repo)())


@pytest.fixture
async def conversation(conversation_repo, users):
    return await conversation_repo.create([users["alice"], users["bob"]])
