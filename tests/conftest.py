import asyncio
import copy
import os
from types import SimpleNamespace

# Required settings must exist before app.main is imported.
os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017")
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
os.environ.setdefault("APP_ENV", "development")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.api import deps
from app.main import app
from app.services.rate_limiter import RateLimiter
from app.services.session_store import ConversationStore


class FakeCollection:
    """In-memory stand-in for the motor `conversations` collection."""

    def __init__(self):
        self.docs = {}
        self.update_calls = []

    async def find_one(self, query):
        return copy.deepcopy(self.docs.get(query["sessionId"]))

    async def find_one_and_update(self, query, update, upsert=False, return_document=None):
        session_id = query["sessionId"]
        if session_id not in self.docs and upsert:
            self.docs[session_id] = copy.deepcopy(update["$setOnInsert"])
        return copy.deepcopy(self.docs.get(session_id))

    async def update_one(self, query, update):
        self.update_calls.append(update)
        doc = self.docs.get(query["sessionId"])
        if doc is None:
            return SimpleNamespace(matched_count=0, modified_count=0)
        doc["history"].extend(copy.deepcopy(update["$push"]["history"]["$each"]))
        doc.update(update.get("$set", {}))
        return SimpleNamespace(matched_count=1, modified_count=1)


class FakeConnection:
    def __init__(self, collection, healthy=True):
        self.collection = collection
        self.healthy = healthy
        self.invalidated = 0

    async def get_collection(self):
        return self.collection

    async def ping(self):
        return self.healthy

    def invalidate(self):
        self.invalidated += 1

    async def close(self):
        pass


class FakeChatClient:
    """Records the histories it receives and answers with a canned reply."""

    def __init__(self, reply="Come más verduras y bebe agua. 🥦"):
        self.reply = reply
        self.error = None
        self.delay = 0
        self.calls = []

    async def generate_reply(self, history):
        self.calls.append(history)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def collection():
    return FakeCollection()


@pytest.fixture
def connection(collection):
    return FakeConnection(collection)


@pytest.fixture
def store(connection):
    return ConversationStore(connection)


@pytest.fixture
def chat_client():
    return FakeChatClient()


@pytest.fixture
def limiter():
    return RateLimiter(max_requests=50, window_seconds=3600)


@pytest_asyncio.fixture
async def client(store, connection, chat_client, limiter):
    app.dependency_overrides[deps.get_conversation_store] = lambda: store
    app.dependency_overrides[deps.get_connection_manager] = lambda: connection
    app.dependency_overrides[deps.get_chat_client] = lambda: chat_client
    app.dependency_overrides[deps.get_rate_limiter] = lambda: limiter
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def profile():
    return {"name": "María José", "age": "34", "weight": "68.5", "height": "165"}
