# tests/conftest.py
from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from itertools import count
from typing import Any

import pytest
import pytest_asyncio

from signal_client.auth import Identity, StaticIdentityProvider
from signal_client.context import ClientContext
from signal_client.core.settings import Settings
from signal_client.schemas.collections import POSTS
from signal_client.services.users import ProfileService
from signal_client.storage.blobs import MemoryBlobStore
from signal_client.store.memory import MemoryDocumentStore

BASE_TIME = datetime(2024, 1, 1, tzinfo=UTC)
STORE_CLOCK_START = datetime(2024, 6, 1, tzinfo=UTC)

_POST_ORDER_COUNTER = count(1)
_TEST_SETTINGS_INSTANCE = Settings(
    FEED_PAGE_SIZE=5,
    FEED_LIVE_WINDOW=5,
    PROFILE_PAGE_SIZE=3,
    MESSAGE_WINDOW=5,
    TYPING_TIMEOUT_SECONDS=0.05,
    VIEW_DELAY_SECONDS=0.01,
    PRESENCE_INTERVAL_SECONDS=0.01,
)


class TickingClock:
    """Store clock that advances one second per call so writes order deterministically."""

    def __init__(self, start: datetime = STORE_CLOCK_START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Provide a Settings instance with small windows and short timers."""
    return _TEST_SETTINGS_INSTANCE


@pytest.fixture()
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore(clock=TickingClock())


@pytest.fixture()
def blobs() -> MemoryBlobStore:
    return MemoryBlobStore()


def make_context(
    store: MemoryDocumentStore,
    blobs: MemoryBlobStore,
    settings: Settings,
    uid: str | None,
) -> ClientContext:
    identity = StaticIdentityProvider(
        Identity(uid=uid, display_name=uid.title()) if uid is not None else None
    )
    return ClientContext(store=store, blobs=blobs, identity=identity, settings=settings)


async def _member(
    store: MemoryDocumentStore, blobs: MemoryBlobStore, settings: Settings, uid: str
) -> ClientContext:
    context = make_context(store, blobs, settings, uid)
    await ProfileService(context).register(uid)
    return context


@pytest_asyncio.fixture()
async def alice(store, blobs, test_settings) -> AsyncIterator[ClientContext]:
    context = await _member(store, blobs, test_settings, "alice")
    yield context
    await context.close()


@pytest_asyncio.fixture()
async def bob(store, blobs, test_settings) -> AsyncIterator[ClientContext]:
    context = await _member(store, blobs, test_settings, "bob")
    yield context
    await context.close()


@pytest_asyncio.fixture()
async def carol(store, blobs, test_settings) -> AsyncIterator[ClientContext]:
    context = await _member(store, blobs, test_settings, "carol")
    yield context
    await context.close()


@pytest_asyncio.fixture()
async def anonymous(store, blobs, test_settings) -> AsyncIterator[ClientContext]:
    context = make_context(store, blobs, test_settings, None)
    yield context
    await context.close()


@pytest.fixture()
def seed_post(store) -> Callable[..., Awaitable[str]]:
    """Write a post document directly; later calls get later ``createdAt`` values."""

    async def _seed(post_id: str, author_id: str, **fields: Any) -> str:
        data: dict[str, Any] = {
            "authorId": author_id,
            "authorUsername": author_id,
            "type": "text",
            "content": f"Post {post_id}",
            "tags": [],
            "likesCount": 0,
            "commentsCount": 0,
            "viewsCount": 0,
            "visibility": "public",
            "isPublished": True,
            "scheduledAt": None,
            "createdAt": BASE_TIME + timedelta(minutes=next(_POST_ORDER_COUNTER)),
        }
        data.update(fields)
        await store.set(POSTS, post_id, data)
        return post_id

    return _seed


@pytest.fixture()
def context_for(store, blobs, test_settings) -> Callable[[str | None], ClientContext]:
    """Build an unregistered context sharing the test backends."""

    def _context(uid: str | None) -> ClientContext:
        return make_context(store, blobs, test_settings, uid)

    return _context
