"""Client context: the backend handles shared by every service.

The context is built once at startup, passed to the services and closed on
shutdown. Closing it cancels every subscription still open.
"""

from __future__ import annotations

import logging
from types import TracebackType

from signal_client.auth import Identity, IdentityProvider, StaticIdentityProvider, TokenIdentityProvider
from signal_client.core.errors import NotAuthenticatedError
from signal_client.core.settings import Settings
from signal_client.core.settings import settings as default_settings
from signal_client.realtime.subscription import ChangeHandler, Subscription
from signal_client.storage.blobs import BlobStore, MemoryBlobStore, build_blob_store
from signal_client.store import DocumentStore, MemoryDocumentStore, Query, build_store

logger = logging.getLogger(__name__)


class ClientContext:
    """Document store, blob store and identity provider for one client session."""

    def __init__(
        self,
        store: DocumentStore | None = None,
        blobs: BlobStore | None = None,
        identity: IdentityProvider | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.store = store or MemoryDocumentStore()
        self.blobs = blobs or MemoryBlobStore()
        self.identity = identity or StaticIdentityProvider()
        self.settings = settings or default_settings
        self._subscriptions: list[Subscription] = []
        self._closed = False

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> ClientContext:
        """Build the backends selected by ``config``."""
        config = config or default_settings
        identity: IdentityProvider
        if config.auth_token_secret:
            identity = TokenIdentityProvider.from_settings(config)
        else:
            identity = StaticIdentityProvider()
        return cls(
            store=build_store(config),
            blobs=build_blob_store(config),
            identity=identity,
            settings=config,
        )

    @property
    def viewer(self) -> Identity | None:
        return self.identity.current_user()

    @property
    def viewer_id(self) -> str | None:
        viewer = self.viewer
        return viewer.uid if viewer is not None else None

    def require_viewer(self) -> Identity:
        """Return the signed-in viewer.

        Raises:
            NotAuthenticatedError: If nobody is signed in.
        """
        viewer = self.viewer
        if viewer is None:
            raise NotAuthenticatedError("Sign in required")
        return viewer

    def _prune(self) -> None:
        self._subscriptions = [sub for sub in self._subscriptions if not sub.cancelled]

    @property
    def subscriptions(self) -> list[Subscription]:
        self._prune()
        return list(self._subscriptions)

    async def subscribe(self, query: Query, handler: ChangeHandler, name: str = "") -> Subscription:
        """Open a tracked subscription; it is cancelled when the context closes."""
        self._prune()
        stream = await self.store.subscribe(query)
        subscription = Subscription(stream, handler, name).start()
        self._subscriptions.append(subscription)
        return subscription

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        open_subscriptions = self.subscriptions
        for subscription in open_subscriptions:
            subscription.cancel()
        for subscription in open_subscriptions:
            await subscription.wait_closed()
        logger.debug("Cancelled %d subscription(s)", len(open_subscriptions))
        await self.blobs.close()
        await self.store.close()

    async def __aenter__(self) -> ClientContext:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
