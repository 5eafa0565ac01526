"""Presence heartbeat.

This module provides the PresenceHeartbeat worker that keeps the viewer's
``isOnline`` and ``lastActive`` fields current while the app is in use.
"""

from __future__ import annotations

import asyncio
import logging

from signal_client.context import ClientContext
from signal_client.core.errors import DocumentNotFoundError, StoreError
from signal_client.schemas.collections import USERS
from signal_client.store.base import SERVER_TIMESTAMP

logger = logging.getLogger(__name__)


class PresenceHeartbeat:
    """Periodically marks the viewer online.

    The worker writes ``isOnline=True`` every ``presence_interval_seconds``.
    Stopping it, or reporting the app as hidden, writes ``isOnline=False``.
    """

    def __init__(self, context: ClientContext) -> None:
        self.context = context
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._uid: str | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the heartbeat loop."""

        self._uid = self.context.require_viewer().uid
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the heartbeat loop and mark the viewer offline."""

        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None
        await self.beat(online=False)

    async def set_visible(self, visible: bool) -> None:
        """React to the host app moving to the foreground or background."""
        if visible:
            await self.start()
        else:
            await self.stop()

    async def beat(self, *, online: bool = True) -> bool:
        uid = self._uid or self.context.viewer_id
        if uid is None:
            return False
        try:
            await self.context.store.update(
                USERS, uid, {"isOnline": online, "lastActive": SERVER_TIMESTAMP}
            )
        except DocumentNotFoundError:
            logger.debug("No profile for %s yet; skipping presence update", uid)
            return False
        except StoreError as exc:
            logger.warning("Presence update failed: %s", exc)
            return False
        return True

    async def _run(self) -> None:
        interval = max(0.01, float(self.context.settings.presence_interval_seconds))

        while not self._stopping.is_set():
            await self.beat(online=True)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except TimeoutError:
                continue
