"""Cancellable consumers of change streams."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

from signal_client.store.base import Change
from signal_client.store.changes import ChangeStream

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[list[Change]], Awaitable[None] | None]


class Subscription:
    """Runs a handler for every batch of a :class:`ChangeStream` in a background task.

    Errors raised by the stream or the handler are logged and stored on
    :attr:`error`; the subscription then stops and the consumer keeps whatever
    state it already has. After :meth:`cancel` no further batch reaches the
    handler.
    """

    def __init__(self, stream: ChangeStream, handler: ChangeHandler, name: str = "") -> None:
        self.stream = stream
        self.name = name or stream.query.collection
        self.error: BaseException | None = None
        self._handler = handler
        self._task: asyncio.Task[None] | None = None
        self._cancelled = False

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done() and not self._cancelled

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def start(self) -> Subscription:
        """Start consuming the stream."""
        if self._cancelled:
            raise RuntimeError(f"Subscription {self.name} was cancelled")
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name=f"subscription:{self.name}")
        return self

    async def _run(self) -> None:
        batches = aiter(self.stream)
        try:
            async for changes in batches:
                if self._cancelled:
                    return
                result = self._handler(changes)
                if inspect.isawaitable(result):
                    await result
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            self.error = exc
            logger.warning("Subscription %s stopped: %s", self.name, exc)
            self.stream.close()
        finally:
            await batches.aclose()

    async def flush(self) -> None:
        """Wait until every batch delivered so far has been handled."""
        if self.active:
            await self.stream.join()

    def cancel(self) -> None:
        """Stop delivery; safe to call more than once."""
        if self._cancelled:
            return
        self._cancelled = True
        self.stream.close()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_closed(self) -> None:
        """Wait for the consumer task to finish after :meth:`cancel`."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass
