"""Shared plumbing for services."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from signal_client.auth import Identity
from signal_client.context import ClientContext
from signal_client.core.clock import utcnow
from signal_client.core.errors import StoreError
from signal_client.core.settings import Settings
from signal_client.schemas.collections import USERS
from signal_client.storage.blobs import Upload, safe_filename
from signal_client.store.base import DocumentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthorCard:
    """Denormalised author fields copied onto posts, comments and notifications."""

    uid: str
    username: str
    photo_url: str


class Service:
    """Base class for services bound to a :class:`ClientContext`."""

    def __init__(self, context: ClientContext) -> None:
        self.context = context

    @property
    def store(self) -> DocumentStore:
        return self.context.store

    @property
    def settings(self) -> Settings:
        return self.context.settings

    def viewer(self) -> Identity:
        return self.context.require_viewer()

    async def author_card(self, identity: Identity | None = None) -> AuthorCard:
        """Build the viewer's card, preferring the stored profile over the identity."""
        identity = identity or self.viewer()
        username = identity.display_name or "user"
        photo_url = identity.photo_url or ""
        try:
            profile = await self.store.get(USERS, identity.uid)
        except StoreError as exc:
            logger.warning("Could not load profile %s: %s", identity.uid, exc)
            profile = None
        if profile is not None:
            username = profile.get("username") or username
            photo_url = profile.get("photoURL") or photo_url
        return AuthorCard(uid=identity.uid, username=username, photo_url=photo_url)

    async def upload(self, folder: str, upload: Upload) -> str:
        """Store a user file under ``{folder}/{uid}/{millis}_{name}`` and return its URL.

        Raises:
            StoreError: If the blob store rejects the upload.
        """
        uid = self.viewer().uid
        millis = int(utcnow().timestamp() * 1000)
        path = f"{folder}/{uid}/{millis}_{safe_filename(upload.filename)}"
        return await self.context.blobs.put(path, upload.data, upload.content_type)
