"""User profiles and the follow and block graph."""

from __future__ import annotations

import logging
import re
from typing import Literal

from signal_client.context import ClientContext
from signal_client.core.errors import InvalidUsernameError, StoreError, UsernameTakenError
from signal_client.realtime.reconciler import Reconciler
from signal_client.schemas.collections import BLOCKS, FOLLOWS, USERS, relation_id
from signal_client.schemas.notification import NotificationType
from signal_client.schemas.user import UserProfile, UserRole
from signal_client.services.base import Service
from signal_client.services.notifications import NotificationService
from signal_client.storage.blobs import Upload
from signal_client.store.base import SERVER_TIMESTAMP, Increment, Query

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"^[a-z0-9_.]{1,30}$")
# Highest code point used as an open upper bound for prefix range queries.
PREFIX_SENTINEL = "\uf8ff"
EDITABLE_FIELDS = {
    "display_name": "displayName",
    "bio": "bio",
    "website": "website",
    "photo_url": "photoURL",
    "cover_url": "coverURL",
}
MEDIA_FOLDER = "users"


def normalize_username(username: str) -> str:
    """Lowercase and validate a username.

    Raises:
        InvalidUsernameError: If the result is empty or uses characters other
            than letters, digits, ``_`` and ``.``.
    """
    normalized = username.strip().lstrip("@").lower()
    if not USERNAME_PATTERN.match(normalized):
        raise InvalidUsernameError(f"Invalid username: {username!r}")
    return normalized


class ProfileService(Service):
    """Profiles, follows and blocks."""

    def __init__(self, context: ClientContext) -> None:
        super().__init__(context)
        self.notifications = NotificationService(context)

    async def register(
        self,
        username: str,
        *,
        display_name: str = "",
        email: str | None = None,
        photo_url: str | None = None,
    ) -> UserProfile | None:
        """Create the viewer's profile document.

        Registering again with an existing profile only rewrites the username
        and display fields; counters and role are left alone.

        Raises:
            InvalidUsernameError: If the username is malformed.
            UsernameTakenError: If another account already uses the username.
        """
        viewer = self.viewer()
        normalized = normalize_username(username)
        existing = await self.get_by_username(normalized)
        if existing is not None and existing.uid != viewer.uid:
            raise UsernameTakenError(f"@{normalized} is taken")

        current = await self.get(viewer.uid)
        if current is not None:
            fields = {"username": normalized}
            if display_name:
                fields["displayName"] = display_name
            if email:
                fields["email"] = email
            if photo_url:
                fields["photoURL"] = photo_url
            try:
                await self.store.update(USERS, viewer.uid, fields)
            except StoreError as exc:
                logger.error("Failed to re-register %s: %s", normalized, exc)
                return None
            return await self.get(viewer.uid)

        profile = UserProfile(
            uid=viewer.uid,
            email=email or viewer.email or "",
            username=normalized,
            display_name=display_name or viewer.display_name or normalized,
            photo_url=photo_url or viewer.photo_url or "",
            role=UserRole.USER,
            is_online=True,
        )
        data = profile.to_fields()
        data["role"] = UserRole.USER.value
        data["createdAt"] = SERVER_TIMESTAMP
        data["lastActive"] = SERVER_TIMESTAMP
        try:
            await self.store.set(USERS, viewer.uid, data)
        except StoreError as exc:
            logger.error("Failed to register %s: %s", normalized, exc)
            return None
        logger.info("Registered @%s", normalized)
        return await self.get(viewer.uid)

    async def get(self, uid: str) -> UserProfile | None:
        try:
            document = await self.store.get(USERS, uid)
        except StoreError as exc:
            logger.warning("Failed to load profile %s: %s", uid, exc)
            return None
        if document is None:
            return None
        return UserProfile.from_document(document)

    async def get_by_username(self, username: str) -> UserProfile | None:
        query = Query(USERS).where("username", "==", username.strip().lstrip("@").lower()).take(1)
        try:
            page = await self.store.query(query)
        except StoreError as exc:
            logger.warning("Failed to look up @%s: %s", username, exc)
            return None
        if not page.documents:
            return None
        return UserProfile.from_document(page.documents[0])

    async def search(self, prefix: str, limit: int | None = None) -> list[UserProfile]:
        """Profiles whose username starts with ``prefix`` (case-insensitive)."""
        term = prefix.strip().lstrip("@").lower()
        if not term:
            return []
        query = (
            Query(USERS)
            .where("username", ">=", term)
            .where("username", "<=", term + PREFIX_SENTINEL)
            .order("username")
            .take(limit or self.settings.user_search_limit)
        )
        try:
            page = await self.store.query(query)
        except StoreError as exc:
            logger.warning("User search for %r failed: %s", term, exc)
            return []
        return [UserProfile.from_document(doc) for doc in page.documents]

    async def update_profile(self, **changes: str) -> bool:
        """Update the viewer's editable profile fields.

        Accepted keywords: ``display_name``, ``bio``, ``website``,
        ``photo_url`` and ``cover_url``.
        """
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Not editable: {', '.join(sorted(unknown))}")
        if not changes:
            return False
        uid = self.viewer().uid
        fields = {EDITABLE_FIELDS[name]: value for name, value in changes.items()}
        try:
            await self.store.update(USERS, uid, fields)
        except StoreError as exc:
            logger.error("Failed to update profile %s: %s", uid, exc)
            return False
        return True

    async def upload_image(
        self, kind: Literal["photo", "cover"], upload: Upload
    ) -> str | None:
        """Upload an avatar or cover image and point the profile at it."""
        field = "photo_url" if kind == "photo" else "cover_url"
        try:
            url = await self.upload(MEDIA_FOLDER, upload)
        except StoreError as exc:
            logger.error("Failed to upload %s image: %s", kind, exc)
            return None
        if not await self.update_profile(**{field: url}):
            return None
        return url

    async def is_following(self, target_uid: str) -> bool:
        uid = self.viewer().uid
        try:
            return await self.store.get(FOLLOWS, relation_id(uid, target_uid)) is not None
        except StoreError as exc:
            logger.warning("Failed to read follow state: %s", exc)
            return False

    async def is_blocked(self, target_uid: str) -> bool:
        """True when the viewer has blocked ``target_uid``."""
        uid = self.viewer().uid
        try:
            return await self.store.get(BLOCKS, relation_id(uid, target_uid)) is not None
        except StoreError as exc:
            logger.warning("Failed to read block state: %s", exc)
            return False

    async def follow(self, target_uid: str) -> bool:
        """Follow ``target_uid``; refused for oneself and for blocked users."""
        uid = self.viewer().uid
        if target_uid == uid:
            return False
        if await self.is_blocked(target_uid):
            logger.info("Refusing to follow blocked user %s", target_uid)
            return False
        follow_id = relation_id(uid, target_uid)
        try:
            if await self.store.get(FOLLOWS, follow_id) is not None:
                return False
            batch = self.store.batch()
            batch.set(
                FOLLOWS,
                follow_id,
                {"followerId": uid, "followedId": target_uid, "createdAt": SERVER_TIMESTAMP},
            )
            batch.update(USERS, target_uid, {"followersCount": Increment(1)})
            batch.update(USERS, uid, {"followingCount": Increment(1)})
            await self.store.commit(batch)
        except StoreError as exc:
            logger.error("Failed to follow %s: %s", target_uid, exc)
            return False
        await self.notifications.notify(target_uid, NotificationType.FOLLOW)
        return True

    async def unfollow(self, target_uid: str) -> bool:
        uid = self.viewer().uid
        follow_id = relation_id(uid, target_uid)
        try:
            if await self.store.get(FOLLOWS, follow_id) is None:
                return False
            batch = self.store.batch()
            batch.delete(FOLLOWS, follow_id)
            batch.update(USERS, target_uid, {"followersCount": Increment(-1)})
            batch.update(USERS, uid, {"followingCount": Increment(-1)})
            await self.store.commit(batch)
        except StoreError as exc:
            logger.error("Failed to unfollow %s: %s", target_uid, exc)
            return False
        return True

    async def toggle_follow(self, target_uid: str) -> bool:
        """Flip the follow state and return whether the viewer now follows."""
        if await self.is_following(target_uid):
            await self.unfollow(target_uid)
        else:
            await self.follow(target_uid)
        return await self.is_following(target_uid)

    async def block(self, target_uid: str) -> bool:
        """Block ``target_uid``; an existing follow of that user is dropped."""
        uid = self.viewer().uid
        if target_uid == uid:
            return False
        try:
            await self.store.set(
                BLOCKS,
                relation_id(uid, target_uid),
                {"blockerId": uid, "blockedId": target_uid, "createdAt": SERVER_TIMESTAMP},
            )
        except StoreError as exc:
            logger.error("Failed to block %s: %s", target_uid, exc)
            return False
        await self.unfollow(target_uid)
        return True

    async def unblock(self, target_uid: str) -> bool:
        uid = self.viewer().uid
        try:
            await self.store.delete(BLOCKS, relation_id(uid, target_uid))
        except StoreError as exc:
            logger.error("Failed to unblock %s: %s", target_uid, exc)
            return False
        return True

    async def _connections(self, field: str, uid: str, other_field: str) -> list[UserProfile]:
        try:
            page = await self.store.query(Query(FOLLOWS).where(field, "==", uid))
        except StoreError as exc:
            logger.warning("Failed to list follows of %s: %s", uid, exc)
            return []
        profiles: list[UserProfile] = []
        for document in page.documents:
            profile = await self.get(document.get(other_field, ""))
            if profile is not None:
                profiles.append(profile)
        return profiles

    async def followers(self, uid: str) -> list[UserProfile]:
        """Profiles following ``uid``; deleted accounts are skipped."""
        return await self._connections("followedId", uid, "followerId")

    async def following(self, uid: str) -> list[UserProfile]:
        """Profiles ``uid`` follows; deleted accounts are skipped."""
        return await self._connections("followerId", uid, "followedId")


class LiveProfile:
    """A profile document kept current through a subscription."""

    def __init__(self, context: ClientContext, uid: str) -> None:
        self.uid = uid
        self._reconciler: Reconciler[UserProfile] = Reconciler(
            context, Query.document(USERS, uid), UserProfile.from_document, name=f"profile:{uid}"
        )

    @property
    def profile(self) -> UserProfile | None:
        return self._reconciler.collection.get(self.uid)

    async def start(self) -> bool:
        try:
            await self._reconciler.start()
        except StoreError as exc:
            logger.warning("Profile subscription for %s failed to open: %s", self.uid, exc)
            return False
        return True

    async def flush(self) -> None:
        await self._reconciler.flush()

    def stop(self) -> None:
        self._reconciler.stop()
