"""Explore, reels and profile post listings.

Each listing queries broadly and filters through
:func:`~signal_client.services.visibility.is_visible` on every read.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum

from signal_client.context import ClientContext
from signal_client.core.clock import utcnow
from signal_client.core.errors import StoreError
from signal_client.realtime.reconciler import LiveCollection, Reconciler
from signal_client.schemas.collections import LIKES, POSTS, SAVED_POSTS
from signal_client.schemas.post import VISUAL_TYPES, Post, PostType, Visibility
from signal_client.services.ranking import sort_latest, sort_trending
from signal_client.services.visibility import is_visible
from signal_client.store.base import Cursor, Document, Query

logger = logging.getLogger(__name__)

ALL_CATEGORIES = "All"


class ExploreFeed:
    """Live grid of visual public posts in trending order."""

    def __init__(self, context: ClientContext) -> None:
        self.context = context
        query = (
            Query(POSTS)
            .where("visibility", "==", Visibility.PUBLIC.value)
            .order("createdAt", descending=True)
            .take(context.settings.explore_window)
        )
        self._reconciler: Reconciler[Post] = Reconciler(
            context, query, Post.from_document, name="explore"
        )

    @property
    def last_error(self) -> BaseException | None:
        return self._reconciler.error

    async def start(self) -> bool:
        try:
            await self._reconciler.start()
        except StoreError as exc:
            logger.warning("Explore subscription failed to open: %s", exc)
            return False
        return True

    def posts(self, category: str = ALL_CATEGORIES, now: datetime | None = None) -> list[Post]:
        viewer_id = self.context.viewer_id
        now = now or utcnow()
        selected = [
            post
            for post in self._reconciler.items()
            if post.type in VISUAL_TYPES
            and is_visible(post, viewer_id, now)
            and (category == ALL_CATEGORIES or post.category == category)
        ]
        return sort_trending(selected)

    async def flush(self) -> None:
        await self._reconciler.flush()

    def stop(self) -> None:
        self._reconciler.stop()


class ReelsFeed:
    """Live list of the newest visible reels, including the viewer's own drafts."""

    def __init__(self, context: ClientContext) -> None:
        self.context = context
        query = (
            Query(POSTS)
            .where("type", "==", PostType.REEL.value)
            .where("visibility", "==", Visibility.PUBLIC.value)
            .order("createdAt", descending=True)
            .take(context.settings.reels_window)
        )
        self._reconciler: Reconciler[Post] = Reconciler(
            context, query, Post.from_document, name="reels"
        )
        self._own: Reconciler[Post] | None = None
        viewer_id = context.viewer_id
        if viewer_id is not None:
            own_query = (
                Query(POSTS)
                .where("type", "==", PostType.REEL.value)
                .where("authorId", "==", viewer_id)
                .order("createdAt", descending=True)
                .take(context.settings.reels_window)
            )
            self._own = Reconciler(context, own_query, Post.from_document, name="own-reels")

    def _reconcilers(self) -> list[Reconciler[Post]]:
        return [self._reconciler] if self._own is None else [self._reconciler, self._own]

    @property
    def last_error(self) -> BaseException | None:
        for reconciler in self._reconcilers():
            if reconciler.error is not None:
                return reconciler.error
        return None

    async def start(self) -> bool:
        try:
            for reconciler in self._reconcilers():
                await reconciler.start()
        except StoreError as exc:
            logger.warning("Reels subscription failed to open: %s", exc)
            return False
        return True

    def posts(self, now: datetime | None = None) -> list[Post]:
        viewer_id = self.context.viewer_id
        now = now or utcnow()
        merged: dict[str, Post] = {}
        for reconciler in self._reconcilers():
            for post in reconciler.items():
                merged.setdefault(post.id, post)
        return sort_latest(post for post in merged.values() if is_visible(post, viewer_id, now))

    async def flush(self) -> None:
        for reconciler in self._reconcilers():
            await reconciler.flush()

    def stop(self) -> None:
        for reconciler in self._reconcilers():
            reconciler.stop()


class ProfileTab(str, Enum):
    POSTS = "Posts"
    REELS = "Reels"
    LIKES = "Likes"
    SAVED = "Saved"


class ProfileFeed:
    """Paged content of one profile.

    ``Posts`` and ``Reels`` list the profile's own posts; ``Likes`` and
    ``Saved`` resolve the owner's relation records into posts, skipping posts
    that no longer exist. Likes and Saved are private to the profile owner.
    """

    def __init__(
        self,
        context: ClientContext,
        profile_uid: str,
        tab: ProfileTab = ProfileTab.POSTS,
        content_type: PostType | None = None,
    ) -> None:
        self.context = context
        self.profile_uid = profile_uid
        self.tab = ProfileTab(tab)
        self.content_type = content_type
        self.raw: LiveCollection[Post] = LiveCollection(Post.from_document)
        self.last_error: BaseException | None = None
        self._cursor: Cursor | None = None
        self._has_more = True

    @property
    def is_own_profile(self) -> bool:
        return self.context.viewer_id == self.profile_uid

    @property
    def has_more(self) -> bool:
        return self._has_more

    def _query(self) -> Query:
        page_size = self.context.settings.profile_page_size
        if self.tab in {ProfileTab.LIKES, ProfileTab.SAVED}:
            collection = LIKES if self.tab is ProfileTab.LIKES else SAVED_POSTS
            query = Query(collection).where("userId", "==", self.profile_uid)
        else:
            query = Query(POSTS).where("authorId", "==", self.profile_uid)
            if not self.is_own_profile:
                query = query.where("visibility", "==", Visibility.PUBLIC.value)
            if self.tab is ProfileTab.REELS:
                query = query.where("type", "==", PostType.REEL.value)
        return query.order("createdAt", descending=True).take(page_size).after(self._cursor)

    async def _resolve(self, relations: list[Document]) -> list[Document]:
        documents: list[Document] = []
        for relation in relations:
            post_id = relation.get("postId")
            if not post_id:
                continue
            document = await self.context.store.get(POSTS, post_id)
            if document is None:
                logger.debug("Skipping missing post %s", post_id)
                continue
            documents.append(document)
        return documents

    async def _fetch(self) -> list[Document] | None:
        if self.tab in {ProfileTab.LIKES, ProfileTab.SAVED} and not self.is_own_profile:
            self._has_more = False
            return []
        try:
            page = await self.context.store.query(self._query())
            documents = page.documents
            if self.tab in {ProfileTab.LIKES, ProfileTab.SAVED}:
                documents = await self._resolve(documents)
        except StoreError as exc:
            self.last_error = exc
            logger.warning("Profile %s page failed to load: %s", self.profile_uid, exc)
            return None
        if page.cursor is not None:
            self._cursor = page.cursor
        self._has_more = page.has_more
        return documents

    async def load_initial(self) -> int:
        self._cursor = None
        self._has_more = True
        documents = await self._fetch()
        if documents is None:
            return 0
        self.raw.replace(documents)
        self.last_error = None
        return len(documents)

    async def load_more(self) -> int:
        if not self._has_more:
            return 0
        documents = await self._fetch()
        if documents is None:
            return 0
        return self.raw.extend(documents)

    async def set_tab(self, tab: ProfileTab) -> int:
        self.tab = ProfileTab(tab)
        return await self.load_initial()

    def posts(self, now: datetime | None = None) -> list[Post]:
        viewer_id = self.context.viewer_id
        now = now or utcnow()
        selected = [post for post in self.raw.items() if is_visible(post, viewer_id, now)]
        if self.tab is ProfileTab.POSTS and self.content_type is not None:
            selected = [post for post in selected if post.type == self.content_type]
        if self.tab in {ProfileTab.LIKES, ProfileTab.SAVED}:
            return selected
        return sort_latest(selected)
