"""Home feed assembly.

The assembler keeps a raw, id-keyed list of posts fed by two sources: cursor
pages over public posts (newest first) and live subscriptions over the most
recent public window and the viewer's own posts. Every call to
:meth:`FeedAssembler.posts` filters that raw list through the visibility
predicate, the block-set, the active tab, tag and search term, then sorts it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

from signal_client.context import ClientContext
from signal_client.core.clock import utcnow
from signal_client.core.errors import StoreError
from signal_client.realtime.reconciler import LiveCollection, Reconciler
from signal_client.realtime.subscription import Subscription
from signal_client.schemas.collections import BLOCKS, FOLLOWS, POSTS
from signal_client.schemas.post import Post, Visibility
from signal_client.services.ranking import sort_latest, sort_trending, trending_tags
from signal_client.services.visibility import is_visible
from signal_client.store.base import Change, ChangeType, Cursor, Document, Query

logger = logging.getLogger(__name__)

ALL_TAGS = "ALL"


class FeedTab(str, Enum):
    LATEST = "Latest"
    FOLLOWING = "Following"
    TRENDING = "Trending"


@dataclass(frozen=True)
class FeedFilters:
    """Client-supplied feed filters."""

    tab: FeedTab = FeedTab.LATEST
    search: str = ""
    tag: str = ALL_TAGS

    @property
    def active_tag(self) -> str | None:
        """The tag filter, or None when every tag is shown."""
        tag = self.tag.strip().lstrip("#").strip()
        if not tag or tag.upper() == ALL_TAGS:
            return None
        return tag


def matches_search(post: Post, term: str) -> bool:
    """Match a search term; ``#term`` compares tags exactly, anything else is a substring."""
    term = term.strip().lower()
    if not term:
        return True
    tags = [tag.lower() for tag in post.tags]
    if term.startswith("#"):
        return term[1:] in tags
    return (
        term in post.content.lower()
        or term in post.author_username.lower()
        or any(term in tag for tag in tags)
    )


def assemble(
    posts: Iterable[Post],
    viewer_id: str | None,
    filters: FeedFilters,
    *,
    following: set[str] | frozenset[str] = frozenset(),
    blocked: set[str] | frozenset[str] = frozenset(),
    now: datetime | None = None,
) -> list[Post]:
    """Filter and order raw posts for display.

    Args:
        posts: Raw posts, in any order and possibly stale.
        viewer_id: The signed-in viewer.
        filters: Tab, search term and tag.
        following: Authors the viewer follows.
        blocked: Authors the viewer has blocked.
        now: Wall clock used for scheduled posts.

    Returns:
        The visible posts, deduplicated by id and sorted for the active tab.
    """
    now = now or utcnow()
    active_tag = filters.active_tag
    tag_key = active_tag.lower() if active_tag else None

    seen: set[str] = set()
    selected: list[Post] = []
    for post in posts:
        if post.id in seen:
            continue
        seen.add(post.id)
        if post.author_id in blocked:
            continue
        if not is_visible(post, viewer_id, now):
            continue
        if (
            filters.tab is FeedTab.FOLLOWING
            and post.author_id not in following
            and post.author_id != viewer_id
        ):
            continue
        if tag_key and tag_key not in (tag.lower() for tag in post.tags):
            continue
        if not matches_search(post, filters.search):
            continue
        selected.append(post)

    if filters.tab is FeedTab.TRENDING or active_tag:
        return sort_trending(selected)
    return sort_latest(selected)


class FeedAssembler:
    """Paginated, live-merged home feed for the signed-in viewer."""

    def __init__(self, context: ClientContext, filters: FeedFilters | None = None) -> None:
        self.context = context
        self.filters = filters or FeedFilters()
        self.raw: LiveCollection[Post] = LiveCollection(Post.from_document)
        self.last_error: BaseException | None = None
        self._cursor: Cursor | None = None
        self._has_more = True
        self._viewer_id: str | None = None
        self._live: list[Subscription] = []
        self._follows: Reconciler[str] | None = None
        self._blocks: Reconciler[str] | None = None

    @property
    def page_size(self) -> int:
        return self.context.settings.feed_page_size

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def following(self) -> set[str]:
        return set(self._follows.items()) if self._follows else set()

    @property
    def blocked(self) -> set[str]:
        return set(self._blocks.items()) if self._blocks else set()

    def _public_query(self) -> Query:
        return Query(POSTS).where("visibility", "==", Visibility.PUBLIC.value).order(
            "createdAt", descending=True
        )

    async def start(self) -> None:
        """Load the first page and open the live subscriptions."""
        viewer = self.context.require_viewer()
        self._viewer_id = viewer.uid
        await self.load_initial()
        await self._open_live()

    async def _open_live(self) -> None:
        uid = self._viewer_id
        assert uid is not None
        window = self.context.settings.feed_live_window
        if self._follows is None:
            self._follows = Reconciler(
                self.context,
                Query(FOLLOWS).where("followerId", "==", uid),
                lambda doc: str(doc.get("followedId")),
                name="feed-follows",
            )
        if self._blocks is None:
            self._blocks = Reconciler(
                self.context,
                Query(BLOCKS).where("blockerId", "==", uid),
                lambda doc: str(doc.get("blockedId")),
                name="feed-blocks",
            )
        queries = {
            "feed-live": self._public_query().take(window),
            "feed-own": Query(POSTS)
            .where("authorId", "==", uid)
            .order("createdAt", descending=True)
            .take(window),
        }
        try:
            await self._follows.start()
            await self._blocks.start()
            for name, query in queries.items():
                self._live.append(await self.context.subscribe(query, self._apply_live, name))
        except StoreError as exc:
            self.last_error = exc
            logger.warning("Feed subscriptions failed to open: %s", exc)

    async def _apply_live(self, changes: list[Change]) -> None:
        resolved: list[Change] = []
        for change in changes:
            if change.type is ChangeType.REMOVED:
                # A post leaving the bounded window is not a deletion.
                try:
                    current = await self.context.store.get(POSTS, change.document.id)
                except StoreError as exc:
                    logger.warning("Could not confirm removal of %s: %s", change.document.id, exc)
                    current = None
                if current is not None:
                    change = Change(ChangeType.MODIFIED, current)
            resolved.append(change)
        if self.raw.apply_batch(resolved):
            logger.debug("Feed merged %d live change(s)", len(resolved))

    async def _fetch_page(self) -> list[Document] | None:
        query = self._public_query().take(self.page_size).after(self._cursor)
        try:
            page = await self.context.store.query(query)
        except StoreError as exc:
            self.last_error = exc
            logger.warning("Feed page failed to load: %s", exc)
            return None
        if page.cursor is not None:
            self._cursor = page.cursor
        self._has_more = page.has_more
        return page.documents

    async def load_initial(self) -> int:
        """Reset the raw list to the first page; return the number of posts loaded."""
        self._cursor = None
        self._has_more = True
        documents = await self._fetch_page()
        if documents is None:
            return 0
        self.raw.replace(documents)
        self.last_error = None
        return len(documents)

    async def load_more(self) -> int:
        """Append the next page; return the number of new posts."""
        if not self._has_more:
            return 0
        documents = await self._fetch_page()
        if documents is None:
            return 0
        return self.raw.extend(documents)

    def set_filters(
        self,
        *,
        tab: FeedTab | None = None,
        search: str | None = None,
        tag: str | None = None,
    ) -> FeedFilters:
        changes: dict[str, object] = {}
        if tab is not None:
            changes["tab"] = FeedTab(tab)
        if search is not None:
            changes["search"] = search
        if tag is not None:
            changes["tag"] = tag
        self.filters = replace(self.filters, **changes)
        return self.filters

    def posts(self, now: datetime | None = None) -> list[Post]:
        """The feed as it should be displayed right now."""
        return assemble(
            self.raw.items(),
            self._viewer_id or self.context.viewer_id,
            self.filters,
            following=self.following,
            blocked=self.blocked,
            now=now,
        )

    def trending_tags(self, limit: int | None = None, now: datetime | None = None) -> list[str]:
        """Most used tags among the posts the viewer may see."""
        viewer_id = self._viewer_id or self.context.viewer_id
        now = now or utcnow()
        visible = [
            post
            for post in self.raw.items()
            if post.author_id not in self.blocked and is_visible(post, viewer_id, now)
        ]
        return trending_tags(visible, limit or self.context.settings.trending_tags_limit)

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._live)

    def failed(self) -> bool:
        """True when any live subscription has stopped or never opened."""
        reconcilers = [self._follows, self._blocks]
        if any(rec is None or not rec.active for rec in reconcilers):
            return True
        return len(self._live) < 2 or any(not sub.active for sub in self._live)

    async def refresh(self) -> None:
        """Reload the first page and reopen the live subscriptions.

        The reopened streams re-deliver the live window and the viewer's own
        posts, and rebuild the follow and block sets, so stopped subscriptions
        recover here.
        """
        if self._viewer_id is None:
            await self.start()
            return
        if self.failed():
            logger.info("Restarting failed feed subscriptions")
        self._close_live()
        for rec in (self._follows, self._blocks):
            if rec is not None:
                rec.collection.clear()
        await self.load_initial()
        await self._open_live()

    async def flush(self) -> None:
        """Wait until delivered live batches have been merged."""
        for sub in self._live:
            await sub.flush()
        for rec in (self._follows, self._blocks):
            if rec is not None:
                await rec.flush()

    def _close_live(self) -> None:
        for sub in self._live:
            sub.cancel()
        self._live.clear()
        for rec in (self._follows, self._blocks):
            if rec is not None:
                rec.stop()

    def stop(self) -> None:
        self._close_live()
