"""The access predicate shared by every post listing."""

from __future__ import annotations

from datetime import datetime

from signal_client.core.clock import ensure_aware, utcnow
from signal_client.schemas.post import Post, Visibility


def is_visible(post: Post, viewer_id: str | None, now: datetime | None = None) -> bool:
    """Return True when ``viewer_id`` may see ``post`` at ``now``.

    A post is visible to everyone once it is public and either published or
    past its scheduled time; its author always sees it.
    """
    if viewer_id is not None and post.author_id == viewer_id:
        return True
    if post.visibility != Visibility.PUBLIC:
        return False
    if post.is_published:
        return True
    if post.scheduled_at is None:
        return False
    return ensure_aware(post.scheduled_at) <= ensure_aware(now or utcnow())
