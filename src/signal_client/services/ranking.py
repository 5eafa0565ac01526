"""Post ordering and tag statistics."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable

from signal_client.core.clock import EPOCH, ensure_aware
from signal_client.schemas.post import Post


def trending_score(post: Post) -> float:
    return post.likes_count * 3 + post.comments_count * 2 + post.views_count / 5


def _created_key(post: Post) -> float:
    return ensure_aware(post.created_at).timestamp() if post.created_at else EPOCH.timestamp()


def sort_latest(posts: Iterable[Post]) -> list[Post]:
    """Newest first; posts still waiting for a server timestamp sort last."""
    return sorted(posts, key=_created_key, reverse=True)


def sort_trending(posts: Iterable[Post]) -> list[Post]:
    """Highest score first, ties broken by newest first."""
    return sorted(posts, key=lambda post: (trending_score(post), _created_key(post)), reverse=True)


def normalize_tag(tag: str) -> str:
    return tag.strip().lstrip("#").strip()


def normalize_tags(tags: Iterable[str]) -> list[str]:
    """Strip ``#`` markers and blanks and drop case-insensitive duplicates.

    The first spelling of each tag wins and input order is kept.
    """
    seen: dict[str, str] = {}
    for tag in tags:
        cleaned = normalize_tag(tag)
        if cleaned:
            seen.setdefault(cleaned.lower(), cleaned)
    return list(seen.values())


def trending_tags(posts: Iterable[Post], limit: int = 8) -> list[str]:
    """Most frequent tags (lowercased) across ``posts``; ties keep first-seen order."""
    counts: Counter[str] = Counter()
    for post in posts:
        counts.update(tag.lower() for tag in normalize_tags(post.tags))
    return [tag for tag, _ in counts.most_common(limit)]
