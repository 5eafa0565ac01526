"""@mention parsing."""

import re

MENTION_PATTERN = re.compile(r"(?<![\w@])@([A-Za-z0-9_.]{1,30})")


def extract_mentions(text: str) -> list[str]:
    """Return lowercase usernames mentioned in ``text``, deduped, in order."""
    seen: dict[str, None] = {}
    for match in MENTION_PATTERN.finditer(text or ""):
        seen.setdefault(match.group(1).rstrip(".").lower(), None)
    return [name for name in seen if name]
