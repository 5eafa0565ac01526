"""Collection names and relation keys."""

POSTS = "posts"
COMMENTS = "comments"
NOTIFICATIONS = "notifications"
CHATS = "chats"
MESSAGES = "messages"
USERS = "users"
FOLLOWS = "follows"
BLOCKS = "blocks"
LIKES = "likes"
SAVED_POSTS = "saved_posts"
COMMENT_LIKES = "comment_likes"


def relation_id(actor_id: str, target_id: str) -> str:
    """Key of an existence-marker relation such as a follow or a like."""
    return f"{actor_id}_{target_id}"
