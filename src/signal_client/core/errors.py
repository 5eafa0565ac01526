"""Exception hierarchy shared by stores, blob storage and services."""


class StoreError(RuntimeError):
    """Base exception raised for backend failures.

    Services catch this at the call site; it must never escape a subscription
    loop or terminate the reconciler.
    """


class TransientStoreError(StoreError):
    """Raised for network, timeout and other retryable backend failures."""


class PermissionDeniedError(StoreError):
    """Raised when the backend rejects an operation under its access rules."""


class NotAuthenticatedError(PermissionDeniedError):
    """Raised when an operation needs a signed-in viewer and there is none."""


class DocumentNotFoundError(StoreError):
    """Raised when a partial update targets a document that does not exist."""

    def __init__(self, collection: str, document_id: str) -> None:
        super().__init__(f"{collection}/{document_id} does not exist")
        self.collection = collection
        self.document_id = document_id


class StoreClosedError(StoreError):
    """Raised when a disposed backend is used."""


class BlobStoreError(StoreError):
    """Raised when a blob upload fails."""


class InvalidTokenError(PermissionDeniedError):
    """Raised when an identity token cannot be verified."""


class NotOwnerError(PermissionDeniedError):
    """Raised before writing when the viewer does not own the target document."""


class ValidationError(ValueError):
    """Base exception for rejected input; raised before any write."""


class EmptyContentError(ValidationError):
    """Raised when a post, comment or message has neither text nor media."""


class InvalidReplyError(ValidationError):
    """Raised when replying to a reply or to a comment of another post."""


class InvalidUsernameError(ValidationError):
    """Raised when a username is empty or contains unsupported characters."""


class UsernameTakenError(ValidationError):
    """Raised when registering a username that already belongs to someone else."""


class InvalidChatError(ValidationError):
    """Raised when a chat would not have exactly two distinct participants."""
