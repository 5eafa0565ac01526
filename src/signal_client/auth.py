"""Identity providers.

The backend issues and verifies credentials; the client only needs to know
who the current viewer is. :class:`TokenIdentityProvider` derives that from an
ID token signed by the backend's auth service.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt
from pydantic import BaseModel

from signal_client.core.errors import InvalidTokenError
from signal_client.core.settings import Settings

logger = logging.getLogger(__name__)


class Identity(BaseModel):
    """The signed-in viewer."""

    uid: str
    display_name: str | None = None
    photo_url: str | None = None
    email: str | None = None


class IdentityProvider(ABC):
    """Source of the current viewer identity."""

    @abstractmethod
    def current_user(self) -> Identity | None:
        """Return the signed-in viewer, or None when signed out."""


class StaticIdentityProvider(IdentityProvider):
    """Identity set explicitly by the host application (and by tests)."""

    def __init__(self, identity: Identity | None = None) -> None:
        self._identity = identity

    def current_user(self) -> Identity | None:
        return self._identity

    def sign_in(self, identity: Identity) -> None:
        self._identity = identity

    def sign_out(self) -> None:
        self._identity = None


class TokenIdentityProvider(IdentityProvider):
    """Resolves the viewer from a verified ID token."""

    def __init__(self, secret: str, *, algorithm: str = "HS256", audience: str | None = None) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._audience = audience
        self._identity: Identity | None = None

    @classmethod
    def from_settings(cls, config: Settings) -> TokenIdentityProvider:
        if not config.auth_token_secret:
            raise InvalidTokenError("SIGNAL_AUTH_TOKEN_SECRET is not configured")
        return cls(
            config.auth_token_secret,
            algorithm=config.auth_token_algorithm,
            audience=config.auth_token_audience,
        )

    def verify(self, token: str) -> Identity:
        """Decode and validate an ID token.

        Args:
            token: Encoded JWT issued by the auth service.

        Returns:
            The identity carried by the token's claims.

        Raises:
            InvalidTokenError: If the signature, expiry or audience check fails,
                or the token carries no subject.
        """
        options = {"verify_aud": self._audience is not None}
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._audience,
                options=options,
            )
        except JWTError as err:
            raise InvalidTokenError("Could not validate credentials") from err

        subject = payload.get("sub") or payload.get("user_id")
        if not subject:
            raise InvalidTokenError("Token has no subject")
        return Identity(
            uid=str(subject),
            display_name=payload.get("name"),
            photo_url=payload.get("picture"),
            email=payload.get("email"),
        )

    def sign_in(self, token: str) -> Identity:
        self._identity = self.verify(token)
        logger.info("Signed in as %s", self._identity.uid)
        return self._identity

    def sign_out(self) -> None:
        self._identity = None

    def current_user(self) -> Identity | None:
        return self._identity


def create_id_token(
    uid: str,
    secret: str,
    *,
    algorithm: str = "HS256",
    audience: str | None = None,
    expires_in: timedelta = timedelta(hours=1),
    extra_claims: dict[str, str] | None = None,
) -> str:
    """Create an ID token, for development backends and tests."""
    to_encode: dict[str, object] = {"sub": uid}
    if audience:
        to_encode["aud"] = audience
    if extra_claims:
        to_encode.update(extra_claims)
    to_encode["exp"] = datetime.now(UTC) + expires_in
    encoded_jwt: str = jwt.encode(to_encode, secret, algorithm=algorithm)
    return encoded_jwt
