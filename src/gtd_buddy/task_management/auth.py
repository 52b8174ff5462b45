"""Bearer credential verification for the HTTP endpoint."""

import hmac
import logging
from abc import ABC, abstractmethod

from .exceptions import AuthenticationError

logger = logging.getLogger(__name__)


class TokenVerifier(ABC):
    """Verifies a bearer credential and returns the identity it belongs to."""

    @abstractmethod
    async def verify(self, credential: str) -> str:
        """
        Verify a credential.

        Args:
            credential: Bearer token from the request

        Returns:
            Stable user identifier

        Raises:
            AuthenticationError: If the credential is invalid
        """
        pass


class StaticTokenVerifier(TokenVerifier):
    """Accepts a single pre-shared token bound to one user."""

    def __init__(self, token: str, user_id: str) -> None:
        if not token:
            raise ValueError("token must not be empty")
        self._token = token.encode()
        self._user_id = user_id

    async def verify(self, credential: str) -> str:
        if not hmac.compare_digest(credential.encode(), self._token):
            logger.warning("Rejected request with an invalid bearer token")
            raise AuthenticationError("Invalid bearer token")
        return self._user_id


def parse_bearer(header: str | None) -> str:
    """
    Extract the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        AuthenticationError: If the header is missing or malformed
    """
    if not header:
        raise AuthenticationError("Missing Authorization header")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Authorization header must use the Bearer scheme")
    return token.strip()
