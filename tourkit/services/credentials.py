"""
Tourkit — Credential Provider Interface
=========================================

What:  Port through which uploads obtain a short-lived bearer token.
Why:   Session issuance lives outside this package. UploadCoordinator only
       needs "give me a valid token right now" before every attempt, because
       a token that was fine for attempt 1 may have expired by attempt 3.

Contract:
    get_access_token() returns a non-empty token or raises
    TerminalAuthError. UploadCoordinator also treats any other exception
    from the provider, or an empty token, as TerminalAuthError.
"""

from abc import ABC, abstractmethod
from typing import Optional

from tourkit.exceptions import TerminalAuthError


class CredentialProvider(ABC):
    """Source of the bearer credential sent with each transfer attempt."""

    @abstractmethod
    async def get_access_token(self) -> str:
        """
        Return a currently valid access token.

        Raises:
            TerminalAuthError: no signed-in session.
        """
        ...


class StaticCredentialProvider(CredentialProvider):
    """
    Wraps a token the caller already holds (e.g. the Authorization header
    of the incoming API request).
    """

    def __init__(self, token: Optional[str]):
        self._token = (token or "").strip()

    async def get_access_token(self) -> str:
        if not self._token:
            raise TerminalAuthError()
        return self._token

    @classmethod
    def from_authorization_header(cls, header: Optional[str]) -> "StaticCredentialProvider":
        """Accepts 'Bearer <token>'; anything else yields an empty provider."""
        if header and header.lower().startswith("bearer "):
            return cls(header[7:])
        return cls(None)
