"""CredentialProvider Port Interface.

Contract: Resolve the API key/secret pair and the paper/live flag on demand;
no caching here. Streams call resolve() on start and again before every
connection attempt.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from alpa.stream.credentials import Credentials


class CredentialProvider(Protocol):
    def resolve(self) -> Credentials: ...

    """
    Return fresh credentials.
    Raises MissingCredentialsError when no complete key/secret pair is available.
    """
