"""
In-memory session token table.

Tokens are opaque random identifiers (UUID4, 122 bits of randomness) bound
to a username and the instant they were issued. Tokens are never refreshed
on use: a token lives exactly ``token_timeout_minutes`` from issue and is
then removed by the expiry sweeper. The table is volatile by design; a
process restart invalidates every session.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class TokenRecord:
    """
    A single issued token.

    Attributes:
        username: Owner of the token.
        issued_at: When the token was issued.
    """

    username: str
    issued_at: datetime

    def age(self, now: datetime) -> timedelta:
        """Time elapsed since issue."""
        return now - self.issued_at

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        """Check whether the token has reached its time-to-live."""
        return self.age(now) >= ttl


class TokenTable:
    """
    Mapping of opaque token to (username, issued-at).

    Example:
        >>> table = TokenTable()
        >>> token = table.issue("alice")
        >>> table.resolve(token).username
        'alice'
    """

    def __init__(self, clock: Clock | None = None) -> None:
        """
        Initialize an empty table.

        Args:
            clock: Source of the current time (defaults to UTC wall clock).
        """
        self._clock = clock if clock is not None else utc_now
        self._tokens: dict[str, TokenRecord] = {}

    @property
    def clock(self) -> Clock:
        """The table's time source."""
        return self._clock

    def issue(self, username: str) -> str:
        """
        Issue a fresh token for ``username``.

        Returns:
            The new token identifier.
        """
        token = str(uuid.uuid4())
        self._tokens[token] = TokenRecord(username=username, issued_at=self._clock())
        return token

    def resolve(self, token: str) -> TokenRecord | None:
        """Look up a token without refreshing it."""
        return self._tokens.get(token)

    def revoke_expired(self, now: datetime, ttl: timedelta) -> int:
        """
        Remove every token whose age has reached ``ttl``.

        Args:
            now: Reference instant.
            ttl: Token lifetime.

        Returns:
            Number of tokens removed.
        """
        expired = [
            token for token, record in self._tokens.items() if record.is_expired(now, ttl)
        ]
        for token in expired:
            del self._tokens[token]
        return len(expired)

    def __contains__(self, token: object) -> bool:
        return token in self._tokens

    def __len__(self) -> int:
        return len(self._tokens)
