"""
Practice-management store session handling.

Sessions are explicit values owned by whoever talks to the store; there is
no process-wide token cache. ``ensure_valid_session`` returns the same
session while it is still valid and otherwise acquires a fresh one.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

# The store expires idle tokens after 15 minutes; refresh a minute early.
SESSION_LIFETIME = timedelta(minutes=14)


@dataclass(frozen=True)
class SourceSession:
    token: str
    expires_at: datetime

    @classmethod
    def issued(cls, token: str, now: Optional[datetime] = None) -> "SourceSession":
        now = now or datetime.now(timezone.utc)
        return cls(token=token, expires_at=now + SESSION_LIFETIME)


def session_is_valid(session: Optional[SourceSession], now: Optional[datetime] = None) -> bool:
    if session is None or not session.token:
        return False
    now = now or datetime.now(timezone.utc)
    return session.expires_at > now


async def ensure_valid_session(
    session: Optional[SourceSession],
    acquire: Callable[[], Awaitable[SourceSession]],
    now: Optional[datetime] = None,
) -> SourceSession:
    """Return ``session`` if still valid, otherwise a new one from ``acquire``."""
    if session_is_valid(session, now):
        return session
    return await acquire()
