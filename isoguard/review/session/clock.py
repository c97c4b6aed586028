"""
Injectable time and id sources for the review core.

The session never reads the wall clock or a random generator directly; both
come in through the constructor so tests can pin them.
"""
import uuid
from datetime import datetime, timezone


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class IdFactory:
    """Produces ids like ``finding-3f9c2a71d0b4``."""

    def __call__(self, prefix: str) -> str:
        return f"{prefix}-{uuid.uuid4().hex[:12]}"
