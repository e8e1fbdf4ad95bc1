"""
Lock Backend - Abstract interface for distributed lock stores
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Tuple

from pydantic import BaseModel

from dblock.common.context import Context


class LockView(BaseModel):
    """Read-only snapshot of a lock record. Never carries the owner token."""
    key: str
    ttl_ms: int = 0
    metadata: Optional[str] = None
    locked_by: Optional[str] = None
    locked_pid: Optional[str] = None
    locked_at: Optional[datetime] = None


class LockBackend(ABC):
    """
    Coordination store a lock can be built on.

    Each operation must run as a single logical unit on the store: the
    ownership comparison and the mutation never span two round trips.
    ``metadata`` is passed alongside the token because some stores keep both
    in one value and compare them together.
    """

    #: Length of the tokens this backend generates. Callers sharing a key
    #: are expected to use tokens of this length.
    token_length: Optional[int] = None

    @abstractmethod
    def obtain(self, key: str, token: str, metadata: str, ttl_ms: int,
               ctx: Optional[Context] = None) -> bool:
        """Create or reclaim the lock record; True iff now held under token"""
        pass

    @abstractmethod
    def refresh(self, key: str, token: str, metadata: str, ttl_ms: int,
                ctx: Optional[Context] = None) -> bool:
        """Extend the TTL if token still owns the record"""
        pass

    @abstractmethod
    def release(self, key: str, token: str, metadata: str,
                ctx: Optional[Context] = None) -> bool:
        """Invalidate the record if token still owns it"""
        pass

    @abstractmethod
    def query(self, key: str, token: str, metadata: str,
              ctx: Optional[Context] = None) -> Tuple[int, bool]:
        """Remaining TTL in ms and whether token owns a record for key"""
        pass

    @abstractmethod
    def view(self, key: str, ctx: Optional[Context] = None) -> Optional[LockView]:
        """Diagnostic snapshot of whatever record currently exists for key"""
        pass

    def close(self):
        """Release client resources"""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def check_context(ctx: Optional[Context]):
    if ctx is not None:
        ctx.raise_if_done()
