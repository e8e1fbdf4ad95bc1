import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .backend import LockBackend
from .retry import NoRetry, RetryStrategy
from dblock.common.context import Context
from dblock.errors import LockNotHeld, NotObtained
from dblock.utils.token import DEFAULT_TOKEN_SIZE, random_token

logger = logging.getLogger(__name__)


@dataclass
class Options:
    retry_strategy: Optional[RetryStrategy] = None
    metadata: str = ""
    # empty means a random token is generated
    token: str = ""

    def get_retry_strategy(self) -> RetryStrategy:
        if self.retry_strategy is not None:
            return self.retry_strategy
        return NoRetry()


class Lock:
    """
    An obtained distributed lock.

    Dropping the handle does not release the lock; call ``release`` or use
    the handle as a context manager.
    """

    def __init__(self, backend: LockBackend, key: str, token: str, metadata: str = ""):
        self._backend = backend
        self._key = key
        self._token = token
        self._metadata = metadata

    @property
    def backend(self) -> LockBackend:
        return self._backend

    @property
    def key(self) -> str:
        return self._key

    @property
    def token(self) -> str:
        return self._token

    @property
    def metadata(self) -> str:
        return self._metadata

    def ttl(self, ctx: Optional[Context] = None) -> int:
        """Remaining time-to-live in ms, 0 once expired or no longer ours"""
        ttl_ms, found = self._backend.query(self._key, self._token, self._metadata, ctx)
        if not found:
            return 0
        return ttl_ms

    def refresh(self, ttl_ms: int, ctx: Optional[Context] = None):
        """Extend the lock with a new TTL. Raises NotObtained if it is no longer ours."""
        if not self._backend.refresh(self._key, self._token, self._metadata, ttl_ms, ctx):
            raise NotObtained()

    def release(self, ctx: Optional[Context] = None):
        """Release the lock. Raises LockNotHeld if it is no longer ours."""
        if not self._backend.release(self._key, self._token, self._metadata, ctx):
            raise LockNotHeld()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            self.release()
        except LockNotHeld:
            logger.warning(f"Lock {self._key} was lost before release", extra={"lock_key": self._key})

    def __repr__(self):
        return f"Lock(key={self._key!r}, metadata={self._metadata!r})"


class Locker:
    """Obtains locks from a backend, retrying under a RetryStrategy."""

    def __init__(self, backend: LockBackend, token_factory: Optional[Callable[[], str]] = None):
        self.backend = backend
        self._token_factory = token_factory or self._random_token

    def _random_token(self) -> str:
        return random_token(getattr(self.backend, "token_size", DEFAULT_TOKEN_SIZE))

    def obtain(self, key: str, ttl_ms: int, options: Optional[Options] = None,
               ctx: Optional[Context] = None) -> Lock:
        """
        Try to obtain the lock for ``key`` with the given TTL.

        Retries according to ``options.retry_strategy`` but never beyond
        ``ttl_ms`` or the caller's deadline, whichever is earlier. Raises
        NotObtained when the strategy gives up, a CancellationError when the
        context ends while waiting, and BackendError on store failures.
        """
        if ttl_ms <= 0:
            raise ValueError(f"ttl_ms must be positive, got {ttl_ms}")
        options = options or Options()

        token = options.token or self._token_factory()
        expected = self.backend.token_length
        if options.token and expected is not None and len(token) != expected:
            logger.warning(
                f"Custom token for {key} has length {len(token)}, "
                f"other holders are expected to use {expected}",
                extra={"lock_key": key},
            )

        retry = options.get_retry_strategy()
        extra = {"lock_key": key}
        parent = ctx or Context.background()
        # make sure we don't retry forever
        with parent.with_deadline(time.monotonic() + ttl_ms / 1000.0) as attempt_ctx:
            attempt = 0
            while True:
                attempt += 1
                attempt_ctx.raise_if_done()
                if self.backend.obtain(key, token, options.metadata, ttl_ms, attempt_ctx):
                    logger.debug(f"Obtained lock {key} on attempt {attempt}", extra=extra)
                    return Lock(self.backend, key, token, options.metadata)

                backoff = retry.next_backoff()
                if backoff <= 0:
                    logger.debug(f"Lock {key} not obtained after {attempt} attempt(s)", extra=extra)
                    raise NotObtained()

                logger.debug(f"Lock {key} busy, retrying in {backoff:.3f}s", extra=extra)
                if attempt_ctx.wait(backoff):
                    attempt_ctx.raise_if_done()


def obtain(backend: LockBackend, key: str, ttl_ms: int, options: Optional[Options] = None,
           ctx: Optional[Context] = None) -> Lock:
    """Short-cut for Locker(backend).obtain(...)"""
    return Locker(backend).obtain(key, ttl_ms, options, ctx)
