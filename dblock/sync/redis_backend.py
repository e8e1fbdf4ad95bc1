"""
Redis implementation of LockBackend

The stored value is ``token + metadata``. Every operation is one Lua script
evaluation so the ownership check and the mutation cannot interleave with
other clients.
"""
import logging
from typing import Optional, Tuple
from redis import Redis, RedisError

from .backend import LockBackend, LockView, check_context
from dblock.common.context import Context
from dblock.errors import BackendError
from dblock.utils.connector import create_redis_client
from dblock.utils.token import DEFAULT_TOKEN_SIZE, token_length

logger = logging.getLogger(__name__)

# Returned by the pttl script when the caller does not own the key.
NOT_OWNED = -3

OBTAIN_SCRIPT = """
if redis.call("set", KEYS[1], ARGV[1], "NX", "PX", ARGV[3]) then return 1 end

local offset = tonumber(ARGV[2])
if redis.call("getrange", KEYS[1], 0, offset-1) == string.sub(ARGV[1], 1, offset) then
    redis.call("set", KEYS[1], ARGV[1], "PX", ARGV[3])
    return 1
end
return 0
"""

REFRESH_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
else
    return 0
end
"""

RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

PTTL_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pttl", KEYS[1])
else
    return -3
end
"""

VIEW_SCRIPT = """
local value = redis.call("get", KEYS[1])
if not value then return false end
return {value, redis.call("pttl", KEYS[1])}
"""


class RedisLockBackend(LockBackend):
    """
    Redis-based lock backend.

    Re-obtaining a live lock succeeds when the stored value starts with the
    caller's token, so a holder can reclaim its own lease with a stable
    token. This prefix check is only sound when every caller of a key uses
    tokens of the same length; ``token_size`` fixes that length for
    generated tokens and custom tokens should match it.
    """

    def __init__(self, redis_client: Redis, namespace: Optional[str] = None,
                 token_size: int = DEFAULT_TOKEN_SIZE):
        self._redis = redis_client
        self.namespace = namespace
        self.token_size = token_size
        self.token_length = token_length(token_size)
        self._obtain_script = self._redis.register_script(OBTAIN_SCRIPT)
        self._refresh_script = self._redis.register_script(REFRESH_SCRIPT)
        self._release_script = self._redis.register_script(RELEASE_SCRIPT)
        self._pttl_script = self._redis.register_script(PTTL_SCRIPT)
        self._view_script = self._redis.register_script(VIEW_SCRIPT)

    @classmethod
    def from_url(cls, redis_url: str, pool_size: Optional[int] = None, **kwargs) -> "RedisLockBackend":
        return cls(create_redis_client(redis_url, pool_size=pool_size), **kwargs)

    def close(self):
        self._redis.close()

    def _key(self, key: str) -> str:
        if self.namespace:
            return f"{self.namespace}:{key}"
        return key

    def _run(self, script, name: str, key: str, args: list, ctx: Optional[Context]):
        check_context(ctx)
        try:
            return script(keys=[self._key(key)], args=args)
        except RedisError as e:
            raise BackendError(f"redis {name} {key!r} failed", e)

    def obtain(self, key: str, token: str, metadata: str, ttl_ms: int,
               ctx: Optional[Context] = None) -> bool:
        value = token + metadata
        token_len = len(token.encode("utf-8"))
        result = self._run(self._obtain_script, "obtain", key, [value, token_len, ttl_ms], ctx)
        return result == 1

    def refresh(self, key: str, token: str, metadata: str, ttl_ms: int,
                ctx: Optional[Context] = None) -> bool:
        result = self._run(self._refresh_script, "refresh", key, [token + metadata, ttl_ms], ctx)
        return result == 1

    def release(self, key: str, token: str, metadata: str,
                ctx: Optional[Context] = None) -> bool:
        result = self._run(self._release_script, "release", key, [token + metadata], ctx)
        return result == 1

    def query(self, key: str, token: str, metadata: str,
              ctx: Optional[Context] = None) -> Tuple[int, bool]:
        result = self._run(self._pttl_script, "pttl", key, [token + metadata], ctx)
        if not isinstance(result, int):
            raise BackendError(f"redis pttl {key!r}: unexpected reply {result!r}")
        if result == NOT_OWNED:
            return 0, False
        # -1 (no expiry) and -2 (vanished) both mean no TTL left to report
        return max(result, 0), True

    def view(self, key: str, ctx: Optional[Context] = None) -> Optional[LockView]:
        result = self._run(self._view_script, "view", key, [], ctx)
        if result is None:
            return None
        try:
            value, pttl = result
        except (TypeError, ValueError) as e:
            raise BackendError(f"redis view {key!r}: unexpected reply {result!r}", e)
        if isinstance(value, str):
            value = value.encode("utf-8")
        return LockView(
            key=key,
            ttl_ms=max(int(pttl), 0),
            metadata=value[self.token_length:].decode("utf-8", errors="replace"),
        )
