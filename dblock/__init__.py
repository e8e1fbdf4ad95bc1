"""dblock - distributed locks on Redis or a SQL database."""

from .common.context import Context, background
from .errors import (
    DblockError,
    NotObtained,
    LockNotHeld,
    BackendError,
    ConfigError,
    CancellationError,
    Cancelled,
    DeadlineExceeded,
)
from .sync import (
    LockBackend,
    LockView,
    RedisLockBackend,
    SQLLockBackend,
    RetryStrategy,
    NoRetry,
    LinearBackoff,
    ExponentialBackoff,
    LimitRetry,
    Lock,
    Locker,
    Options,
    obtain,
)

__version__ = "0.1.0"
__all__ = [
    "Context",
    "background",
    "DblockError",
    "NotObtained",
    "LockNotHeld",
    "BackendError",
    "ConfigError",
    "CancellationError",
    "Cancelled",
    "DeadlineExceeded",
    "LockBackend",
    "LockView",
    "RedisLockBackend",
    "SQLLockBackend",
    "RetryStrategy",
    "NoRetry",
    "LinearBackoff",
    "ExponentialBackoff",
    "LimitRetry",
    "Lock",
    "Locker",
    "Options",
    "obtain",
]
