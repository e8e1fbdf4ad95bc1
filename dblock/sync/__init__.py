from .backend import LockBackend, LockView
from .redis_backend import RedisLockBackend
from .sql_backend import SQLLockBackend, lock_table
from .retry import RetryStrategy, NoRetry, LinearBackoff, ExponentialBackoff, LimitRetry
from .lock import Lock, Locker, Options, obtain

__all__ = [
    'LockBackend',
    'LockView',
    'RedisLockBackend',
    'SQLLockBackend',
    'lock_table',
    'RetryStrategy',
    'NoRetry',
    'LinearBackoff',
    'ExponentialBackoff',
    'LimitRetry',
    'Lock',
    'Locker',
    'Options',
    'obtain',
]
