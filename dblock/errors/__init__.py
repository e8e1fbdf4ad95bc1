from .error import (
    DblockError, NotObtained, LockNotHeld, BackendError, ConfigError,
    CancellationError, Cancelled, DeadlineExceeded
)
