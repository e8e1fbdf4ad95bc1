class DblockError(Exception):
    """Base error for dblock"""
    def __init__(self, message: str = None, source: Exception = None):
        self.message = message
        self.source = source
        super().__init__(self.__str__())

    def __str__(self):
        msg = self.message or self.__class__.__name__
        if self.source:
            return f"{msg}: {self.source}"
        return msg

class NotObtained(DblockError):
    """The lock is held by another owner or could not be refreshed."""
    def __init__(self, message: str = "dblock: not obtained", source: Exception = None):
        super().__init__(message, source)

class LockNotHeld(DblockError):
    """Release found no record owned by the caller's token."""
    def __init__(self, message: str = "dblock: lock not held", source: Exception = None):
        super().__init__(message, source)

class BackendError(DblockError):
    pass

class ConfigError(DblockError):
    pass

class CancellationError(DblockError):
    pass

class Cancelled(CancellationError):
    def __init__(self, message: str = "context canceled", source: Exception = None):
        super().__init__(message, source)

class DeadlineExceeded(CancellationError):
    def __init__(self, message: str = "context deadline exceeded", source: Exception = None):
        super().__init__(message, source)
