"""
Retry strategies - backoff generators for the acquisition loop.

A strategy yields the next backoff in seconds. Zero (or anything below
zero) tells the caller to stop retrying.
"""
import random
import threading
from abc import ABC, abstractmethod


class RetryStrategy(ABC):
    """One instance drives one sequence of acquisition attempts."""

    @abstractmethod
    def next_backoff(self) -> float:
        """Return the next backoff in seconds, or <= 0 to stop"""
        pass


class NoRetry(RetryStrategy):
    """Single attempt, fail immediately when the lock is busy"""

    def next_backoff(self) -> float:
        return 0.0


class LinearBackoff(RetryStrategy):
    """Retry at a fixed interval"""

    def __init__(self, interval: float):
        self.interval = interval

    def next_backoff(self) -> float:
        return self.interval


class ExponentialBackoff(RetryStrategy):
    """
    Doubling backoff starting at 1ms, clamped to [min_backoff, max_backoff].
    ``jitter`` adds up to that fraction of the delay at random.
    """

    def __init__(self, min_backoff: float, max_backoff: float, jitter: float = 0.0):
        self.min_backoff = min_backoff
        self.max_backoff = max_backoff
        self.jitter = jitter
        self._attempt = 0
        self._lock = threading.Lock()

    def next_backoff(self) -> float:
        with self._lock:
            attempt = self._attempt
            self._attempt += 1

        # cap the exponent, 2**62 ms is far beyond any sane max_backoff
        delay = (2 ** min(attempt, 62)) / 1000.0
        delay = min(max(delay, self.min_backoff), self.max_backoff)
        if self.jitter > 0:
            delay += random.uniform(0, delay * self.jitter)
        return delay


class LimitRetry(RetryStrategy):
    """Wraps another strategy and stops after ``max_retries`` retries"""

    def __init__(self, strategy: RetryStrategy, max_retries: int):
        self.strategy = strategy
        self.max_retries = max_retries
        self._count = 0
        self._lock = threading.Lock()

    def next_backoff(self) -> float:
        with self._lock:
            if self._count >= self.max_retries:
                return 0.0
            self._count += 1
        return self.strategy.next_backoff()
