# vote_server/security/rate_guard.py

import threading
import time
from collections import defaultdict, deque

from vote_server.errors import RateLimitError

# Per-key attempt counter over a sliding window. Keys are arbitrary strings
# such as "login:<address>:<email>" or "vote:<email>".


class RateGuard:
    def __init__(self, max_attempts=5, window_seconds=900, enabled=True, clock=None):
        """
        max_attempts: attempts allowed within `window_seconds`
        window_seconds: length of the sliding window
        enabled: when False every attempt is allowed, but still counted
        clock: callable returning seconds; defaults to time.monotonic
        """
        self.max_attempts = max_attempts
        self.window = window_seconds
        self.enabled = enabled
        self._clock = clock or time.monotonic
        self._attempts = defaultdict(deque)  # key -> deque[float]
        self._lock = threading.Lock()
        self._last_sweep = None

    def _now(self):
        return self._clock()

    def _prune(self, attempts, now):
        while attempts and now - attempts[0] >= self.window:
            attempts.popleft()

    def hit(self, key):
        """Record an attempt for `key`; return True if it is within the limit."""
        now = self._now()
        with self._lock:
            # drop idle keys once per window so the map stays bounded
            if self._last_sweep is None or now - self._last_sweep >= self.window:
                self._sweep(now)
            attempts = self._attempts[key]
            self._prune(attempts, now)
            attempts.append(now)
            count = len(attempts)
        return not self.enabled or count <= self.max_attempts

    def check(self, key):
        """Record an attempt and raise RateLimitError when the limit is exceeded."""
        if not self.hit(key):
            raise RateLimitError(retry_after=self.retry_after(key))

    def retry_after(self, key):
        now = self._now()
        with self._lock:
            attempts = self._attempts.get(key)
            if not attempts:
                return 0
            return max(0, int(self.window - (now - attempts[0])) + 1)

    def attempts(self, key):
        now = self._now()
        with self._lock:
            attempts = self._attempts.get(key)
            if not attempts:
                return 0
            self._prune(attempts, now)
            return len(attempts)

    def reset(self, key):
        with self._lock:
            self._attempts.pop(key, None)

    def clear_old_records(self):
        now = self._now()
        with self._lock:
            self._sweep(now)

    def _sweep(self, now):
        for key, attempts in list(self._attempts.items()):
            self._prune(attempts, now)
            if not attempts:
                del self._attempts[key]
        self._last_sweep = now
