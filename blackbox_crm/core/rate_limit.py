import time
from dataclasses import dataclass, field
from threading import Lock


@dataclass
class _Attempts:
    failures: list[float] = field(default_factory=list)
    locked_until: float = 0.0


class LoginRateLimiter:
    """Locks a login key after ``max_attempts`` failures inside ``window_seconds``.

    Keys combine the identifier with the client address. State is per process.
    """

    def __init__(self, *, max_attempts: int, window_seconds: int, lock_seconds: int):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.lock_seconds = lock_seconds
        self._attempts: dict[str, _Attempts] = {}
        self._lock = Lock()

    def check(self, key: str) -> int:
        """Seconds to wait before retrying, 0 when the key is not locked."""
        now = time.monotonic()
        with self._lock:
            attempts = self._attempts.get(key)
            if attempts is None or attempts.locked_until <= now:
                return 0
            return int(attempts.locked_until - now) + 1

    def register_failure(self, key: str) -> int:
        """Records a failed login and returns the attempts left before lockout."""
        now = time.monotonic()
        with self._lock:
            attempts = self._attempts.setdefault(key, _Attempts())
            cutoff = now - self.window_seconds
            attempts.failures = [ts for ts in attempts.failures if ts >= cutoff]
            attempts.failures.append(now)
            remaining = self.max_attempts - len(attempts.failures)
            if remaining <= 0:
                attempts.locked_until = now + self.lock_seconds
                attempts.failures.clear()
            return max(remaining, 0)

    def register_success(self, key: str) -> None:
        with self._lock:
            self._attempts.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._attempts.clear()
