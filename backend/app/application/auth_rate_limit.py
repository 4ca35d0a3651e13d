import hashlib
import time
from collections import defaultdict
from typing import DefaultDict, List

LOGIN_MAX_ATTEMPTS = 5
LOGIN_LOCKOUT_SECONDS = 15 * 60
REQUEST_WINDOW_SECONDS = 60
DEFAULT_REQUESTS_PER_MINUTE = 60
LOGIN_LOCKOUT_MESSAGE = (
    f"Too many login attempts. Please try again in {LOGIN_LOCKOUT_SECONDS // 60} minutes."
)
IDENTIFIER_HASH_LENGTH = 64
IP_FALLBACK_LENGTH = 8


class RateLimitExceededError(Exception):
    """Raised when the rate limit is exceeded for a given key."""


class SoftRateLimiter:
    """Sliding-window counter kept in process memory."""

    def __init__(self, max_attempts: int, window_seconds: int) -> None:
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._attempts: DefaultDict[str, List[float]] = defaultdict(list)

    def _prune(self, key: str, now: float) -> List[float]:
        cutoff = now - self.window_seconds
        attempts = [ts for ts in self._attempts.get(key, []) if ts >= cutoff]
        if attempts:
            self._attempts[key] = attempts
        else:
            self._attempts.pop(key, None)
        return attempts

    def is_limited(self, key: str, now: float | None = None) -> bool:
        current = now or time.time()
        attempts = self._prune(key, current)
        return len(attempts) >= self.max_attempts

    def record_failure(self, key: str, now: float | None = None) -> None:
        current = now or time.time()
        attempts = self._prune(key, current)
        attempts.append(current)
        self._attempts[key] = attempts

    def hit(self, key: str, now: float | None = None) -> bool:
        """Record one attempt; False when it would exceed the ceiling."""
        current = now or time.time()
        if self.is_limited(key, current):
            return False
        self.record_failure(key, current)
        return True

    def reset(self, key: str) -> None:
        self._attempts.pop(key, None)

    def clear(self) -> None:
        self._attempts.clear()


def _make_key(scope: str, identifier: str, client_ip: str | None) -> str:
    if not identifier:
        raise ValueError("identifier is required for rate limiting")
    identifier_hash = hashlib.sha256(identifier.encode()).hexdigest()
    identifier_component = identifier_hash[:IDENTIFIER_HASH_LENGTH]
    ip_component = client_ip or f"unknown-ip-{identifier_hash[:IP_FALLBACK_LENGTH]}"
    return f"{scope}:{ip_component}:{identifier_component}"


login_rate_limiter = SoftRateLimiter(
    max_attempts=LOGIN_MAX_ATTEMPTS,
    window_seconds=LOGIN_LOCKOUT_SECONDS,
)

request_rate_limiter = SoftRateLimiter(
    max_attempts=DEFAULT_REQUESTS_PER_MINUTE,
    window_seconds=REQUEST_WINDOW_SECONDS,
)


def configure_request_rate_limit(requests_per_minute: int) -> None:
    request_rate_limiter.max_attempts = requests_per_minute


def check_login_rate_limit(email: str, client_ip: str | None = None) -> str:
    key = _make_key("login", email, client_ip)
    if login_rate_limiter.is_limited(key):
        raise RateLimitExceededError
    return key


def record_login_failure(key: str) -> None:
    login_rate_limiter.record_failure(key)


def reset_login_limit(key: str) -> None:
    login_rate_limiter.reset(key)


def check_request_rate_limit(client_ip: str) -> None:
    if not request_rate_limiter.hit(f"request:{client_ip}"):
        raise RateLimitExceededError
