import pytest

from app.application.auth_rate_limit import (
    LOGIN_MAX_ATTEMPTS,
    RateLimitExceededError,
    SoftRateLimiter,
    _make_key,
    check_login_rate_limit,
    check_request_rate_limit,
    configure_request_rate_limit,
    record_login_failure,
    request_rate_limiter,
    reset_login_limit,
)


def test_hit_allows_up_to_ceiling_within_window() -> None:
    limiter = SoftRateLimiter(max_attempts=3, window_seconds=60)

    assert [limiter.hit("k", now=100.0 + i) for i in range(4)] == [True, True, True, False]
    # The oldest attempt has left the window
    assert limiter.hit("k", now=161.0) is True


def test_reset_forgets_attempts() -> None:
    limiter = SoftRateLimiter(max_attempts=1, window_seconds=60)
    limiter.record_failure("k", now=10.0)
    assert limiter.is_limited("k", now=11.0)

    limiter.reset("k")

    assert not limiter.is_limited("k", now=11.0)


def test_login_key_hashes_identifier_and_falls_back_without_ip() -> None:
    key = _make_key("login", "user@example.com", "192.0.2.1")
    assert key.startswith("login:192.0.2.1:")
    assert "user@example.com" not in key

    anonymous = _make_key("login", "user@example.com", None)
    assert anonymous.startswith("login:unknown-ip-")

    with pytest.raises(ValueError):
        _make_key("login", "", "192.0.2.1")


def test_login_lockout_after_max_failures() -> None:
    key = check_login_rate_limit("user@example.com", "192.0.2.1")
    for _ in range(LOGIN_MAX_ATTEMPTS):
        record_login_failure(key)

    with pytest.raises(RateLimitExceededError):
        check_login_rate_limit("user@example.com", "192.0.2.1")
    assert check_login_rate_limit("other@example.com", "192.0.2.1")

    reset_login_limit(key)
    assert check_login_rate_limit("user@example.com", "192.0.2.1") == key


def test_request_ceiling_is_configurable() -> None:
    original = request_rate_limiter.max_attempts
    configure_request_rate_limit(2)
    try:
        check_request_rate_limit("192.0.2.9")
        check_request_rate_limit("192.0.2.9")
        with pytest.raises(RateLimitExceededError):
            check_request_rate_limit("192.0.2.9")
        check_request_rate_limit("192.0.2.10")
    finally:
        configure_request_rate_limit(original)
