from datetime import timedelta

import pytest

from models.rate_limit_entry import RateLimitEntry
from security.rate_limit import LOGIN, MFA_VERIFY, RateLimiter

CLIENT = "198.51.100.7"


@pytest.fixture
def limiter(app, clock):
    return RateLimiter(app.config, clock=clock)


def _fail(limiter, times, attempt_type=LOGIN):
    for _ in range(times):
        assert limiter.can_attempt(CLIENT, attempt_type)
        limiter.record_attempt(CLIENT, attempt_type, succeeded=False)


def test_nth_plus_one_attempt_is_rejected(limiter):
    for _ in range(5):
        assert limiter.can_attempt(CLIENT, LOGIN)
        limiter.record_attempt(CLIENT, LOGIN, succeeded=True)

    assert limiter.can_attempt(CLIENT, LOGIN) is False
    assert limiter.get_remaining_attempts(CLIENT, LOGIN) == 0


def test_failed_attempts_block_for_base_period(limiter):
    _fail(limiter, 5)

    assert limiter.can_attempt(CLIENT, LOGIN) is False
    assert limiter.get_time_until_reset(CLIENT, LOGIN) == timedelta(minutes=30)


def test_remaining_attempts_count_down(limiter):
    assert limiter.get_remaining_attempts(CLIENT, LOGIN) == 5
    _fail(limiter, 2)
    assert limiter.get_remaining_attempts(CLIENT, LOGIN) == 3


def test_window_elapse_resets_counters(limiter, clock):
    _fail(limiter, 4)
    clock.advance(minutes=16)

    assert limiter.get_remaining_attempts(CLIENT, LOGIN) == 5
    assert limiter.can_attempt(CLIENT, LOGIN)
    row = RateLimitEntry.query.filter_by(client_identifier=CLIENT, attempt_type=LOGIN).one()
    assert row.attempt_count == 0
    assert row.first_attempt == clock()


def test_block_elapse_starts_fresh_window(limiter, clock):
    _fail(limiter, 5)
    clock.advance(minutes=31)

    assert limiter.can_attempt(CLIENT, LOGIN)
    assert limiter.get_remaining_attempts(CLIENT, LOGIN) == 5


def test_repeat_violation_doubles_block(limiter, clock):
    _fail(limiter, 5)
    clock.advance(minutes=31)
    _fail(limiter, 5)

    assert limiter.can_attempt(CLIENT, LOGIN) is False
    assert limiter.get_time_until_reset(CLIENT, LOGIN) == timedelta(minutes=60)


def test_violations_forgotten_after_quiet_window(limiter, clock):
    _fail(limiter, 5)
    clock.advance(minutes=30 + 15 + 1)
    _fail(limiter, 5)

    assert limiter.get_time_until_reset(CLIENT, LOGIN) == timedelta(minutes=30)


def test_block_length_is_capped(app, clock):
    limiter = RateLimiter({**app.config, "RATE_LIMIT_MAX_BLOCK_MINUTES": 45}, clock=clock)
    _fail(limiter, 5)
    clock.advance(minutes=31)
    _fail(limiter, 5)

    assert limiter.get_time_until_reset(CLIENT, LOGIN) == timedelta(minutes=45)


def test_limits_are_per_attempt_type(limiter):
    _fail(limiter, 5)
    assert limiter.can_attempt(CLIENT, LOGIN) is False

    # MFA_VERIFY allows 10 and is tracked separately
    for _ in range(9):
        assert limiter.can_attempt(CLIENT, MFA_VERIFY)
        limiter.record_attempt(CLIENT, MFA_VERIFY, succeeded=True)
    assert limiter.get_remaining_attempts(CLIENT, MFA_VERIFY) == 1


def test_explicit_max_attempts_overrides_config(limiter):
    for _ in range(2):
        assert limiter.can_attempt(CLIENT, "EXPORT", max_attempts=2)
        limiter.record_attempt(CLIENT, "EXPORT", succeeded=True)
    assert limiter.can_attempt(CLIENT, "EXPORT", max_attempts=2) is False


def test_reset_rate_limit_unblocks(limiter):
    _fail(limiter, 5)
    assert limiter.reset_rate_limit(CLIENT, LOGIN) is True
    assert limiter.can_attempt(CLIENT, LOGIN)
    assert limiter.get_remaining_attempts(CLIENT, LOGIN) == 5


def test_reset_unknown_client_reports_missing(limiter):
    assert limiter.reset_rate_limit("203.0.113.99", LOGIN) is False


def test_unknown_client_has_no_reset_time(limiter):
    assert limiter.get_time_until_reset("203.0.113.99", LOGIN) is None


def test_cleanup_removes_idle_rows_only(limiter, clock):
    _fail(limiter, 1)
    clock.advance(days=8)
    limiter.record_attempt("203.0.113.10", LOGIN, succeeded=True)

    assert limiter.cleanup() == 1
    assert RateLimitEntry.query.count() == 1
