from conftest import PASSWORD, login_request

from models.login_attempt import LoginAttempt
from models.security_event import SecurityEvent
from models.user import User
from security.outcomes import ErrorKind


def _bad_login(engine, i):
    # a different address per try keeps the per-IP limiter out of the way
    return engine.login(login_request(password="wrong-password", ip=f"198.51.100.{i}"))


def test_five_failures_lock_and_sixth_is_locked(engine, user):
    for i in range(5):
        outcome = _bad_login(engine, i)
        assert outcome.error is ErrorKind.INVALID_CREDENTIALS

    locked = engine.login(login_request(ip="198.51.100.99"))
    assert locked.success is False
    assert locked.error is ErrorKind.ACCOUNT_LOCKED
    assert "locked" in locked.message.lower()

    refreshed = User.query.filter_by(id=user.id).one()
    assert refreshed.failed_login_attempts == 5
    assert refreshed.account_locked_until is not None


def test_lock_emits_security_events(engine, user):
    for i in range(5):
        _bad_login(engine, i)

    assert SecurityEvent.query.filter_by(event_type="LOGIN_FAILURE", user_id=user.id).count() == 5
    assert SecurityEvent.query.filter_by(event_type="ACCOUNT_LOCKED", user_id=user.id).count() == 1


def test_success_resets_failure_counter(engine, user):
    for i in range(3):
        _bad_login(engine, i)

    outcome = engine.login(login_request(ip="198.51.100.50"))
    assert outcome.success
    assert User.query.filter_by(id=user.id).one().failed_login_attempts == 0


def test_elapsed_lock_returns_to_active(engine, user, clock):
    for i in range(5):
        _bad_login(engine, i)

    clock.advance(minutes=31)
    outcome = engine.login(login_request(ip="198.51.100.60"))

    assert outcome.success
    refreshed = User.query.filter_by(id=user.id).one()
    assert refreshed.failed_login_attempts == 0
    assert refreshed.account_locked_until is None


def test_unknown_email_looks_like_wrong_password(engine, user):
    unknown = engine.login(login_request(email="nobody@example.com"))
    wrong = engine.login(login_request(password="nope", ip="198.51.100.2"))

    assert unknown.error is ErrorKind.INVALID_CREDENTIALS
    assert unknown.message == wrong.message

    attempt = LoginAttempt.query.filter_by(email="nobody@example.com").one()
    assert attempt.user_id is None
    assert attempt.is_successful is False


def test_email_is_normalized(engine, user):
    outcome = engine.login(login_request(email="  Alice@Example.COM "))
    assert outcome.success


def test_inactive_account(engine, make_user):
    make_user(email="dormant@example.com", is_active=False)
    outcome = engine.login(login_request(email="dormant@example.com"))
    assert outcome.error is ErrorKind.ACCOUNT_INACTIVE


def test_every_failure_is_recorded(engine, user):
    _bad_login(engine, 1)
    attempt = LoginAttempt.query.filter_by(user_id=user.id).one()
    assert attempt.failure_reason == ErrorKind.INVALID_CREDENTIALS.value
    assert attempt.is_successful is False


def test_unlock_account_clears_locks(engine, user):
    for i in range(5):
        _bad_login(engine, i)

    assert engine.unlock_account("alice@example.com") is True
    assert engine.login(login_request(ip="198.51.100.70", password=PASSWORD)).success
    assert engine.unlock_account("ghost@example.com") is False


def test_rate_limited_before_password_check(engine, user):
    for _ in range(5):
        engine.login(login_request(password="wrong-password", ip="198.51.100.200"))

    outcome = engine.login(login_request(ip="198.51.100.200"))
    assert outcome.error is ErrorKind.RATE_LIMITED
    assert LoginAttempt.query.filter_by(failure_reason=ErrorKind.RATE_LIMITED.value).count() == 1
