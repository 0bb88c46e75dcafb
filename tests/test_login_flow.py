import pytest
from conftest import (
    LONDON_IP,
    NEW_YORK_IP,
    PHONE_UA,
    SINGAPORE_IP,
    login_request,
)

from models.anomaly_detection import AnomalyDetection
from models.login_attempt import LoginAttempt
from models.user import User
from security.outcomes import ErrorKind, SessionStatus


def test_allow_then_impossible_travel_locks(engine, user, clock, notifier):
    first = engine.login(login_request(ip=LONDON_IP))
    assert first.success and first.token
    assert first.requires_mfa is False
    assert engine.sessions.validate(first.token).is_valid

    pattern = engine.patterns.get_pattern(user.id)
    assert pattern.typical_locations[0]["city"] == "London"

    clock.advance(minutes=10)
    second = engine.login(login_request(ip=SINGAPORE_IP))

    assert second.success is False
    assert second.error is ErrorKind.ACCOUNT_LOCKED_PERMANENTLY
    assert "impossible_travel" in second.risk.reasons

    locked = User.query.filter_by(id=user.id).one()
    assert locked.locked_by_anomaly_at is not None
    assert engine.sessions.validate(first.token).status is SessionStatus.REVOKED

    detection = AnomalyDetection.query.one()
    assert detection.anomaly_type == "ImpossibleTravel"
    assert detection.response_action == "Lock"
    assert notifier.alerts

    attempt = LoginAttempt.query.filter_by(ip_address=SINGAPORE_IP).one()
    assert attempt.is_successful is False
    assert attempt.risk_score == 100

    # even the home location is refused until an explicit unlock
    clock.advance(hours=1)
    assert engine.login(login_request(ip=LONDON_IP)).error is ErrorKind.ACCOUNT_LOCKED_PERMANENTLY
    assert engine.unlock_account(user.email)
    assert engine.login(login_request(ip=LONDON_IP)).success


def test_mfa_user_gets_code_then_session(engine, make_user, notifier):
    user = make_user(email="sms@example.com", mfa_option="sms", phone_number="+447700900123")

    outcome = engine.login(login_request(email="sms@example.com", ip=LONDON_IP))
    assert outcome.success and outcome.requires_mfa
    assert outcome.token is None
    assert outcome.mfa_method == "sms"
    assert notifier.otps[-1]["phone"] == "+447700900123"
    # pattern waits for the second factor
    assert engine.patterns.get_pattern(user.id) is None

    result = engine.verify_mfa("sms@example.com", notifier.last_code, outcome.mfa_session_id, LONDON_IP)
    assert result.success and result.access_token
    assert engine.sessions.validate(result.access_token).is_valid
    assert engine.patterns.get_pattern(user.id).total_successful_logins == 1


def test_authenticator_users_fall_back_to_email(engine, make_user, notifier):
    make_user(email="totp@example.com", mfa_option="authenticator")
    outcome = engine.login(login_request(email="totp@example.com"))

    assert outcome.mfa_method == "email"
    assert notifier.otps[-1]["email"] == "totp@example.com"


def _establish_home(engine, clock):
    assert engine.login(login_request(ip=LONDON_IP)).token
    clock.advance(days=7)


def test_moderate_risk_steps_up(engine, user, clock, notifier):
    _establish_home(engine, clock)

    outcome = engine.login(login_request(ip=NEW_YORK_IP))
    assert outcome.requires_mfa
    assert outcome.token is None
    assert outcome.risk.risk_score == 40

    attempt = LoginAttempt.query.filter_by(ip_address=NEW_YORK_IP).one()
    assert attempt.is_successful is True
    assert attempt.response_action == "StepUp"
    assert AnomalyDetection.query.one().anomaly_type == "Location"

    result = engine.verify_mfa(user.email, notifier.last_code, outcome.mfa_session_id, NEW_YORK_IP)
    assert result.success
    cities = [loc["city"] for loc in engine.patterns.get_pattern(user.id).typical_locations]
    assert cities == ["London", "New York"]


def test_high_risk_blocks_without_lock(engine, user, clock):
    _establish_home(engine, clock)
    clock.advance(hours=5)

    outcome = engine.login(login_request(ip=NEW_YORK_IP, ua=PHONE_UA))
    assert outcome.error is ErrorKind.LOGIN_BLOCKED
    assert 70 <= outcome.risk.risk_score < 90

    refreshed = User.query.filter_by(id=user.id).one()
    assert refreshed.locked_by_anomaly_at is None
    assert refreshed.account_locked_until is None


def test_wrong_code_then_blocked(engine, user, clock, notifier):
    _establish_home(engine, clock)
    outcome = engine.login(login_request(ip=NEW_YORK_IP))
    code = notifier.last_code
    wrong = "000000" if code != "000000" else "111111"

    for _ in range(3):
        result = engine.verify_mfa(user.email, wrong, outcome.mfa_session_id, NEW_YORK_IP)
    assert result.locked

    final = engine.verify_mfa(user.email, code, outcome.mfa_session_id, NEW_YORK_IP)
    assert final.error is ErrorKind.MFA_BLOCKED
    assert final.access_token is None


def test_send_code_requires_recent_challenge(engine, user, clock, notifier):
    none_yet = engine.send_mfa_code(user.email, "email", LONDON_IP)
    assert none_yet.error is ErrorKind.INVALID_CREDENTIALS

    _establish_home(engine, clock)
    first = engine.login(login_request(ip=NEW_YORK_IP))
    old_code = notifier.last_code

    again = engine.send_mfa_code(user.email, "email", NEW_YORK_IP)
    assert again.success
    assert again.session_id != first.mfa_session_id
    assert engine.verify_mfa(user.email, old_code, first.mfa_session_id, NEW_YORK_IP).error is ErrorKind.MFA_EXPIRED
    assert engine.verify_mfa(user.email, notifier.last_code, again.session_id, NEW_YORK_IP).success

    clock.advance(minutes=16)
    assert engine.send_mfa_code(user.email, "email", NEW_YORK_IP).error is ErrorKind.INVALID_CREDENTIALS


def test_resend_after_cooldown(engine, user, clock, notifier):
    _establish_home(engine, clock)
    outcome = engine.login(login_request(ip=NEW_YORK_IP))

    too_soon = engine.resend_mfa_code(outcome.mfa_session_id, NEW_YORK_IP)
    assert too_soon.error is ErrorKind.RATE_LIMITED
    assert too_soon.next_resend_at is not None

    clock.advance(seconds=61)
    resent = engine.resend_mfa_code(outcome.mfa_session_id, NEW_YORK_IP)
    assert resent.success
    assert len(notifier.otps) == 2
    assert engine.verify_mfa(user.email, notifier.last_code, outcome.mfa_session_id, NEW_YORK_IP).success


def test_lock_is_all_or_nothing(engine, db, user, clock, monkeypatch):
    assert engine.login(login_request(ip=LONDON_IP)).token
    clock.advance(minutes=10)

    def fail(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(engine.sessions, "revoke_all_others", fail)
    with pytest.raises(RuntimeError):
        engine.login(login_request(ip=SINGAPORE_IP))
    db.session.rollback()

    assert LoginAttempt.query.filter_by(ip_address=SINGAPORE_IP).count() == 0
    assert AnomalyDetection.query.count() == 0
    assert User.query.filter_by(id=user.id).one().locked_by_anomaly_at is None


def test_bad_password_counter_commits_with_its_attempt(engine, db, user, monkeypatch):
    def fail(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(engine.rate_limiter, "record_attempt", fail)
    with pytest.raises(RuntimeError):
        engine.login(login_request(password="wrong-password"))
    db.session.rollback()

    assert LoginAttempt.query.count() == 0
    assert User.query.filter_by(id=user.id).one().failed_login_attempts == 0


def test_alert_is_sent_after_detection_is_stored(engine, user, clock, notifier, monkeypatch):
    _establish_home(engine, clock)
    stored_at_alert = []
    original = notifier.send_security_alert

    def checking_alert(*args, **kwargs):
        # nothing left pending: the detection row was committed first
        stored_at_alert.append(len(engine.session.new))
        return original(*args, **kwargs)

    monkeypatch.setattr(notifier, "send_security_alert", checking_alert)
    engine.login(login_request(ip=NEW_YORK_IP))

    assert stored_at_alert == [0]
    assert AnomalyDetection.query.count() == 1
