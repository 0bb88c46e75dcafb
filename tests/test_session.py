import pytest

from models.security_event import SecurityEvent
from models.session import UserSession
from security.outcomes import SessionStatus
from security.session import SessionManager, hash_token


@pytest.fixture
def sessions(app, clock, notifier):
    return SessionManager(app.config, clock=clock, notifier=notifier)


def test_only_token_hash_is_stored(sessions, user):
    token = sessions.create_session(user.id, ip_address="81.2.69.160")
    row = UserSession.query.one()

    assert row.token_hash == hash_token(token)
    assert row.token_hash != token


def test_fresh_session_is_valid(sessions, user):
    token = sessions.create_session(user.id)
    result = sessions.validate(token)

    assert result.status is SessionStatus.VALID
    assert result.minutes_until_timeout == 30


def test_unknown_token(sessions):
    assert sessions.validate("not-a-token").status is SessionStatus.NOT_FOUND
    assert sessions.update_activity("not-a-token") is False


def test_inactivity_expires_before_absolute_expiry(sessions, user, clock):
    token = sessions.create_session(user.id)
    clock.advance(minutes=31)

    result = sessions.validate(token)
    assert result.status is SessionStatus.EXPIRED
    assert result.is_inactive is True

    # stays expired rather than turning into a plain revocation
    again = sessions.validate(token)
    assert again.status is SessionStatus.EXPIRED
    assert again.is_inactive is True
    assert sessions.update_activity(token) is False


def test_activity_keeps_session_alive(sessions, user, clock):
    token = sessions.create_session(user.id)
    clock.advance(minutes=20)
    assert sessions.update_activity(token) is True
    clock.advance(minutes=20)

    assert sessions.validate(token).is_valid


def test_absolute_lifetime_wins_over_activity(sessions, user, clock):
    token = sessions.create_session(user.id)
    for _ in range(23):
        clock.advance(minutes=20)
        assert sessions.update_activity(token) is True

    clock.advance(minutes=20)
    result = sessions.validate(token)
    assert result.status is SessionStatus.EXPIRED
    assert result.is_inactive is False


def test_custom_inactivity_timeout(sessions, user, clock):
    token = sessions.create_session(user.id, timeout_minutes=5)
    clock.advance(minutes=6)
    assert sessions.validate(token).is_inactive is True


def test_revoke(sessions, user):
    token = sessions.create_session(user.id)
    assert sessions.revoke(token) is True
    assert sessions.revoke(token) is False

    result = sessions.validate(token)
    assert result.status is SessionStatus.REVOKED
    assert sessions.update_activity(token) is False


def test_revoke_all_others_round_trip(sessions, user):
    keep = sessions.create_session(user.id, ip_address="81.2.69.160")
    others = [sessions.create_session(user.id, ip_address=f"81.2.69.{i}") for i in (1, 2)]

    assert sessions.revoke_all_others(user.id, keep_token=keep) == 2
    assert sessions.validate(keep).is_valid
    assert all(sessions.validate(t).status is SessionStatus.REVOKED for t in others)
    assert [s.token_hash for s in sessions.list_active(user.id)] == [hash_token(keep)]
    assert sessions.revoke_all_others(user.id, keep_token=keep) == 0


def test_revoke_all_without_keep(sessions, user):
    sessions.create_session(user.id)
    sessions.create_session(user.id)
    assert sessions.revoke_all_others(user.id) == 2
    assert sessions.list_active(user.id) == []


def test_cleanup_is_idempotent(sessions, user, clock):
    idle = sessions.create_session(user.id)
    clock.advance(minutes=25)
    fresh = sessions.create_session(user.id)
    clock.advance(minutes=10)

    assert sessions.cleanup() == 1
    assert sessions.cleanup() == 0
    assert sessions.validate(idle).is_inactive is True
    assert sessions.validate(fresh).is_valid


def test_detect_suspicious_records_and_alerts(sessions, user, notifier):
    for i in range(4):
        sessions.create_session(user.id, ip_address=f"203.0.113.{i}", fingerprint=f"dev-{i}")

    assert sessions.detect_suspicious(user.id, email=user.email) is True
    assert SecurityEvent.query.filter_by(event_type="SUSPICIOUS_ACTIVITY").count() == 1
    assert notifier.alerts[-1]["title"] == "Unusual session activity"
    # detection never revokes
    assert len(sessions.list_active(user.id)) == 4


def test_few_sessions_are_not_suspicious(sessions, user):
    sessions.create_session(user.id, ip_address="81.2.69.160")
    sessions.create_session(user.id, ip_address="81.2.69.161")
    assert sessions.detect_suspicious(user.id) is False


def test_revoke_all_others_counts_only_live_sessions(sessions, user, clock):
    idle = sessions.create_session(user.id, ip_address="81.2.69.1")
    clock.advance(minutes=40)
    keep = sessions.create_session(user.id, ip_address="81.2.69.2")
    other = sessions.create_session(user.id, ip_address="81.2.69.3")

    live_before = len(sessions.list_active(user.id))
    assert sessions.revoke_all_others(user.id, keep_token=keep) == live_before - 1

    # the idle row reads back as expired, not as signed out
    assert sessions.validate(idle).is_inactive is True
    assert sessions.validate(other).status is SessionStatus.REVOKED
    assert sessions.validate(keep).is_valid
