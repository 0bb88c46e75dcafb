import json

from models.rate_limit_entry import RateLimitEntry
from models.user import User
from security.maintenance import run_security_sweep
from security.rate_limit import LOGIN


def _seed_stale_state(engine, user):
    engine.sessions.create_session(user.id, ip_address="81.2.69.160")
    engine.otp.issue_code(user.id, user.email, "email")
    engine.rate_limiter.record_attempt("81.2.69.160", LOGIN, succeeded=True)


def test_sweep_counts_then_settles(app, engine, user, clock):
    _seed_stale_state(engine, user)
    clock.advance(days=8)

    first = run_security_sweep(app.config, clock=clock)
    assert first == {"sessions_expired": 1, "otp_sessions_deleted": 1, "rate_limits_deleted": 1}

    second = run_security_sweep(app.config, clock=clock)
    assert second == {"sessions_expired": 0, "otp_sessions_deleted": 0, "rate_limits_deleted": 0}


def test_sweep_keeps_fresh_state(app, engine, user, clock):
    _seed_stale_state(engine, user)
    clock.advance(minutes=5)

    result = run_security_sweep(app.config, clock=clock)
    assert result == {"sessions_expired": 0, "otp_sessions_deleted": 0, "rate_limits_deleted": 0}


def test_cli_security_sweep(app):
    result = app.test_cli_runner().invoke(args=["security-sweep"])
    assert result.exit_code == 0
    assert "sessions_expired: 0" in result.output


def test_cli_unlock_account(app, db, engine, user, clock):
    for i in range(5):
        engine.credentials.verify(user.email, f"wrong-{i}")
    db.session.commit()

    runner = app.test_cli_runner()
    assert "alice@example.com unlocked" in runner.invoke(args=["unlock-account", "Alice@Example.com"]).output
    assert "User not found" in runner.invoke(args=["unlock-account", "nobody@example.com"]).output

    db.session.expire_all()
    refreshed = User.query.filter_by(id=user.id).one()
    assert refreshed.account_locked_until is None
    assert refreshed.failed_login_attempts == 0


def test_cli_reset_rate_limit(app, db, engine):
    for _ in range(5):
        engine.rate_limiter.record_attempt("198.51.100.7", LOGIN, succeeded=False)
    assert engine.rate_limiter.can_attempt("198.51.100.7", LOGIN) is False

    result = app.test_cli_runner().invoke(args=["reset-rate-limit", "198.51.100.7", "login"])
    assert "Rate limit reset" in result.output

    db.session.expire_all()
    assert RateLimitEntry.query.one().is_blocked is False
    assert engine.rate_limiter.can_attempt("198.51.100.7", LOGIN) is True


def test_cli_anomaly_reports(app):
    runner = app.test_cli_runner()
    assert "No unresolved anomalies" in runner.invoke(args=["anomalies-list"]).output

    stats = json.loads(runner.invoke(args=["anomalies-stats", "--days", "7"]).output)
    assert stats["total"] == 0
    assert stats["by_type"] == {}
