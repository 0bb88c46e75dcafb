import json
from datetime import timedelta

import click
from flask import Flask
from flask_migrate import Migrate

from config import Config
from models import db
from routes import auth_bp, health_bp, mfa_bp, session_bp
from security.login import LoginOrchestrator
from security.maintenance import run_security_sweep
from utils.auth_context import load_current_user
from utils.clock import utcnow
from utils.geo import build_geo_lookup
from utils.logging_config import configure_logging
from utils.notifier import SecurityNotifier


def create_app(config_overrides=None, geo=None, notifier=None, clock=utcnow):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(mfa_bp)
    app.register_blueprint(session_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    app.extensions["auth_engine"] = LoginOrchestrator(
        app.config,
        clock=clock,
        geo=geo or build_geo_lookup(app.config),
        notifier=notifier or SecurityNotifier(app.config),
    )

    @app.before_request
    def _load_user():
        load_current_user()

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Cache-Control"] = "no-store"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------


def register_cli(app):
    def engine():
        return app.extensions["auth_engine"]

    @app.cli.command("security-sweep")
    def security_sweep():
        """Expire stale sessions, purge old OTP codes and idle rate-limit rows."""
        result = run_security_sweep(app.config, clock=engine().clock)
        for key, value in result.items():
            click.echo(f"{key}: {value}")

    @app.cli.command("unlock-account")
    @click.argument("email")
    def unlock_account(email):
        """Clear temporary and anomaly locks for a user."""
        if engine().unlock_account(email):
            click.echo(f"{email.strip().lower()} unlocked")
        else:
            click.echo("User not found")

    @app.cli.command("reset-rate-limit")
    @click.argument("client")
    @click.argument("attempt_type")
    def reset_rate_limit(client, attempt_type):
        """Clear the counters and block for CLIENT / ATTEMPT_TYPE (e.g. 1.2.3.4 LOGIN)."""
        if engine().rate_limiter.reset_rate_limit(client, attempt_type.upper()):
            click.echo("Rate limit reset")
        else:
            click.echo("No rate limit entry found")

    @app.cli.command("anomalies-list")
    @click.option("--limit", default=50, show_default=True)
    def anomalies_list(limit):
        """Show unresolved anomaly detections, newest first."""
        rows = engine().scorer.get_unresolved(limit=limit)
        if not rows:
            click.echo("No unresolved anomalies")
            return
        for row in rows:
            click.echo(
                f"#{row.id} user={row.user_id} {row.anomaly_type} severity={row.severity} "
                f"risk={row.risk_score} action={row.response_action} "
                f"at={row.detected_at:%Y-%m-%d %H:%M} {row.description}"
            )

    @app.cli.command("anomalies-resolve")
    @click.argument("anomaly_id", type=int)
    @click.option("--notes", default="", help="Resolution notes")
    @click.option("--resolver", required=True, help="Who reviewed the anomaly")
    @click.option("--status", default="Resolved",
                  type=click.Choice(["Resolved", "Ignored", "Escalated"]), show_default=True)
    def anomalies_resolve(anomaly_id, notes, resolver, status):
        """Mark an anomaly detection as reviewed."""
        if engine().scorer.resolve(anomaly_id, notes, resolver, status=status):
            click.echo(f"Anomaly {anomaly_id} marked {status}")
        else:
            click.echo("Anomaly not found")

    @app.cli.command("anomalies-stats")
    @click.option("--days", default=30, show_default=True)
    def anomalies_stats(days):
        """Anomaly totals by type, severity and day."""
        end = engine().clock()
        stats = engine().scorer.statistics(end - timedelta(days=days), end)
        click.echo(json.dumps(stats, indent=2, sort_keys=True))

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
