from datetime import datetime
from models.db import db


class RateLimitEntry(db.Model):
    __tablename__ = "rate_limit_entries"

    id = db.Column(db.Integer, primary_key=True)

    # IP address, user id or MFA session id depending on attempt_type
    client_identifier = db.Column(db.String(100), nullable=False)
    attempt_type = db.Column(db.String(50), nullable=False)  # LOGIN, MFA_VERIFY, ...

    attempt_count = db.Column(db.Integer, default=0, nullable=False)
    successful_count = db.Column(db.Integer, default=0, nullable=False)
    failed_count = db.Column(db.Integer, default=0, nullable=False)

    first_attempt = db.Column(db.DateTime, nullable=False)
    last_attempt = db.Column(db.DateTime, nullable=False)

    is_blocked = db.Column(db.Boolean, default=False, nullable=False)
    blocked_until = db.Column(db.DateTime, nullable=True, index=True)
    block_reason = db.Column(db.String(200), nullable=True)
    # blocks in the current escalation run; drives the back-off multiplier
    violation_count = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("client_identifier", "attempt_type", name="uq_rate_limit_client_type"),
    )
