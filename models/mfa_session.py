from datetime import datetime
from models.db import db


class MfaSession(db.Model):
    __tablename__ = "mfa_sessions"

    # public session id handed to the client (uuid4)
    id = db.Column(db.String(36), primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False, index=True)

    # store only the keyed hash of the code (never the code itself)
    code_hash = db.Column(db.String(128), nullable=False)
    method = db.Column(db.String(20), nullable=False)  # sms, email

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)

    is_used = db.Column(db.Boolean, default=False, nullable=False)
    used_at = db.Column(db.DateTime, nullable=True)

    attempt_count = db.Column(db.Integer, default=0, nullable=False)
    max_attempts = db.Column(db.Integer, default=3, nullable=False)
    is_blocked = db.Column(db.Boolean, default=False, nullable=False)

    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    device_fingerprint = db.Column(db.String(128), nullable=True)
    # the login attempt that was challenged (step-up); carries geo/device data
    login_attempt_id = db.Column(
        db.Integer, db.ForeignKey("login_attempts.id", ondelete="SET NULL"), nullable=True
    )
