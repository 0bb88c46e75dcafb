from datetime import datetime
from models.db import db


class LoginAttempt(db.Model):
    """One row per login try. Written once, never updated."""

    __tablename__ = "login_attempts"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    ip_address = db.Column(db.String(64), nullable=False, index=True)
    user_agent = db.Column(db.String(500), nullable=True)

    country = db.Column(db.String(100), nullable=True)
    region = db.Column(db.String(100), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)

    device_fingerprint = db.Column(db.String(128), nullable=True)
    device_type = db.Column(db.String(50), nullable=True)  # Mobile, Desktop, Tablet
    operating_system = db.Column(db.String(100), nullable=True)
    browser = db.Column(db.String(100), nullable=True)

    attempted_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
    is_successful = db.Column(db.Boolean, default=False, nullable=False)
    failure_reason = db.Column(db.String(255), nullable=True)

    is_anomalous = db.Column(db.Boolean, default=False, nullable=False)
    anomaly_reasons = db.Column(db.JSON, default=list, nullable=False)
    risk_score = db.Column(db.Integer, default=0, nullable=False)
    response_action = db.Column(db.String(50), nullable=True)  # Allow, StepUp, Block, Lock
