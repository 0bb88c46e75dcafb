from datetime import datetime
from models.db import db


class SecurityEvent(db.Model):
    __tablename__ = "security_events"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)  # nullable for unauth events
    event_type = db.Column(db.String(80), nullable=False)  # e.g. LOGIN_FAILURE, ACCOUNT_LOCKED
    severity = db.Column(db.String(20), nullable=False, default="INFO")  # INFO, WARNING, CRITICAL
    description = db.Column(db.String(500), nullable=True)

    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
