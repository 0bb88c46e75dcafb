from datetime import datetime
from models.db import db

ANOMALY_STATUSES = ("Pending", "Resolved", "Ignored", "Escalated")


class AnomalyDetection(db.Model):
    __tablename__ = "anomaly_detections"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    login_attempt_id = db.Column(
        db.Integer, db.ForeignKey("login_attempts.id", ondelete="CASCADE"), nullable=False, index=True
    )

    anomaly_type = db.Column(db.String(50), nullable=False)  # ImpossibleTravel, Location, Device, Time, General
    severity = db.Column(db.Integer, nullable=False)  # 1-5
    risk_score = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(1000), nullable=False, default="")
    details = db.Column(db.JSON, default=dict, nullable=False)

    status = db.Column(db.String(50), nullable=False, default="Pending", index=True)
    response_action = db.Column(db.String(50), nullable=True)

    is_resolved = db.Column(db.Boolean, default=False, nullable=False)
    resolution_notes = db.Column(db.String(1000), nullable=True)
    resolved_by = db.Column(db.String(255), nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)

    detected_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
