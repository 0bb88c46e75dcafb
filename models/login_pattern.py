from datetime import datetime
from models.db import db


class UserLoginPattern(db.Model):
    __tablename__ = "user_login_patterns"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)

    # bounded lists, most recently seen value last
    typical_ip_addresses = db.Column(db.JSON, default=list, nullable=False)
    typical_locations = db.Column(db.JSON, default=list, nullable=False)  # {country, region, city, latitude, longitude}
    typical_devices = db.Column(db.JSON, default=list, nullable=False)
    typical_login_hours = db.Column(db.JSON, default=list, nullable=False)  # 0-23
    typical_days_of_week = db.Column(db.JSON, default=list, nullable=False)  # 0=Monday
    preferred_timezone = db.Column(db.String(100), default="UTC", nullable=False)

    first_login_at = db.Column(db.DateTime, nullable=False)
    last_login_at = db.Column(db.DateTime, nullable=False)
    last_updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    last_latitude = db.Column(db.Float, nullable=True)
    last_longitude = db.Column(db.Float, nullable=True)

    total_successful_logins = db.Column(db.Integer, default=0, nullable=False)
    total_failed_logins = db.Column(db.Integer, default=0, nullable=False)

    location_risk_threshold = db.Column(db.Integer, default=50, nullable=False)
    time_risk_threshold = db.Column(db.Integer, default=30, nullable=False)
    device_risk_threshold = db.Column(db.Integer, default=70, nullable=False)
