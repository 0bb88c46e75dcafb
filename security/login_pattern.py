from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError

from models import db
from models.login_pattern import UserLoginPattern
from security.outcomes import LoginData
from utils.clock import utcnow

logger = structlog.get_logger(__name__)


def location_key(location: dict) -> tuple:
    return (location.get("country"), location.get("region"), location.get("city"))


def remember(values, value, cap: int, key=None):
    """
    Bounded most-recently-seen list. A value already present moves to the
    end; on overflow the oldest entry (front) drops out.
    """
    key = key or (lambda v: v)
    items = [v for v in (values or []) if key(v) != key(value)]
    items.append(value)
    return items[-cap:]


class LoginPatternTracker:
    """Keeps each user's "normal" login profile: IPs, places, devices, hours, days."""

    def __init__(self, config, session=None, clock=utcnow):
        self.config = config
        self.session = session if session is not None else db.session
        self.clock = clock

    def get_pattern(self, user_id: int) -> Optional[UserLoginPattern]:
        return self.session.query(UserLoginPattern).filter_by(user_id=user_id).first()

    def update(self, user_id: int, login: LoginData) -> UserLoginPattern:
        now = self.clock()
        seen_at = login.attempted_at or now
        pattern = self._get_or_create(user_id, seen_at)

        cfg = self.config
        if login.ip_address:
            pattern.typical_ip_addresses = remember(
                pattern.typical_ip_addresses, login.ip_address, cfg.get("PATTERN_MAX_IPS", 10)
            )
        if login.country or login.has_coordinates:
            location = {
                "country": login.country,
                "region": login.region,
                "city": login.city,
                "latitude": login.latitude,
                "longitude": login.longitude,
            }
            pattern.typical_locations = remember(
                pattern.typical_locations, location, cfg.get("PATTERN_MAX_LOCATIONS", 5), key=location_key
            )
        if login.device_fingerprint:
            pattern.typical_devices = remember(
                pattern.typical_devices, login.device_fingerprint, cfg.get("PATTERN_MAX_DEVICES", 5)
            )
        pattern.typical_login_hours = remember(
            pattern.typical_login_hours, seen_at.hour, cfg.get("PATTERN_MAX_HOURS", 8)
        )
        pattern.typical_days_of_week = remember(
            pattern.typical_days_of_week, seen_at.weekday(), cfg.get("PATTERN_MAX_DAYS", 7)
        )

        if login.has_coordinates:
            pattern.last_latitude = login.latitude
            pattern.last_longitude = login.longitude
        pattern.last_login_at = seen_at
        pattern.last_updated_at = now
        pattern.total_successful_logins = UserLoginPattern.total_successful_logins + 1

        self.session.flush()
        logger.debug("login_pattern_updated", user_id=user_id)
        return pattern

    def record_failure(self, user_id: int) -> None:
        # no pattern yet means no successful login yet; nothing to count against
        self.session.query(UserLoginPattern).filter_by(user_id=user_id).update(
            {
                UserLoginPattern.total_failed_logins: UserLoginPattern.total_failed_logins + 1,
                UserLoginPattern.last_updated_at: self.clock(),
            },
            synchronize_session=False,
        )

    def _get_or_create(self, user_id, seen_at):
        pattern = self.get_pattern(user_id)
        if pattern is not None:
            return pattern

        pattern = UserLoginPattern(
            user_id=user_id,
            typical_ip_addresses=[],
            typical_locations=[],
            typical_devices=[],
            typical_login_hours=[],
            typical_days_of_week=[],
            first_login_at=seen_at,
            last_login_at=seen_at,
            total_successful_logins=0,
            total_failed_logins=0,
            location_risk_threshold=50,
            time_risk_threshold=30,
            device_risk_threshold=70,
        )
        self.session.add(pattern)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            pattern = self.get_pattern(user_id)
        return pattern
