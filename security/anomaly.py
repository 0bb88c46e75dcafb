import math
from collections import Counter
from datetime import datetime
from typing import Optional

import structlog

from models import db
from models.anomaly_detection import ANOMALY_STATUSES, AnomalyDetection
from models.login_pattern import UserLoginPattern
from security.outcomes import LoginData, RiskAction, RiskAssessment
from utils.audit import log_event
from utils.clock import utcnow

logger = structlog.get_logger(__name__)

EARTH_RADIUS_KM = 6371.0

SEVERITY_LABELS = {5: "Critical", 4: "High", 3: "Medium", 2: "Low", 1: "Low"}


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def severity_for(risk_score: int) -> int:
    if risk_score >= 90:
        return 5
    if risk_score >= 70:
        return 4
    if risk_score >= 50:
        return 3
    if risk_score >= 30:
        return 2
    return 1


def anomaly_type_for(reasons) -> str:
    if "impossible_travel" in reasons:
        return "ImpossibleTravel"
    if "unusual_location" in reasons or "new_country" in reasons or "unknown_location" in reasons:
        return "Location"
    if "new_device" in reasons:
        return "Device"
    if any(r.startswith("unusual_time") or r == "unusual_day" for r in reasons):
        return "Time"
    return "General"


class AnomalyScorer:
    """
    Scores a login against the user's pattern on three axes (location,
    device, time), combines them with configurable weights and maps the
    0-100 result onto Allow / StepUp / Block / Lock.
    """

    def __init__(self, config, session=None, clock=utcnow, notifier=None):
        self.config = config
        self.session = session if session is not None else db.session
        self.clock = clock
        self.notifier = notifier

    # ----- scoring -----

    def analyze(self, login: LoginData, pattern: Optional[UserLoginPattern]) -> RiskAssessment:
        reasons = []
        location_score, distance = self._location_score(login, pattern, reasons)
        device_score = self._device_score(login, pattern, reasons)
        time_score = self._time_score(login, pattern, reasons)

        weights = self.config.get("ANOMALY_WEIGHTS") or {"location": 0.4, "device": 0.35, "time": 0.25}
        combined = (
            location_score * weights.get("location", 0)
            + device_score * weights.get("device", 0)
            + time_score * weights.get("time", 0)
        )
        risk = int(round(max(0.0, min(100.0, combined))))

        if self._impossible_travel(login, pattern):
            reasons.append("impossible_travel")
            risk = 100

        flag_threshold = self.config.get("ANOMALY_FLAG_THRESHOLD", 30)
        return RiskAssessment(
            is_anomalous=risk >= flag_threshold,
            risk_score=risk,
            reasons=reasons,
            recommended_action=self.action_for(risk),
            severity=severity_for(risk),
            anomaly_type=anomaly_type_for(reasons),
            sub_scores={"location": location_score, "device": device_score, "time": time_score},
            distance_km=round(distance, 1) if distance is not None else None,
        )

    def action_for(self, risk_score: int) -> RiskAction:
        if risk_score >= self.config.get("RISK_LOCK_THRESHOLD", 90):
            return RiskAction.LOCK
        if risk_score >= self.config.get("RISK_BLOCK_THRESHOLD", 70):
            return RiskAction.BLOCK
        if risk_score >= self.config.get("RISK_STEP_UP_THRESHOLD", 30):
            return RiskAction.STEP_UP
        return RiskAction.ALLOW

    def distance_risk(self, distance_km: float) -> int:
        near = self.config.get("LOCATION_NEAR_KM", 100.0)
        far = self.config.get("LOCATION_FAR_KM", 2000.0)
        if distance_km < near:
            return 0
        if distance_km > far:
            return 100
        return int(round((distance_km - near) / (far - near) * 100))

    def _location_score(self, login, pattern, reasons):
        locations = list(pattern.typical_locations or []) if pattern else []
        if not locations:
            return 0, None

        countries = {loc.get("country") for loc in locations if loc.get("country")}
        if login.country and countries and login.country not in countries:
            reasons.append("new_country")

        known = [loc for loc in locations if loc.get("latitude") is not None and loc.get("longitude") is not None]
        if not login.has_coordinates or not known:
            reasons.append("unknown_location")
            return self.config.get("UNKNOWN_LOCATION_RISK", 50), None

        distance = min(
            haversine_km(login.latitude, login.longitude, loc["latitude"], loc["longitude"])
            for loc in known
        )
        score = self.distance_risk(distance)
        if score >= pattern.location_risk_threshold:
            reasons.append("unusual_location")
        return score, distance

    def _device_score(self, login, pattern, reasons):
        devices = list(pattern.typical_devices or []) if pattern else []
        if not devices or login.device_fingerprint in devices:
            return 0
        reasons.append("new_device")
        return pattern.device_risk_threshold

    def _time_score(self, login, pattern, reasons):
        hours = list(pattern.typical_login_hours or []) if pattern else []
        days = list(pattern.typical_days_of_week or []) if pattern else []
        when = login.attempted_at or self.clock()

        score = 0
        if hours and when.hour not in hours:
            score += pattern.time_risk_threshold
            if when.hour < 6:
                score += 20
                reasons.append("unusual_time_late_night")
            else:
                reasons.append("unusual_time")
        if days and when.weekday() not in days:
            score += 15
            reasons.append("unusual_day")
        return min(score, 100)

    def _impossible_travel(self, login, pattern) -> bool:
        if pattern is None or not login.has_coordinates:
            return False
        if pattern.last_latitude is None or pattern.last_longitude is None or pattern.last_login_at is None:
            return False

        distance = haversine_km(login.latitude, login.longitude, pattern.last_latitude, pattern.last_longitude)
        if distance <= self.config.get("LOCATION_NEAR_KM", 100.0):
            return False

        when = login.attempted_at or self.clock()
        hours = (when - pattern.last_login_at).total_seconds() / 3600.0
        if hours <= 0:
            return True
        return distance / hours > self.config.get("MAX_TRAVEL_SPEED_KMH", 900.0)

    # ----- persistence / alerting -----

    def record(self, user_id: int, login_attempt_id: int, login: LoginData,
               assessment: RiskAssessment) -> Optional[AnomalyDetection]:
        """Adds a detection row for a flagged assessment. The caller commits, then calls alert()."""
        if not assessment.is_anomalous:
            return None

        detection = AnomalyDetection(
            user_id=user_id,
            login_attempt_id=login_attempt_id,
            anomaly_type=assessment.anomaly_type,
            severity=assessment.severity,
            risk_score=assessment.risk_score,
            description=self.describe(assessment),
            details={
                "reasons": assessment.reasons,
                "sub_scores": assessment.sub_scores,
                "distance_km": assessment.distance_km,
                "ip_address": login.ip_address,
                "location": login.location_label,
                "device_type": login.device_type,
            },
            status="Pending",
            response_action=assessment.recommended_action.value,
            detected_at=self.clock(),
        )
        self.session.add(detection)
        log_event(
            "ANOMALY_DETECTED",
            user_id=user_id,
            severity="WARNING" if assessment.severity < 4 else "CRITICAL",
            description=detection.description,
            metadata={"risk_score": assessment.risk_score, "action": assessment.recommended_action.value},
            session=self.session,
        )
        logger.warning(
            "login_anomaly",
            user_id=user_id,
            risk_score=assessment.risk_score,
            action=assessment.recommended_action.value,
            reasons=assessment.reasons,
        )
        return detection

    def alert(self, email: str, login: LoginData, assessment: RiskAssessment) -> None:
        if self.notifier is None or not assessment.is_anomalous:
            return
        try:
            self.notifier.send_security_alert(
                email,
                "Unusual sign-in activity on your account",
                f"We noticed a sign-in that does not match your usual activity. {self.describe(assessment)}",
                severity=SEVERITY_LABELS[assessment.severity],
                details={
                    "IP address": login.ip_address,
                    "Location": login.location_label or "Unknown",
                    "Action": assessment.recommended_action.value,
                },
            )
        except Exception:
            # the detection is already stored; a lost alert must not fail the login
            logger.exception("anomaly_alert_failed", email=email)

    @staticmethod
    def describe(assessment: RiskAssessment) -> str:
        reasons = ", ".join(r.replace("_", " ") for r in assessment.reasons) or "combined risk"
        return f"Risk score {assessment.risk_score}: {reasons}"

    # ----- review -----

    def get_unresolved(self, limit: int = 100):
        return (
            self.session.query(AnomalyDetection)
            .filter(AnomalyDetection.is_resolved.is_(False))
            .order_by(AnomalyDetection.detected_at.desc())
            .limit(limit)
            .all()
        )

    def resolve(self, anomaly_id: int, notes: str, resolver: str, status: str = "Resolved") -> bool:
        if status not in ANOMALY_STATUSES or status == "Pending":
            raise ValueError(f"Invalid anomaly status: {status}")

        row = self.session.get(AnomalyDetection, anomaly_id)
        if row is None:
            return False

        row.status = status
        row.is_resolved = status in ("Resolved", "Ignored")
        row.resolution_notes = (notes or "")[:1000]
        row.resolved_by = resolver
        row.resolved_at = self.clock()
        log_event(
            "ANOMALY_RESOLVED",
            user_id=row.user_id,
            description=f"Anomaly {row.id} marked {status} by {resolver}",
            session=self.session,
        )
        self.session.commit()
        return True

    def statistics(self, start: datetime, end: datetime) -> dict:
        rows = (
            self.session.query(AnomalyDetection)
            .filter(AnomalyDetection.detected_at >= start, AnomalyDetection.detected_at <= end)
            .all()
        )
        total = len(rows)
        by_user = Counter(r.user_id for r in rows)
        return {
            "total": total,
            "resolved": sum(1 for r in rows if r.is_resolved),
            "by_type": dict(Counter(r.anomaly_type for r in rows)),
            "by_severity": dict(Counter(r.severity for r in rows)),
            "by_day": dict(sorted(Counter(r.detected_at.date().isoformat() for r in rows).items())),
            "average_risk": round(sum(r.risk_score for r in rows) / total, 1) if total else 0.0,
            "top_users": [{"user_id": uid, "count": n} for uid, n in by_user.most_common(10)],
        }
