import hashlib
import secrets
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy import and_

from models import db
from models.session import UserSession
from security.outcomes import SessionStatus, SessionValidation
from utils.audit import log_event
from utils.clock import utcnow

logger = structlog.get_logger(__name__)

# revocations that read back as "expired" rather than "signed out"
EXPIRY_REASONS = ("expired", "inactivity")


def hash_token(token: str) -> str:
    # SHA-256 is fine for hashing random session tokens
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class SessionManager:
    """
    Opaque bearer sessions. The raw token goes back to the caller once; the
    table only ever holds its hash. Expiry (absolute and inactivity) is
    applied lazily when a token is presented, and in bulk by cleanup().
    """

    def __init__(self, config, session=None, clock=utcnow, notifier=None):
        self.config = config
        self.session = session if session is not None else db.session
        self.clock = clock
        self.notifier = notifier

    def create_session(self, user_id: int, ip_address=None, user_agent=None, fingerprint=None,
                       location=None, timeout_minutes=None, trusted=False) -> str:
        raw_token = secrets.token_urlsafe(32)
        now = self.clock()
        lifetime = self.config.get("SESSION_LIFETIME_SECONDS", 28800)

        row = UserSession(
            user_id=user_id,
            token_hash=hash_token(raw_token),
            ip_address=ip_address,
            user_agent=(user_agent or "")[:500] or None,
            device_fingerprint=fingerprint,
            location=location[:200] if location else None,
            created_at=now,
            expires_at=now + timedelta(seconds=lifetime),
            last_activity_at=now,
            is_active=True,
            is_revoked=False,
            is_trusted_device=bool(trusted),
            inactivity_timeout_minutes=timeout_minutes or self.config.get("SESSION_INACTIVITY_MINUTES", 30),
        )
        self.session.add(row)
        log_event("SESSION_CREATED", user_id=user_id, ip=ip_address, user_agent=user_agent,
                  metadata={"trusted": bool(trusted), "location": location}, session=self.session)
        self.session.commit()
        logger.info("session_created", user_id=user_id, session_id=row.id)
        return raw_token

    def find(self, token: str) -> Optional[UserSession]:
        if not token:
            return None
        return self.session.query(UserSession).filter_by(token_hash=hash_token(token)).first()

    def validate(self, token: str) -> SessionValidation:
        row = self.find(token)
        if row is None:
            return SessionValidation(SessionStatus.NOT_FOUND)

        if row.is_revoked:
            if row.revoked_reason in EXPIRY_REASONS:
                return SessionValidation(SessionStatus.EXPIRED, row,
                                         is_inactive=row.revoked_reason == "inactivity")
            return SessionValidation(SessionStatus.REVOKED, row)

        now = self.clock()
        if now >= row.expires_at:
            self._expire(row, "expired", now)
            return SessionValidation(SessionStatus.EXPIRED, row)

        idle_deadline = row.last_activity_at + timedelta(minutes=row.inactivity_timeout_minutes)
        if now >= idle_deadline:
            self._expire(row, "inactivity", now)
            return SessionValidation(SessionStatus.EXPIRED, row, is_inactive=True)

        deadline = min(idle_deadline, row.expires_at)
        minutes_left = int((deadline - now).total_seconds() // 60)
        return SessionValidation(SessionStatus.VALID, row, minutes_until_timeout=minutes_left)

    def update_activity(self, token: str) -> bool:
        result = self.validate(token)
        if not result.is_valid:
            return False

        now = self.clock()
        updated = self.session.query(UserSession).filter(
            UserSession.id == result.session.id,
            UserSession.is_revoked.is_(False),
        ).update({UserSession.last_activity_at: now}, synchronize_session=False)
        self.session.commit()
        return bool(updated)

    def revoke(self, token: str, reason: str = "logout") -> bool:
        row = self.find(token)
        if row is None or row.is_revoked:
            return False
        self._revoke_query(UserSession.id == row.id, reason)
        log_event("SESSION_REVOKED", user_id=row.user_id, description=reason, session=self.session)
        self.session.commit()
        return True

    def revoke_all_others(self, user_id: int, keep_token: Optional[str] = None, reason: str = "logout_all",
                          commit: bool = True) -> int:
        """
        Revokes the user's live sessions except keep_token and returns how many
        were live. Stale rows are first marked expired so they are not counted.
        """
        now = self.clock()
        self._expire_stale(now, user_id=user_id)

        criteria = [UserSession.user_id == user_id]
        if keep_token:
            criteria.append(UserSession.token_hash != hash_token(keep_token))
        count = self._revoke_query(and_(*criteria), reason, now)
        if count:
            log_event("SESSIONS_REVOKED", user_id=user_id, description=reason,
                      metadata={"count": count}, session=self.session)
        if commit:
            self.session.commit()
        logger.info("sessions_revoked", user_id=user_id, count=count, reason=reason)
        return count

    def list_active(self, user_id: int):
        now = self.clock()
        rows = (
            self.session.query(UserSession)
            .filter(
                UserSession.user_id == user_id,
                UserSession.is_active.is_(True),
                UserSession.is_revoked.is_(False),
                UserSession.expires_at > now,
            )
            .order_by(UserSession.last_activity_at.desc())
            .all()
        )
        return [
            r for r in rows
            if r.last_activity_at + timedelta(minutes=r.inactivity_timeout_minutes) > now
        ]

    def cleanup(self) -> int:
        """Marks every expired or idle session revoked. Safe to run repeatedly."""
        now = self.clock()
        expired, idle = self._expire_stale(now)
        self.session.commit()

        if expired or idle:
            logger.info("sessions_cleaned", expired=expired, inactive=idle)
        return expired + idle

    def detect_suspicious(self, user_id: int, email: Optional[str] = None) -> bool:
        cfg = self.config
        active = self.list_active(user_id)
        locations = {s.location for s in active if s.location}
        devices = {s.device_fingerprint for s in active if s.device_fingerprint}

        since = self.clock() - timedelta(minutes=cfg.get("SUSPICIOUS_WINDOW_MINUTES", 60))
        recent_ips = {
            ip for (ip,) in self.session.query(UserSession.ip_address)
            .filter(UserSession.user_id == user_id, UserSession.created_at >= since)
            .all()
            if ip
        }

        suspicious = (
            len(locations) > cfg.get("SUSPICIOUS_MAX_LOCATIONS", 3)
            or len(devices) > cfg.get("SUSPICIOUS_MAX_DEVICES", 5)
            or len(recent_ips) > cfg.get("SUSPICIOUS_MAX_RECENT_IPS", 3)
        )
        if not suspicious:
            return False

        details = {
            "active_sessions": len(active),
            "locations": len(locations),
            "devices": len(devices),
            "recent_ips": len(recent_ips),
        }
        log_event("SUSPICIOUS_ACTIVITY", user_id=user_id, severity="WARNING",
                  description="Unusual concurrent session activity", metadata=details,
                  session=self.session)
        self.session.commit()
        logger.warning("suspicious_sessions", user_id=user_id, **details)

        if self.notifier is not None and email:
            self.notifier.send_security_alert(
                email,
                "Unusual session activity",
                "Your account is signed in from several places or devices at once. "
                "If this wasn't you, sign out of all devices and change your password.",
                severity="High",
                details=details,
            )
        return True

    def _expire_stale(self, now, user_id=None):
        live = [UserSession.is_revoked.is_(False)]
        if user_id is not None:
            live.append(UserSession.user_id == user_id)

        expired = self._revoke_query(and_(UserSession.expires_at <= now, *live), "expired", now)
        idle_ids = [
            r.id for r in self.session.query(UserSession).filter(*live).all()
            if r.last_activity_at + timedelta(minutes=r.inactivity_timeout_minutes) <= now
        ]
        idle = self._revoke_query(UserSession.id.in_(idle_ids), "inactivity", now) if idle_ids else 0
        return expired, idle

    def _expire(self, row, reason, now):
        self._revoke_query(
            and_(UserSession.id == row.id, UserSession.is_revoked.is_(False)), reason, now
        )
        self.session.commit()
        self.session.refresh(row)

    def _revoke_query(self, criterion, reason, now=None) -> int:
        now = now or self.clock()
        return self.session.query(UserSession).filter(
            criterion, UserSession.is_revoked.is_(False)
        ).update(
            {
                UserSession.is_active: False,
                UserSession.is_revoked: True,
                UserSession.revoked_reason: reason,
                UserSession.revoked_at: now,
            },
            synchronize_session=False,
        )
