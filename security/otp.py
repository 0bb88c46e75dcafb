import hashlib
import hmac
import secrets
import uuid
from datetime import timedelta
from typing import Optional, Tuple

import structlog

from models import db
from models.mfa_session import MfaSession
from security.bruteforce import normalize_email
from security.outcomes import ErrorKind, OtpVerification
from utils.clock import utcnow

logger = structlog.get_logger(__name__)


class OtpSessionManager:
    """
    Step-up one-time codes. Only an HMAC of (session id, code) is stored;
    attempt counting and consumption are conditional UPDATEs.
    """

    def __init__(self, config, session=None, clock=utcnow):
        self.config = config
        self.session = session if session is not None else db.session
        self.clock = clock

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self.config.get("OTP_TTL_SECONDS", 300))

    @property
    def resend_interval(self) -> timedelta:
        return timedelta(seconds=self.config.get("OTP_RESEND_INTERVAL_SECONDS", 60))

    def generate_code(self) -> str:
        length = self.config.get("OTP_LENGTH", 6)
        return "".join(secrets.choice("0123456789") for _ in range(length))

    def hash_code(self, session_id: str, code: str) -> str:
        key = str(self.config.get("SECRET_KEY", "")).encode("utf-8")
        msg = f"{session_id}:{(code or '').strip()}".encode("utf-8")
        return hmac.new(key, msg, hashlib.sha256).hexdigest()

    def get(self, session_id: str) -> Optional[MfaSession]:
        if not session_id:
            return None
        return self.session.get(MfaSession, session_id)

    def issue_code(self, user_id: int, email: str, method: str, ip_address=None, user_agent=None,
                   device_fingerprint=None, login_attempt_id=None) -> Tuple[MfaSession, str]:
        now = self.clock()

        # one live code per user: anything still pending expires now
        self.session.query(MfaSession).filter(
            MfaSession.user_id == user_id,
            MfaSession.is_used.is_(False),
            MfaSession.expires_at > now,
        ).update({MfaSession.expires_at: now}, synchronize_session=False)

        session_id = str(uuid.uuid4())
        code = self.generate_code()
        row = MfaSession(
            id=session_id,
            user_id=user_id,
            email=normalize_email(email),
            code_hash=self.hash_code(session_id, code),
            method=method,
            created_at=now,
            expires_at=now + self.ttl,
            is_used=False,
            attempt_count=0,
            max_attempts=self.config.get("OTP_MAX_ATTEMPTS", 3),
            is_blocked=False,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:500] or None,
            device_fingerprint=device_fingerprint,
            login_attempt_id=login_attempt_id,
        )
        self.session.add(row)
        self.session.commit()
        logger.info("otp_issued", user_id=user_id, mfa_session_id=session_id, method=method)
        return row, code

    def verify_code(self, session_id: str, code: str, email: Optional[str] = None) -> OtpVerification:
        row = self.get(session_id)
        if row is None or (email is not None and normalize_email(email) != row.email):
            return OtpVerification(False, ErrorKind.MFA_INVALID_CODE)

        now = self.clock()
        if now >= row.expires_at:
            return OtpVerification(False, ErrorKind.MFA_EXPIRED, session=row)
        if row.is_used:
            return OtpVerification(False, ErrorKind.MFA_ALREADY_USED, session=row)
        if row.is_blocked or row.attempt_count >= row.max_attempts:
            return OtpVerification(False, ErrorKind.MFA_BLOCKED, locked=True, locked_until=row.expires_at,
                                    session=row)

        query = self.session.query(MfaSession).filter(MfaSession.id == row.id)

        if not hmac.compare_digest(self.hash_code(row.id, code), row.code_hash):
            query.filter(MfaSession.is_used.is_(False)).update(
                {MfaSession.attempt_count: MfaSession.attempt_count + 1},
                synchronize_session=False,
            )
            query.filter(MfaSession.attempt_count >= MfaSession.max_attempts).update(
                {MfaSession.is_blocked: True},
                synchronize_session=False,
            )
            self.session.commit()
            self.session.refresh(row)
            if row.is_blocked:
                logger.warning("otp_blocked", user_id=row.user_id, mfa_session_id=row.id)
            return OtpVerification(
                False,
                ErrorKind.MFA_INVALID_CODE,
                remaining_attempts=self.remaining_attempts(row),
                locked=row.is_blocked,
                locked_until=row.expires_at if row.is_blocked else None,
                session=row,
            )

        consumed = query.filter(MfaSession.is_used.is_(False), MfaSession.is_blocked.is_(False)).update(
            {MfaSession.is_used: True, MfaSession.used_at: now},
            synchronize_session=False,
        )
        self.session.commit()
        self.session.refresh(row)
        if not consumed:
            # lost the race to a concurrent verify or a blocking mismatch
            if row.is_blocked:
                return OtpVerification(False, ErrorKind.MFA_BLOCKED, locked=True, locked_until=row.expires_at,
                                        session=row)
            return OtpVerification(False, ErrorKind.MFA_ALREADY_USED, session=row)

        logger.info("otp_verified", user_id=row.user_id, mfa_session_id=row.id)
        return OtpVerification(True, remaining_attempts=self.remaining_attempts(row), session=row)

    @staticmethod
    def remaining_attempts(row: MfaSession) -> int:
        return max(0, row.max_attempts - row.attempt_count)

    def is_session_valid(self, session_id: str) -> bool:
        row = self.get(session_id)
        if row is None:
            return False
        return not row.is_used and not row.is_blocked and self.clock() < row.expires_at

    def next_resend_at(self, row: MfaSession):
        return row.created_at + self.resend_interval

    def can_resend(self, session_id: str) -> bool:
        row = self.get(session_id)
        if row is None or row.is_used:
            return False
        return self.clock() >= self.next_resend_at(row)

    def resend_code(self, session_id: str) -> Tuple[Optional[MfaSession], Optional[str]]:
        """New code on the same session id; attempts start over."""
        if not self.can_resend(session_id):
            return None, None

        row = self.get(session_id)
        now = self.clock()
        code = self.generate_code()
        updated = self.session.query(MfaSession).filter(
            MfaSession.id == row.id,
            MfaSession.is_used.is_(False),
            MfaSession.created_at == row.created_at,
        ).update(
            {
                MfaSession.code_hash: self.hash_code(row.id, code),
                MfaSession.created_at: now,
                MfaSession.expires_at: now + self.ttl,
                MfaSession.attempt_count: 0,
                MfaSession.is_blocked: False,
            },
            synchronize_session=False,
        )
        self.session.commit()
        if not updated:
            return None, None
        self.session.refresh(row)
        logger.info("otp_resent", user_id=row.user_id, mfa_session_id=row.id)
        return row, code

    def get_status(self, session_id: str) -> Optional[dict]:
        row = self.get(session_id)
        if row is None:
            return None
        now = self.clock()
        return {
            "sessionId": row.id,
            "method": row.method,
            "isValid": self.is_session_valid(session_id),
            "isUsed": row.is_used,
            "isExpired": now >= row.expires_at,
            "isLocked": row.is_blocked,
            "remainingAttempts": self.remaining_attempts(row),
            "expiresAt": row.expires_at.isoformat(),
            "canResend": self.can_resend(session_id),
            "nextResendAt": self.next_resend_at(row).isoformat(),
        }

    def cleanup(self) -> int:
        """Drops codes that expired more than OTP_RETENTION_DAYS ago."""
        cutoff = self.clock() - timedelta(days=self.config.get("OTP_RETENTION_DAYS", 1))
        deleted = (
            self.session.query(MfaSession)
            .filter(MfaSession.expires_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.session.commit()
        return deleted
