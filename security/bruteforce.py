from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy import or_

from models import db
from models.user import User
from security.outcomes import ErrorKind
from security.password import dummy_verify, verify_password
from utils.audit import log_event
from utils.clock import utcnow

logger = structlog.get_logger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


@dataclass
class CredentialCheck:
    user: Optional[User]
    error: Optional[ErrorKind] = None
    locked_now: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class CredentialVerifier:
    """
    Password check plus the per-user lockout state machine:

        Active --bad password--> Active(count + 1)
        Active(count == limit) --> Locked(until now + LOCKOUT_MINUTES)
        Locked --lock elapsed--> Active(count reset)

    Counter changes are single UPDATE statements; bcrypt runs before any of
    them so no write lock is held while hashing. A bad password's counter,
    lock and audit rows are left uncommitted; the caller commits them
    together with its attempt record.
    """

    def __init__(self, config, session=None, clock=utcnow, patterns=None):
        self.config = config
        self.session = session if session is not None else db.session
        self.clock = clock
        self.patterns = patterns

    def find_user(self, email: str) -> Optional[User]:
        return self.session.query(User).filter_by(email=normalize_email(email)).first()

    def verify(self, email: str, password: str) -> CredentialCheck:
        user = self.find_user(email)
        if user is None:
            dummy_verify(password, rounds=self.config.get("BCRYPT_ROUNDS"))
            return CredentialCheck(None, ErrorKind.INVALID_CREDENTIALS)

        if not user.is_active:
            return CredentialCheck(user, ErrorKind.ACCOUNT_INACTIVE)

        if user.locked_by_anomaly_at is not None:
            return CredentialCheck(user, ErrorKind.ACCOUNT_LOCKED_PERMANENTLY)

        now = self.clock()
        if user.account_locked_until is not None:
            if user.account_locked_until > now:
                return CredentialCheck(user, ErrorKind.ACCOUNT_LOCKED)
            self._release_lock(user)

        if not verify_password(password, user.password_hash):
            return self._register_failure(user, now)

        self._register_success(user, now)
        return CredentialCheck(user)

    def lock_permanently(self, user: User, reason: str, metadata=None):
        now = self.clock()
        self._user_query(user).update(
            {User.locked_by_anomaly_at: now},
            synchronize_session=False,
        )
        log_event(
            "ACCOUNT_LOCKED",
            user_id=user.id,
            severity="CRITICAL",
            description=reason,
            metadata=metadata,
            session=self.session,
        )
        logger.warning("account_locked_by_anomaly", user_id=user.id, reason=reason)

    def unlock(self, email: str) -> bool:
        """Clears temporary and anomaly locks. Used by the password-reset flow and the CLI."""
        user = self.find_user(email)
        if user is None:
            return False

        self._user_query(user).update(
            {
                User.failed_login_attempts: 0,
                User.last_failed_login_at: None,
                User.account_locked_until: None,
                User.locked_by_anomaly_at: None,
            },
            synchronize_session=False,
        )
        log_event("ACCOUNT_UNLOCKED", user_id=user.id, description="Account locks cleared",
                  session=self.session)
        self.session.commit()
        logger.info("account_unlocked", user_id=user.id)
        return True

    def _user_query(self, user):
        return self.session.query(User).filter(User.id == user.id)

    def _release_lock(self, user):
        locked_until = user.account_locked_until
        self._user_query(user).filter(User.account_locked_until == locked_until).update(
            {User.failed_login_attempts: 0, User.account_locked_until: None},
            synchronize_session=False,
        )
        self.session.commit()
        self.session.refresh(user)

    def _register_failure(self, user, now) -> CredentialCheck:
        max_attempts = self.config.get("MAX_FAILED_LOGIN_ATTEMPTS", 5)
        lock_minutes = self.config.get("LOCKOUT_MINUTES", 30)

        self._user_query(user).update(
            {
                User.failed_login_attempts: User.failed_login_attempts + 1,
                User.last_failed_login_at: now,
            },
            synchronize_session=False,
        )
        # the increment above already holds the row, so exactly one caller locks
        locked = self._user_query(user).filter(
            User.failed_login_attempts >= max_attempts,
            or_(User.account_locked_until.is_(None), User.account_locked_until <= now),
        ).update(
            {User.account_locked_until: now + timedelta(minutes=lock_minutes)},
            synchronize_session=False,
        )

        log_event("LOGIN_FAILURE", user_id=user.id, severity="WARNING",
                  description="Invalid password", session=self.session)
        if locked:
            log_event(
                "ACCOUNT_LOCKED",
                user_id=user.id,
                severity="WARNING",
                description=f"Locked for {lock_minutes} minutes after {max_attempts} failed logins",
                session=self.session,
            )
        if self.patterns is not None:
            self.patterns.record_failure(user.id)

        self.session.refresh(user)

        if locked:
            logger.warning("account_locked", user_id=user.id, attempts=user.failed_login_attempts)
        return CredentialCheck(user, ErrorKind.INVALID_CREDENTIALS, locked_now=bool(locked))

    def _register_success(self, user, now):
        self._user_query(user).update(
            {
                User.failed_login_attempts: 0,
                User.last_failed_login_at: None,
                User.account_locked_until: None,
                User.last_login_at: now,
            },
            synchronize_session=False,
        )
        self.session.commit()
        self.session.refresh(user)
