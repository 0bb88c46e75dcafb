from datetime import timedelta
from typing import Optional

import structlog

from models import db
from models.login_attempt import LoginAttempt
from models.mfa_session import MfaSession
from models.user import User
from security.anomaly import AnomalyScorer
from security.bruteforce import CredentialVerifier, normalize_email
from security.login_pattern import LoginPatternTracker
from security.otp import OtpSessionManager
from security.outcomes import (
    ErrorKind,
    LoginData,
    LoginOutcome,
    LoginRequest,
    MfaChallenge,
    OtpVerification,
    RiskAction,
)
from security.rate_limit import LOGIN, MFA_REQUEST, MFA_RESEND, MFA_VERIFY, RateLimiter
from security.session import SessionManager
from utils.audit import log_event
from utils.clock import utcnow
from utils.device import describe_device
from utils.geo import NullGeoLookup

logger = structlog.get_logger(__name__)

DELIVERABLE_METHODS = ("sms", "email")


class LoginOrchestrator:
    """
    rate limit -> credentials -> risk score -> (session | OTP | block | lock).

    Every stage may end the login. Each ending commits its LoginAttempt, the
    rate-limit count and any lockout change in one final transaction, and
    only then sends notifications.
    """

    def __init__(self, config, session=None, clock=utcnow, geo=None, notifier=None):
        self.config = config
        self.session = session if session is not None else db.session
        self.clock = clock
        self.geo = geo or NullGeoLookup()
        self.notifier = notifier

        self.rate_limiter = RateLimiter(config, self.session, clock)
        self.patterns = LoginPatternTracker(config, self.session, clock)
        self.credentials = CredentialVerifier(config, self.session, clock, patterns=self.patterns)
        self.scorer = AnomalyScorer(config, self.session, clock, notifier=notifier)
        self.otp = OtpSessionManager(config, self.session, clock)
        self.sessions = SessionManager(config, self.session, clock, notifier=notifier)

    # ----- login -----

    def login(self, req: LoginRequest) -> LoginOutcome:
        now = self.clock()
        device = describe_device(req.user_agent, req.device_fingerprint, req.accept_language)
        data = LoginData(
            email=normalize_email(req.email),
            ip_address=req.ip_address or "unknown",
            user_agent=req.user_agent or "",
            attempted_at=now,
            device_fingerprint=device.fingerprint,
            device_type=device.device_type,
            operating_system=device.operating_system,
            browser=device.browser,
        )

        if not self.rate_limiter.can_attempt(data.ip_address, LOGIN):
            log_event("RATE_LIMITED", severity="WARNING", description="Login rate limit exceeded",
                      ip=data.ip_address, metadata={"email": data.email}, session=self.session)
            return self._reject(data, ErrorKind.RATE_LIMITED)

        check = self.credentials.verify(data.email, req.password)
        if check.user is not None:
            data.user_id = check.user.id
        if not check.ok:
            return self._reject(data, check.error)

        user = check.user
        self._locate(data)
        pattern = self.patterns.get_pattern(user.id)
        assessment = self.scorer.analyze(data, pattern)
        action = assessment.recommended_action
        admitted = action in (RiskAction.ALLOW, RiskAction.STEP_UP)

        attempt = self._record_attempt(
            data,
            is_successful=admitted,
            failure_reason=None if admitted else f"risk_{action.value.lower()}",
            assessment=assessment,
        )
        self.scorer.record(user.id, attempt.id, data, assessment)
        self.rate_limiter.record_attempt(data.ip_address, LOGIN, succeeded=admitted, commit=False)

        if action is RiskAction.LOCK:
            self.credentials.lock_permanently(
                user,
                f"Locked after high-risk sign-in (risk {assessment.risk_score})",
                metadata={"reasons": assessment.reasons, "login_attempt_id": attempt.id},
            )
            self.sessions.revoke_all_others(user.id, reason="anomaly_lock", commit=False)
        elif action is RiskAction.BLOCK:
            log_event("LOGIN_BLOCKED", user_id=user.id, severity="WARNING",
                      description=self.scorer.describe(assessment), ip=data.ip_address,
                      session=self.session)

        # attempt, detection, limiter count and any lock land together
        self.session.commit()
        self.scorer.alert(user.email, data, assessment)

        if action is RiskAction.LOCK:
            return LoginOutcome(False, ErrorKind.ACCOUNT_LOCKED_PERMANENTLY, risk=assessment)
        if action is RiskAction.BLOCK:
            return LoginOutcome(False, ErrorKind.LOGIN_BLOCKED, risk=assessment)

        if action is RiskAction.STEP_UP or user.mfa_enabled:
            mfa_session = self._challenge(user, data, attempt.id, self.default_method(user))
            return LoginOutcome(
                True,
                user=user,
                requires_mfa=True,
                mfa_method=mfa_session.method,
                mfa_session_id=mfa_session.id,
                mfa_expires_at=mfa_session.expires_at,
                risk=assessment,
            )

        token, expires_at = self._issue_session(user, data, trusted=req.remember_device)
        return LoginOutcome(True, user=user, token=token, token_expires_at=expires_at, risk=assessment)

    # ----- MFA protocol -----

    def send_mfa_code(self, email: str, method: Optional[str], ip_address: str, user_agent: str = "") -> MfaChallenge:
        if not self.rate_limiter.can_attempt(ip_address, MFA_REQUEST):
            self.rate_limiter.record_attempt(ip_address, MFA_REQUEST, succeeded=False)
            return MfaChallenge(False, ErrorKind.RATE_LIMITED)

        user = self.credentials.find_user(email)
        challenge = self._recent_challenge(user) if user is not None else None
        if challenge is None:
            self.rate_limiter.record_attempt(ip_address, MFA_REQUEST, succeeded=False)
            return MfaChallenge(False, ErrorKind.INVALID_CREDENTIALS)

        if method not in DELIVERABLE_METHODS or (method == "sms" and not user.phone_number):
            method = self.default_method(user)

        data = self._login_data(challenge)
        mfa_session = self._challenge(user, data, challenge.login_attempt_id, method)
        self.rate_limiter.record_attempt(ip_address, MFA_REQUEST, succeeded=True)
        return self._challenge_result(mfa_session)

    def verify_mfa(self, email: str, code: str, session_id: str, ip_address: str,
                   user_agent: str = "") -> OtpVerification:
        if not self.rate_limiter.can_attempt(ip_address, MFA_VERIFY):
            self.rate_limiter.record_attempt(ip_address, MFA_VERIFY, succeeded=False)
            return OtpVerification(False, ErrorKind.RATE_LIMITED)

        result = self.otp.verify_code(session_id, code, email=email)
        self.rate_limiter.record_attempt(ip_address, MFA_VERIFY, succeeded=result.success)
        if not result.success:
            if result.session is not None:
                log_event("MFA_FAILED", user_id=result.session.user_id, severity="WARNING",
                          description=result.error.value, ip=ip_address, session=self.session)
                self.session.commit()
            return result

        mfa_session = result.session
        user = self.session.get(User, mfa_session.user_id)
        if user is None or not user.is_active:
            return OtpVerification(False, ErrorKind.ACCOUNT_INACTIVE)
        if user.locked_by_anomaly_at is not None:
            return OtpVerification(False, ErrorKind.ACCOUNT_LOCKED_PERMANENTLY)

        data = self._login_data(mfa_session)
        token, _ = self._issue_session(user, data, trusted=False)
        result.access_token = token
        return result

    def resend_mfa_code(self, session_id: str, ip_address: str) -> MfaChallenge:
        if not self.rate_limiter.can_attempt(ip_address, MFA_RESEND):
            self.rate_limiter.record_attempt(ip_address, MFA_RESEND, succeeded=False)
            return MfaChallenge(False, ErrorKind.RATE_LIMITED)

        mfa_session, code = self.otp.resend_code(session_id)
        self.rate_limiter.record_attempt(ip_address, MFA_RESEND, succeeded=mfa_session is not None)
        if mfa_session is None:
            existing = self.otp.get(session_id)
            if existing is None:
                return MfaChallenge(False, ErrorKind.MFA_INVALID_CODE)
            if existing.is_used:
                return MfaChallenge(False, ErrorKind.MFA_ALREADY_USED, session_id=existing.id)
            return MfaChallenge(False, ErrorKind.RATE_LIMITED, session_id=existing.id,
                                next_resend_at=self.otp.next_resend_at(existing))

        user = self.session.get(User, mfa_session.user_id)
        self._deliver(user, mfa_session, code)
        log_event("MFA_RESENT", user_id=user.id, ip=ip_address, session=self.session)
        self.session.commit()
        return self._challenge_result(mfa_session)

    def unlock_account(self, email: str) -> bool:
        return self.credentials.unlock(email)

    @staticmethod
    def default_method(user: User) -> str:
        if user.mfa_option == "sms" and user.phone_number:
            return "sms"
        return "email"

    # ----- internals -----

    def _reject(self, data: LoginData, error: ErrorKind) -> LoginOutcome:
        # joins the failed-password counter and lock staged by the verifier
        self._record_attempt(data, is_successful=False, failure_reason=error.value)
        self.rate_limiter.record_attempt(data.ip_address, LOGIN, succeeded=False, commit=False)
        self.session.commit()
        logger.info("login_rejected", email=data.email, ip=data.ip_address, reason=error.value)
        return LoginOutcome(False, error)

    def _locate(self, data: LoginData):
        try:
            location = self.geo.lookup(data.ip_address)
        except Exception:
            logger.exception("geo_lookup_error", ip=data.ip_address)
            location = None
        if location is None:
            return
        data.country = location.country
        data.region = location.region
        data.city = location.city
        data.latitude = location.latitude
        data.longitude = location.longitude

    def _record_attempt(self, data: LoginData, is_successful: bool, failure_reason=None,
                        assessment=None) -> LoginAttempt:
        attempt = LoginAttempt(
            user_id=data.user_id,
            email=data.email,
            ip_address=data.ip_address,
            user_agent=data.user_agent[:500] or None,
            country=data.country,
            region=data.region,
            city=data.city,
            latitude=data.latitude,
            longitude=data.longitude,
            device_fingerprint=data.device_fingerprint,
            device_type=data.device_type,
            operating_system=data.operating_system,
            browser=data.browser,
            attempted_at=data.attempted_at,
            is_successful=is_successful,
            failure_reason=failure_reason,
            is_anomalous=bool(assessment and assessment.is_anomalous),
            anomaly_reasons=list(assessment.reasons) if assessment else [],
            risk_score=assessment.risk_score if assessment else 0,
            response_action=assessment.recommended_action.value if assessment else None,
        )
        self.session.add(attempt)
        self.session.flush()
        return attempt

    def _challenge(self, user: User, data: LoginData, login_attempt_id, method: str) -> MfaSession:
        mfa_session, code = self.otp.issue_code(
            user.id,
            user.email,
            method,
            ip_address=data.ip_address,
            user_agent=data.user_agent,
            device_fingerprint=data.device_fingerprint,
            login_attempt_id=login_attempt_id,
        )
        self._deliver(user, mfa_session, code)
        log_event("MFA_CHALLENGE", user_id=user.id, description=f"Code sent by {method}",
                  ip=data.ip_address, session=self.session)
        self.session.commit()
        return mfa_session

    def _deliver(self, user: User, mfa_session: MfaSession, code: str):
        if self.notifier is None:
            logger.warning("otp_not_delivered", user_id=user.id, reason="no notifier")
            return
        try:
            self.notifier.send_otp(mfa_session.method, user.email, user.phone_number, code, mfa_session.expires_at)
        except Exception:
            logger.exception("otp_delivery_error", user_id=user.id, method=mfa_session.method)

    def _challenge_result(self, mfa_session: MfaSession) -> MfaChallenge:
        return MfaChallenge(
            True,
            session_id=mfa_session.id,
            method=mfa_session.method,
            expires_at=mfa_session.expires_at,
            remaining_attempts=self.otp.remaining_attempts(mfa_session),
            can_resend=self.otp.can_resend(mfa_session.id),
            next_resend_at=self.otp.next_resend_at(mfa_session),
        )

    def _recent_challenge(self, user: User) -> Optional[MfaSession]:
        window = timedelta(minutes=self.config.get("MFA_CHALLENGE_WINDOW_MINUTES", 15))
        since = self.clock() - window
        return (
            self.session.query(MfaSession)
            .join(LoginAttempt, MfaSession.login_attempt_id == LoginAttempt.id)
            .filter(MfaSession.user_id == user.id, LoginAttempt.attempted_at >= since)
            .order_by(LoginAttempt.attempted_at.desc())
            .first()
        )

    def _login_data(self, mfa_session: MfaSession) -> LoginData:
        """Rebuilds the challenged login from its LoginAttempt row."""
        attempt = None
        if mfa_session.login_attempt_id is not None:
            attempt = self.session.get(LoginAttempt, mfa_session.login_attempt_id)
        if attempt is None:
            return LoginData(
                email=mfa_session.email,
                ip_address=mfa_session.ip_address or "unknown",
                user_agent=mfa_session.user_agent or "",
                attempted_at=self.clock(),
                user_id=mfa_session.user_id,
                device_fingerprint=mfa_session.device_fingerprint,
            )
        return LoginData(
            email=attempt.email,
            ip_address=attempt.ip_address,
            user_agent=attempt.user_agent or "",
            attempted_at=attempt.attempted_at,
            user_id=attempt.user_id,
            country=attempt.country,
            region=attempt.region,
            city=attempt.city,
            latitude=attempt.latitude,
            longitude=attempt.longitude,
            device_fingerprint=attempt.device_fingerprint,
            device_type=attempt.device_type,
            operating_system=attempt.operating_system,
            browser=attempt.browser,
        )

    def _issue_session(self, user: User, data: LoginData, trusted: bool):
        self.patterns.update(user.id, data)
        log_event("LOGIN_SUCCESS", user_id=user.id, ip=data.ip_address, user_agent=data.user_agent,
                  metadata={"location": data.location_label or None, "device": data.device_type},
                  session=self.session)
        token = self.sessions.create_session(
            user.id,
            ip_address=data.ip_address,
            user_agent=data.user_agent,
            fingerprint=data.device_fingerprint,
            location=data.location_label or None,
            trusted=trusted,
        )
        expires_at = self.sessions.find(token).expires_at
        logger.info("login_success", user_id=user.id, ip=data.ip_address)
        self.sessions.detect_suspicious(user.id, email=user.email)
        return token, expires_at
