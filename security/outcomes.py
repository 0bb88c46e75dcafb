"""
Result types returned by the authentication services.

Expected branches (bad password, rate limited, expired code, ...) are values
of ErrorKind carried on a result object, never exceptions. The HTTP layer maps
each kind to a status code and to a fixed message from USER_MESSAGES.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    RATE_LIMITED = "RateLimited"
    INVALID_CREDENTIALS = "InvalidCredentials"
    ACCOUNT_INACTIVE = "AccountInactive"
    ACCOUNT_LOCKED = "AccountLocked"
    ACCOUNT_LOCKED_PERMANENTLY = "AccountLockedPermanently"
    LOGIN_BLOCKED = "LoginBlocked"
    MFA_INVALID_CODE = "MfaInvalidCode"
    MFA_EXPIRED = "MfaExpired"
    MFA_ALREADY_USED = "MfaAlreadyUsed"
    MFA_BLOCKED = "MfaBlocked"
    SESSION_EXPIRED = "SessionExpired"
    SESSION_REVOKED = "SessionRevoked"
    SESSION_NOT_FOUND = "SessionNotFound"


USER_MESSAGES = {
    ErrorKind.RATE_LIMITED: "Too many attempts. Try again later.",
    ErrorKind.INVALID_CREDENTIALS: "Invalid email or password.",
    ErrorKind.ACCOUNT_INACTIVE: "Account is inactive. Contact support.",
    ErrorKind.ACCOUNT_LOCKED: "Account temporarily locked. Try again later.",
    ErrorKind.ACCOUNT_LOCKED_PERMANENTLY: "Account locked for your protection. Reset your password to continue.",
    ErrorKind.LOGIN_BLOCKED: "This sign-in was blocked for your protection.",
    ErrorKind.MFA_INVALID_CODE: "Invalid verification code.",
    ErrorKind.MFA_EXPIRED: "Verification code expired. Request a new code.",
    ErrorKind.MFA_ALREADY_USED: "Verification code was already used.",
    ErrorKind.MFA_BLOCKED: "Too many incorrect codes. Request a new code.",
    ErrorKind.SESSION_EXPIRED: "Session expired.",
    ErrorKind.SESSION_REVOKED: "Session was signed out.",
    ErrorKind.SESSION_NOT_FOUND: "Session not found.",
}


def user_message(kind: Optional[ErrorKind]) -> str:
    if kind is None:
        return ""
    return USER_MESSAGES[kind]


class RiskAction(str, Enum):
    ALLOW = "Allow"
    STEP_UP = "StepUp"
    BLOCK = "Block"
    LOCK = "Lock"


@dataclass
class LoginData:
    """Everything known about one login attempt, fed to the risk pipeline."""
    email: str
    ip_address: str
    user_agent: str = ""
    attempted_at: Optional[datetime] = None
    user_id: Optional[int] = None
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    device_fingerprint: Optional[str] = None
    device_type: Optional[str] = None
    operating_system: Optional[str] = None
    browser: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def location_label(self) -> str:
        return ",".join(p for p in (self.country, self.region, self.city) if p)


@dataclass
class RiskAssessment:
    is_anomalous: bool
    risk_score: int
    reasons: List[str]
    recommended_action: RiskAction
    severity: int = 1
    anomaly_type: str = "General"
    sub_scores: Dict[str, int] = field(default_factory=dict)
    distance_km: Optional[float] = None


@dataclass
class LoginRequest:
    email: str
    password: str
    ip_address: str
    user_agent: str = ""
    device_fingerprint: Optional[str] = None
    accept_language: str = ""
    remember_device: bool = False


@dataclass
class LoginOutcome:
    success: bool
    error: Optional[ErrorKind] = None
    user: Any = None
    token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    requires_mfa: bool = False
    mfa_method: Optional[str] = None
    mfa_session_id: Optional[str] = None
    mfa_expires_at: Optional[datetime] = None
    risk: Optional[RiskAssessment] = None

    @property
    def message(self) -> str:
        if self.error is not None:
            return user_message(self.error)
        if self.requires_mfa:
            return "Verification code sent. Complete sign-in with the code."
        return "Login successful."


@dataclass
class MfaChallenge:
    success: bool
    error: Optional[ErrorKind] = None
    session_id: Optional[str] = None
    method: Optional[str] = None
    expires_at: Optional[datetime] = None
    remaining_attempts: int = 0
    can_resend: bool = False
    next_resend_at: Optional[datetime] = None


@dataclass
class OtpVerification:
    success: bool
    error: Optional[ErrorKind] = None
    remaining_attempts: int = 0
    locked: bool = False
    locked_until: Optional[datetime] = None
    session: Any = None
    access_token: Optional[str] = None


class SessionStatus(str, Enum):
    VALID = "Valid"
    EXPIRED = "Expired"
    REVOKED = "Revoked"
    NOT_FOUND = "NotFound"


_SESSION_ERRORS = {
    SessionStatus.EXPIRED: ErrorKind.SESSION_EXPIRED,
    SessionStatus.REVOKED: ErrorKind.SESSION_REVOKED,
    SessionStatus.NOT_FOUND: ErrorKind.SESSION_NOT_FOUND,
}


@dataclass
class SessionValidation:
    status: SessionStatus
    session: Any = None
    is_inactive: bool = False
    minutes_until_timeout: int = 0

    @property
    def is_valid(self) -> bool:
        return self.status is SessionStatus.VALID

    @property
    def error(self) -> Optional[ErrorKind]:
        return _SESSION_ERRORS.get(self.status)
