from .db import db
from .user import User
from .security_event import SecurityEvent
from .session import UserSession
from .login_attempt import LoginAttempt
from .login_pattern import UserLoginPattern
from .anomaly_detection import AnomalyDetection
from .rate_limit_entry import RateLimitEntry
from .mfa_session import MfaSession
