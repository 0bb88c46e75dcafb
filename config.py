import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _int(name, default):
    return int(os.getenv(name, str(default)))


def _float(name, default):
    return float(os.getenv(name, str(default)))


class Config:
    # Secrets (also keys the OTP code hashes)
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as auth_engine.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "auth_engine.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Password hashing (bcrypt cost)
    BCRYPT_ROUNDS = _int("BCRYPT_ROUNDS", 12)

    # Account lockout
    MAX_FAILED_LOGIN_ATTEMPTS = _int("MAX_FAILED_LOGIN_ATTEMPTS", 5)
    LOCKOUT_MINUTES = _int("LOCKOUT_MINUTES", 30)

    # Rate limiting (rolling window per client identifier + attempt type)
    RATE_LIMIT_WINDOW_MINUTES = _int("RATE_LIMIT_WINDOW_MINUTES", 15)
    RATE_LIMIT_MAX_ATTEMPTS = {
        "LOGIN": _int("RATE_LIMIT_MAX_LOGIN", 5),
        "MFA_REQUEST": _int("RATE_LIMIT_MAX_MFA_REQUEST", 5),
        "MFA_VERIFY": _int("RATE_LIMIT_MAX_MFA_VERIFY", 10),
        "MFA_RESEND": _int("RATE_LIMIT_MAX_MFA_RESEND", 3),
    }
    RATE_LIMIT_DEFAULT_MAX_ATTEMPTS = 5
    RATE_LIMIT_BLOCK_MINUTES = _int("RATE_LIMIT_BLOCK_MINUTES", 30)
    RATE_LIMIT_BACKOFF_MULTIPLIER = _float("RATE_LIMIT_BACKOFF_MULTIPLIER", 2.0)
    RATE_LIMIT_MAX_BLOCK_MINUTES = _int("RATE_LIMIT_MAX_BLOCK_MINUTES", 24 * 60)
    RATE_LIMIT_RETENTION_DAYS = _int("RATE_LIMIT_RETENTION_DAYS", 7)

    # Anomaly scoring
    ANOMALY_WEIGHTS = {"location": 0.4, "device": 0.35, "time": 0.25}
    ANOMALY_FLAG_THRESHOLD = _int("ANOMALY_FLAG_THRESHOLD", 30)
    RISK_STEP_UP_THRESHOLD = _int("RISK_STEP_UP_THRESHOLD", 30)
    RISK_BLOCK_THRESHOLD = _int("RISK_BLOCK_THRESHOLD", 70)
    RISK_LOCK_THRESHOLD = _int("RISK_LOCK_THRESHOLD", 90)
    LOCATION_NEAR_KM = _float("LOCATION_NEAR_KM", 100.0)
    LOCATION_FAR_KM = _float("LOCATION_FAR_KM", 2000.0)
    UNKNOWN_LOCATION_RISK = _int("UNKNOWN_LOCATION_RISK", 50)
    MAX_TRAVEL_SPEED_KMH = _float("MAX_TRAVEL_SPEED_KMH", 900.0)

    # Login pattern list caps
    PATTERN_MAX_IPS = 10
    PATTERN_MAX_LOCATIONS = 5
    PATTERN_MAX_DEVICES = 5
    PATTERN_MAX_HOURS = 8
    PATTERN_MAX_DAYS = 7

    # Geolocation provider (ip-api.com compatible JSON); empty disables lookups
    GEO_LOOKUP_URL = os.getenv("GEO_LOOKUP_URL", "")
    GEO_LOOKUP_TIMEOUT_SECONDS = _float("GEO_LOOKUP_TIMEOUT_SECONDS", 2.0)

    # Step-up OTP
    OTP_LENGTH = _int("OTP_LENGTH", 6)
    OTP_TTL_SECONDS = _int("OTP_TTL_SECONDS", 300)  # 5 minutes
    OTP_MAX_ATTEMPTS = _int("OTP_MAX_ATTEMPTS", 3)
    OTP_RESEND_INTERVAL_SECONDS = _int("OTP_RESEND_INTERVAL_SECONDS", 60)
    OTP_RETENTION_DAYS = _int("OTP_RETENTION_DAYS", 1)
    MFA_CHALLENGE_WINDOW_MINUTES = _int("MFA_CHALLENGE_WINDOW_MINUTES", 15)

    # Sessions: 8 hours absolute lifetime, 30 minutes inactivity
    SESSION_LIFETIME_SECONDS = _int("SESSION_LIFETIME_SECONDS", 8 * 60 * 60)
    SESSION_INACTIVITY_MINUTES = _int("SESSION_INACTIVITY_MINUTES", 30)
    SUSPICIOUS_MAX_LOCATIONS = 3
    SUSPICIOUS_MAX_DEVICES = 5
    SUSPICIOUS_MAX_RECENT_IPS = 3
    SUSPICIOUS_WINDOW_MINUTES = 60

    # Email (SMTP) for OTP delivery and security alerts
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = _int("SMTP_PORT", 587)
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
    SMTP_TIMEOUT_SECONDS = _int("SMTP_TIMEOUT_SECONDS", 10)

    # SMS gateway (HTTP POST {"to", "message"}); empty disables SMS delivery
    SMS_GATEWAY_URL = os.getenv("SMS_GATEWAY_URL", "")
    SMS_GATEWAY_TOKEN = os.getenv("SMS_GATEWAY_TOKEN")
    SMS_GATEWAY_TIMEOUT_SECONDS = _float("SMS_GATEWAY_TIMEOUT_SECONDS", 5.0)
    NOTIFIER_MAX_WORKERS = _int("NOTIFIER_MAX_WORKERS", 2)

    # Basic app settings
    DEBUG = False
