import structlog

from models import db
from security.otp import OtpSessionManager
from security.rate_limit import RateLimiter
from security.session import SessionManager
from utils.clock import utcnow

logger = structlog.get_logger(__name__)


def run_security_sweep(config, session=None, clock=utcnow) -> dict:
    """
    Periodic housekeeping: expire stale sessions, drop old OTP rows and idle
    rate-limit rows. Running it twice in a row changes nothing the second time.
    """
    session = session if session is not None else db.session
    result = {
        "sessions_expired": SessionManager(config, session, clock).cleanup(),
        "otp_sessions_deleted": OtpSessionManager(config, session, clock).cleanup(),
        "rate_limits_deleted": RateLimiter(config, session, clock).cleanup(),
    }
    logger.info("security_sweep", **result)
    return result
