from .health import health_bp
from .auth import auth_bp
from .mfa import mfa_bp
from .session import session_bp
