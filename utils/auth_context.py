from functools import wraps

from flask import current_app, g, jsonify, request

from models import db
from models.user import User
from security.outcomes import user_message


def auth_engine():
    return current_app.extensions["auth_engine"]


def client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr or "unknown"


def bearer_token():
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.headers.get("X-Session-Token") or None


def load_current_user():
    g.user = None
    g.session = None
    g.session_token = None
    g.session_validation = None

    token = bearer_token()
    if not token:
        return

    sessions = auth_engine().sessions
    result = sessions.validate(token)
    g.session_validation = result
    if not result.is_valid:
        return

    sessions.update_activity(token)
    g.session = result.session
    g.session_token = token
    g.user = db.session.get(User, result.session.user_id)


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            result = getattr(g, "session_validation", None)
            message = user_message(result.error) if result is not None else "Authentication required"
            return jsonify(message=message), 401
        return fn(*args, **kwargs)
    return wrapper
