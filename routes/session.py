from flask import Blueprint, g, jsonify, request

from models import db
from routes.responses import iso
from security.outcomes import SessionStatus, user_message
from utils.audit import log_event
from utils.auth_context import auth_engine, bearer_token, login_required

session_bp = Blueprint("session", __name__, url_prefix="/session")


@session_bp.post("/validate")
def validate():
    token = bearer_token()
    result = auth_engine().sessions.validate(token)
    body = dict(
        isValid=result.is_valid,
        isExpired=result.status is SessionStatus.EXPIRED,
        isInactive=result.is_inactive,
        minutesUntilTimeout=result.minutes_until_timeout,
        message="Session is valid." if result.is_valid else user_message(result.error),
    )
    return jsonify(body), 200 if result.is_valid else 401


@session_bp.post("/heartbeat")
@login_required
def heartbeat():
    # activity was already recorded while loading the user
    result = auth_engine().sessions.validate(g.session_token)
    return jsonify(success=True, minutesUntilTimeout=result.minutes_until_timeout), 200


@session_bp.post("/logout")
@login_required
def logout():
    auth_engine().sessions.revoke(g.session_token, reason="logout")
    log_event("LOGOUT", user_id=g.user.id)
    db.session.commit()
    return jsonify(success=True, message="Logged out"), 200


@session_bp.post("/logout-all-devices")
@login_required
def logout_all_devices():
    data = request.get_json(silent=True) or {}
    if not data.get("confirmLogoutAll", True):
        return jsonify(success=False, sessionsRevoked=0, message="Confirmation required"), 400

    count = auth_engine().sessions.revoke_all_others(g.user.id, keep_token=g.session_token)
    log_event("LOGOUT_ALL", user_id=g.user.id, metadata={"revoked_sessions": count})
    db.session.commit()
    return jsonify(
        success=True,
        sessionsRevoked=count,
        message=f"Signed out of {count} other device(s)",
    ), 200


@session_bp.get("/active")
@login_required
def active_sessions():
    rows = auth_engine().sessions.list_active(g.user.id)
    return jsonify([
        {
            "id": s.id,
            "ipAddress": s.ip_address,
            "userAgent": s.user_agent,
            "location": s.location,
            "createdAt": iso(s.created_at),
            "lastActivityAt": iso(s.last_activity_at),
            "expiresAt": iso(s.expires_at),
            "isTrustedDevice": s.is_trusted_device,
            "isCurrent": s.id == g.session.id,
        }
        for s in rows
    ]), 200
