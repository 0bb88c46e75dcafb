from flask import Blueprint, g, jsonify, request

from routes.responses import error_response, iso
from security.outcomes import LoginRequest
from utils.auth_context import auth_engine, client_ip, login_required
from utils.device import FINGERPRINT_HEADER

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _is_valid_email(email: str) -> bool:
    return isinstance(email, str) and "@" in email and len(email) <= 255


def _account_summary(user):
    return {
        "mfaEnabled": user.mfa_enabled,
        "mfaOption": user.mfa_option or None,
        "lastLoginAt": iso(user.last_login_at),
    }


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not _is_valid_email(email) or not isinstance(password, str) or not password:
        return jsonify(message="Email and password are required"), 400

    outcome = auth_engine().login(LoginRequest(
        email=email,
        password=password,
        ip_address=client_ip(),
        user_agent=request.headers.get("User-Agent", ""),
        device_fingerprint=data.get("deviceFingerprint") or request.headers.get(FINGERPRINT_HEADER),
        accept_language=request.headers.get("Accept-Language", ""),
        remember_device=bool(data.get("rememberDevice")),
    ))
    if not outcome.success:
        return error_response(outcome.error)

    user = outcome.user
    return jsonify(
        userId=user.id,
        fullName=user.full_name,
        email=user.email,
        token=outcome.token,
        tokenExpiresAt=iso(outcome.token_expires_at),
        requiresMfa=outcome.requires_mfa,
        mfaMethod=outcome.mfa_method,
        mfaSessionId=outcome.mfa_session_id,
        mfaExpiresAt=iso(outcome.mfa_expires_at),
        account=_account_summary(user),
        message=outcome.message,
    ), 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(
        id=g.user.id,
        email=g.user.email,
        full_name=g.user.full_name,
        phone_number=g.user.phone_number,
        mfa_enabled=g.user.mfa_enabled,
    ), 200
