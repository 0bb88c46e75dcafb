from flask import Blueprint, jsonify, request

from routes.responses import HTTP_STATUS, error_response, iso
from security.outcomes import user_message
from utils.auth_context import auth_engine, client_ip

mfa_bp = Blueprint("mfa", __name__, url_prefix="/mfa")


def _challenge_body(challenge):
    return dict(
        success=True,
        sessionId=challenge.session_id,
        mfaMethod=challenge.method,
        expiresAt=iso(challenge.expires_at),
        remainingAttempts=challenge.remaining_attempts,
        canResend=challenge.can_resend,
        nextResendAt=iso(challenge.next_resend_at),
    )


@mfa_bp.post("/send-code")
def send_code():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    if not email:
        return jsonify(success=False, message="Email is required"), 400

    challenge = auth_engine().send_mfa_code(
        email,
        (data.get("mfaMethod") or "").strip().lower() or None,
        client_ip(),
        request.headers.get("User-Agent", ""),
    )
    if not challenge.success:
        return error_response(challenge.error, success=False)
    return jsonify(_challenge_body(challenge)), 200


@mfa_bp.post("/verify-code")
def verify_code():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    code = str(data.get("code") or "").strip()
    session_id = (data.get("sessionId") or "").strip()
    if not email or not code or not session_id:
        return jsonify(success=False, message="Email, code and sessionId are required"), 400

    result = auth_engine().verify_mfa(email, code, session_id, client_ip(), request.headers.get("User-Agent", ""))
    if not result.success:
        return jsonify(
            success=False,
            message=user_message(result.error),
            error=result.error.value,
            remainingAttempts=result.remaining_attempts,
            isLocked=result.locked,
            lockedUntil=iso(result.locked_until),
        ), HTTP_STATUS[result.error]

    return jsonify(
        success=True,
        accessToken=result.access_token,
        remainingAttempts=result.remaining_attempts,
        isLocked=False,
        message="Verification successful.",
    ), 200


@mfa_bp.post("/resend-code/<session_id>")
def resend_code(session_id):
    challenge = auth_engine().resend_mfa_code(session_id, client_ip())
    if not challenge.success:
        return error_response(challenge.error, success=False, nextResendAt=iso(challenge.next_resend_at))
    return jsonify(_challenge_body(challenge)), 200


@mfa_bp.get("/session/<session_id>/status")
def session_status(session_id):
    status = auth_engine().otp.get_status(session_id)
    if status is None:
        return jsonify(message="MFA session not found"), 404
    return jsonify(status), 200
