from flask import jsonify

from security.outcomes import ErrorKind, user_message

HTTP_STATUS = {
    ErrorKind.RATE_LIMITED: 400,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.ACCOUNT_INACTIVE: 400,
    ErrorKind.ACCOUNT_LOCKED: 400,
    ErrorKind.ACCOUNT_LOCKED_PERMANENTLY: 400,
    ErrorKind.LOGIN_BLOCKED: 400,
    ErrorKind.MFA_INVALID_CODE: 400,
    ErrorKind.MFA_EXPIRED: 400,
    ErrorKind.MFA_ALREADY_USED: 400,
    ErrorKind.MFA_BLOCKED: 400,
    ErrorKind.SESSION_EXPIRED: 401,
    ErrorKind.SESSION_REVOKED: 401,
    ErrorKind.SESSION_NOT_FOUND: 401,
}


def iso(value):
    return value.isoformat() if value is not None else None


def error_response(kind: ErrorKind, **extra):
    return jsonify(message=user_message(kind), error=kind.value, **extra), HTTP_STATUS[kind]
