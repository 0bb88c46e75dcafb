import json
from flask import request, has_request_context
from models import db
from models.security_event import SecurityEvent


def log_event(event_type: str, user_id=None, severity="INFO", description=None,
              metadata=None, ip=None, user_agent=None, session=None):
    """
    Adds a security_events row to the session. The caller owns the commit so
    the event lands together with the state change it describes.
    """
    if has_request_context():
        ip = ip or request.headers.get("X-Forwarded-For", request.remote_addr)
        user_agent = user_agent or request.headers.get("User-Agent", "")

    row = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        severity=severity,
        description=description[:500] if description else None,
        ip_address=ip,
        user_agent=user_agent[:255] if user_agent else None,
        metadata_json=json.dumps(metadata, default=str) if metadata else None,
    )
    (session or db.session).add(row)
    return row
