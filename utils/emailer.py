import smtplib
from email.message import EmailMessage


def send_email(config, to_email: str, subject: str, body: str):
    """
    Plain-text mail over SMTP. Takes the config mapping instead of reading
    current_app so it can run on a notifier worker thread.
    Returns (sent, error).
    """
    host = config.get("SMTP_HOST")
    port = config.get("SMTP_PORT", 587)
    username = config.get("SMTP_USERNAME")
    password = config.get("SMTP_PASSWORD")
    from_email = config.get("SMTP_FROM_EMAIL") or username
    use_tls = config.get("SMTP_USE_TLS", True)
    timeout = config.get("SMTP_TIMEOUT_SECONDS", 10)

    if not host or not from_email:
        return False, "Email not configured"

    msg = EmailMessage()
    msg["From"] = from_email
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        with smtplib.SMTP(host, port, timeout=timeout) as server:
            if use_tls:
                server.starttls()
            if username and password:
                server.login(username, password)
            server.send_message(msg)
        return True, None
    except (smtplib.SMTPException, OSError) as exc:
        return False, str(exc)
