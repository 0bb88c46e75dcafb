from concurrent.futures import ThreadPoolExecutor

import requests
import structlog

from utils.emailer import send_email

logger = structlog.get_logger(__name__)


class SecurityNotifier:
    """
    Outbound delivery of OTP codes and security alerts (email / SMS).

    Every send runs on a small thread pool so a slow SMTP server or SMS
    gateway never holds up a login. Delivery failures are logged and
    otherwise ignored.
    """

    def __init__(self, config, executor=None):
        self.config = dict(config)
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.config.get("NOTIFIER_MAX_WORKERS", 2),
            thread_name_prefix="notifier",
        )

    def send_otp(self, method: str, email: str, phone_number, code: str, expires_at):
        subject = "Your verification code"
        body = (
            f"Your verification code is {code}. "
            f"It expires at {expires_at:%H:%M} UTC. Never share this code."
        )
        if method == "sms":
            return self._submit("otp_sms", self._send_sms, phone_number, body)
        return self._submit("otp_email", send_email, self.config, email, subject, body)

    def send_security_alert(self, email: str, title: str, message: str, severity: str = "Medium",
                            details=None):
        body = f"{message}\n\nSeverity: {severity}\n"
        if details:
            body += "\n".join(f"{k}: {v}" for k, v in details.items())
        return self._submit("security_alert", send_email, self.config, email, title, body)

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)

    def _submit(self, kind, fn, *args):
        try:
            future = self._executor.submit(fn, *args)
        except RuntimeError as exc:  # executor already shut down
            logger.warning("notification_not_queued", kind=kind, error=str(exc))
            return None
        future.add_done_callback(lambda f: self._log_result(kind, f))
        return future

    @staticmethod
    def _log_result(kind, future):
        exc = future.exception()
        if exc is not None:
            logger.error("notification_failed", kind=kind, error=str(exc))
            return
        result = future.result()
        if isinstance(result, tuple) and not result[0]:
            logger.warning("notification_not_sent", kind=kind, error=result[1])

    def _send_sms(self, phone_number, body):
        url = self.config.get("SMS_GATEWAY_URL")
        if not url or not phone_number:
            return False, "SMS not configured"

        headers = {}
        token = self.config.get("SMS_GATEWAY_TOKEN")
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            resp = requests.post(
                url,
                json={"to": phone_number, "message": body},
                headers=headers,
                timeout=self.config.get("SMS_GATEWAY_TIMEOUT_SECONDS", 5),
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            return False, str(exc)
        return True, None
