import hashlib
from dataclasses import dataclass
from typing import Optional

FINGERPRINT_HEADER = "X-Device-Fingerprint"


@dataclass(frozen=True)
class DeviceInfo:
    fingerprint: Optional[str]
    device_type: str
    operating_system: str
    browser: str


def _device_type(ua: str) -> str:
    if "ipad" in ua or "tablet" in ua:
        return "Tablet"
    if "mobile" in ua or "iphone" in ua or "android" in ua:
        return "Mobile"
    if not ua:
        return "Unknown"
    return "Desktop"


def _operating_system(ua: str) -> str:
    # order matters: iOS/Android user agents also mention "mac os"/"linux"
    if "iphone" in ua or "ipad" in ua:
        return "iOS"
    if "android" in ua:
        return "Android"
    if "windows" in ua:
        return "Windows"
    if "mac os" in ua or "macintosh" in ua:
        return "macOS"
    if "linux" in ua:
        return "Linux"
    return "Unknown"


def _browser(ua: str) -> str:
    if "edg/" in ua:
        return "Edge"
    if "opr/" in ua or "opera" in ua:
        return "Opera"
    if "firefox/" in ua:
        return "Firefox"
    if "chrome/" in ua or "crios/" in ua:
        return "Chrome"
    if "safari/" in ua:
        return "Safari"
    return "Unknown"


def fingerprint_from_headers(user_agent: str, accept_language: str = "") -> Optional[str]:
    if not user_agent:
        return None
    raw = f"{user_agent}|{accept_language}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:64]


def describe_device(user_agent: str, fingerprint: Optional[str] = None,
                    accept_language: str = "") -> DeviceInfo:
    """
    Coarse device classification from the User-Agent. A client supplied
    fingerprint wins over the header-derived one.
    """
    ua = (user_agent or "").lower()
    fingerprint = (fingerprint or "").strip()[:128] or fingerprint_from_headers(user_agent, accept_language)
    return DeviceInfo(
        fingerprint=fingerprint,
        device_type=_device_type(ua),
        operating_system=_operating_system(ua),
        browser=_browser(ua),
    )
