from typing import NamedTuple


class ClientInfo(NamedTuple):
    device: str
    browser: str
    os: str


BOT_MARKERS = ("bot", "crawler", "spider", "headless", "curl", "wget", "python-requests", "httpx")


def _device(ua: str) -> str:
    if any(marker in ua for marker in BOT_MARKERS):
        return "bot"
    if "ipad" in ua or "tablet" in ua or ("android" in ua and "mobile" not in ua):
        return "tablet"
    if "mobile" in ua or "iphone" in ua or "ipod" in ua:
        return "mobile"
    return "desktop"


def _browser(ua: str) -> str:
    # Order matters: Edge and Opera also advertise Chrome, Chrome advertises Safari
    if "edg/" in ua or "edge/" in ua:
        return "Edge"
    if "opr/" in ua or "opera" in ua:
        return "Opera"
    if "firefox/" in ua or "fxios/" in ua:
        return "Firefox"
    if "chrome/" in ua or "crios/" in ua:
        return "Chrome"
    if "safari/" in ua:
        return "Safari"
    return "Other"


def _os(ua: str) -> str:
    if "iphone" in ua or "ipad" in ua or "ipod" in ua:
        return "iOS"
    if "android" in ua:
        return "Android"
    if "windows" in ua:
        return "Windows"
    if "mac os x" in ua or "macintosh" in ua:
        return "macOS"
    if "cros" in ua:
        return "ChromeOS"
    if "linux" in ua:
        return "Linux"
    return "Other"


def parse_user_agent(user_agent: str) -> ClientInfo:
    """Classify a User-Agent header into coarse device/browser/OS buckets"""
    ua = (user_agent or "").lower()
    if not ua:
        return ClientInfo(device="unknown", browser="Other", os="Other")
    return ClientInfo(device=_device(ua), browser=_browser(ua), os=_os(ua))
