"""Resolve a client descriptor from a user-agent string.

Resolution happens in two steps. ua-parser (through the user-agents
wrapper) pulls a raw browser/OS family and version out of the UA, then the
raw names are normalised onto the small vocabulary the rest of the engine
uses.
"""

import re

from user_agents import parse as parse_user_agent

from rtcsifter.storage.models import ClientInfo

# Fallbacks when nothing in the normalisation tables matches.
DEFAULT_BROWSER = "Chrome"
# Known quirk: an unrecognised OS (ChromeOS, BSD, empty UA...) reports as
# Windows. Kept so results line up with earlier reports.
DEFAULT_OS = "Windows"
UNKNOWN_VERSION = "unknown"

# Normalisation, checked in order against the lowercased raw browser name.
BROWSER_RULES = [
    ("Firefox", lambda name: "firefox" in name),
    ("Safari", lambda name: "safari" in name and "chrome" not in name),
    ("Edge", lambda name: "edge" in name or "edg" in name),
    ("Chrome", lambda name: "chrome" in name or "chromium" in name),
]

OS_RULES = [
    ("macOS", "mac"),
    ("Windows", "windows"),
    ("Linux", "linux"),
    ("iOS", "ios"),
    ("Android", "android"),
]

REACT_NATIVE_PATTERN = re.compile(r"\b(react[ \t_-]*native)(?:/(\S+))?", re.IGNORECASE)

# Case-sensitive on purpose: browser UAs spell these "iOS"/"Android", the
# mobile SDK UAs use the lowercase forms.
MOBILE_NETWORK_MARKERS = ("ios", "android", "JitsiMeetSDK")


def normalize_browser(raw_name: str) -> str:
    name = raw_name.lower()
    for browser, rule in BROWSER_RULES:
        if rule(name):
            return browser
    return DEFAULT_BROWSER


def normalize_os(raw_name: str) -> str:
    name = raw_name.lower()
    for os_name, marker in OS_RULES:
        if marker in name:
            return os_name
    return DEFAULT_OS


def is_react_native(user_agent: str) -> bool:
    return REACT_NATIVE_PATTERN.search(user_agent) is not None


def detect_device_type(user_agent: str, parsed=None) -> str:
    if parsed is None:
        parsed = parse_user_agent(user_agent or "")
    if parsed.is_tablet:
        return "tablet"
    if parsed.is_mobile or is_react_native(user_agent or ""):
        return "mobile"
    return "desktop"


def resolve_client(user_agent: str) -> ClientInfo:
    """Build a ClientInfo from a UA string. Never fails, only guesses."""
    user_agent = user_agent or ""
    parsed = parse_user_agent(user_agent)

    return ClientInfo(
        platform="mobile" if is_react_native(user_agent) else "web",
        browser=normalize_browser(parsed.browser.family),
        browser_version=parsed.browser.version_string or UNKNOWN_VERSION,
        os=normalize_os(parsed.os.family),
        os_version=parsed.os.version_string or UNKNOWN_VERSION,
        device_type=detect_device_type(user_agent, parsed),
    )


def detect_network_type(user_agent: str) -> str:
    """Coarse guess: SDK and mobile-OS markers mean cellular, else WiFi."""
    if any(marker in (user_agent or "") for marker in MOBILE_NETWORK_MARKERS):
        return "Mobile"
    return "WiFi"
