"""URL and token normalization for gateway endpoints.

All functions are pure and never raise; malformed input is passed through on a
best-effort basis.
"""

import re
from urllib.parse import urlparse

_BEARER_PREFIX_RE = re.compile(r"^\s*Bearer\s+", re.IGNORECASE)
_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1", "[::1]"}


def _strip_trailing_slash(url: str) -> str:
    return url.rstrip("/")


def clean_token(token: str | None) -> str:
    """Remove a leading ``Bearer`` prefix (any casing) and surrounding whitespace."""
    if not token:
        return ""
    return _BEARER_PREFIX_RE.sub("", token).strip()


def normalize_http_url(url: str) -> str:
    """Return an http(s) base URL without trailing slash.

    ws:// maps to http://, wss:// to https://, and a bare host gets https://.
    """
    normalized = _strip_trailing_slash(url.strip())
    if normalized.startswith("wss://"):
        return "https://" + normalized[len("wss://") :]
    if normalized.startswith("ws://"):
        return "http://" + normalized[len("ws://") :]
    if normalized.startswith(("http://", "https://")):
        return normalized
    return f"https://{normalized}"


def convert_http_to_ws(url: str) -> str:
    stripped = _strip_trailing_slash(url.strip())
    if stripped.startswith(("ws://", "wss://")):
        return stripped
    if stripped.startswith("http://"):
        return "ws://" + stripped[len("http://") :]
    if stripped.startswith("https://"):
        return "wss://" + stripped[len("https://") :]
    return f"ws://{stripped}"


def convert_ws_to_http(url: str) -> str:
    stripped = _strip_trailing_slash(url.strip())
    if stripped.startswith("ws://"):
        return "http://" + stripped[len("ws://") :]
    if stripped.startswith("wss://"):
        return "https://" + stripped[len("wss://") :]
    if stripped.startswith(("http://", "https://")):
        return stripped
    return f"https://{stripped}"


def is_local_gateway_url(url: str) -> bool:
    """True when the gateway resolves to a loopback host name."""
    try:
        hostname = urlparse(convert_ws_to_http(url)).hostname
    except ValueError:
        return False
    if hostname is None:
        return False
    return hostname in _LOCAL_HOSTS or f"[{hostname}]" in _LOCAL_HOSTS
