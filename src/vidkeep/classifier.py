"""Classify YouTube URLs into a resource kind and stable reference."""

import re
from typing import Optional
from urllib.parse import urlsplit, parse_qsl

from .models import Classification, ResourceKind

SHORT_LINK_HOST = "youtu.be"

# Path shapes recognized on youtube.com hosts, checked in order
_CHANNEL_PATTERNS = [
    re.compile(r"^/channel/([a-zA-Z0-9_-]+)"),
    re.compile(r"^/c/([a-zA-Z0-9_-]+)"),
    re.compile(r"^/@([a-zA-Z0-9_.-]+)"),
    re.compile(r"^/user/([a-zA-Z0-9_-]+)"),
]
_SHORT_LINK_PATTERN = re.compile(r"^/([a-zA-Z0-9_-]+)")
_SHORTS_PATTERN = re.compile(r"^/shorts/([a-zA-Z0-9_-]+)")


def is_platform_host(host: Optional[str]) -> bool:
    """Check whether a hostname belongs to the youtube.com / youtu.be family."""
    if not host:
        return False
    host = host.lower().rstrip(".")
    for domain in ("youtube.com", SHORT_LINK_HOST):
        if host == domain or host.endswith("." + domain):
            return True
    return False


def _query_params(query: str) -> dict:
    # Last occurrence wins for repeated keys
    return dict(parse_qsl(query, keep_blank_values=True))


def classify(url: Optional[str]) -> Optional[Classification]:
    """Classify a URL as a channel, playlist or video.

    Surrounding whitespace is ignored and the host is matched
    case-insensitively. Paths and query values are matched as given.

    Args:
        url: Raw URL string (may be None or garbage)

    Returns:
        Classification with kind and reference, or None if the URL is not
        a recognized YouTube channel/playlist/video URL
    """
    if not isinstance(url, str):
        return None

    url = url.strip()
    if not url:
        return None

    try:
        parts = urlsplit(url)
        host = parts.hostname
    except ValueError:
        return None

    if not is_platform_host(host):
        return None

    host = host.lower()
    path = parts.path or ""

    for pattern in _CHANNEL_PATTERNS:
        match = pattern.match(path)
        if match:
            return Classification(ResourceKind.CHANNEL, match.group(1))

    if path == "/watch" and parts.query:
        params = _query_params(parts.query)
        # A playlist wins over the video it was opened from
        if params.get("list"):
            return Classification(ResourceKind.PLAYLIST, params["list"])
        if params.get("v"):
            return Classification(ResourceKind.VIDEO, params["v"])
        return None

    if host.endswith(SHORT_LINK_HOST):
        match = _SHORT_LINK_PATTERN.match(path)
        if match:
            return Classification(ResourceKind.VIDEO, match.group(1))
        return None

    match = _SHORTS_PATTERN.match(path)
    if match:
        return Classification(ResourceKind.VIDEO, match.group(1))

    if path == "/playlist" and parts.query:
        list_id = _query_params(parts.query).get("list")
        if list_id:
            return Classification(ResourceKind.PLAYLIST, list_id)

    return None
