"""Locale-specific yt-dlp options."""

import re
from typing import List, Optional

_COUNTRY_CODE = re.compile(r"^[A-Z]{2}$")


def locale_flags(locale: Optional[str]) -> List[str]:
    """Build yt-dlp flags that request content for a locale.

    "es-ES" -> Accept-Language header plus geo bypass for ES.
    "fr" -> Accept-Language header only. A country segment that is not
    exactly two letters ("en-USA") is ignored.

    Args:
        locale: Locale tag such as "en-US", "ja" or None

    Returns:
        Ordered list of command line tokens (empty when no locale)
    """
    locale = (locale or "").strip()
    if not locale:
        return []

    flags = ["--add-header", f"Accept-Language:{locale}"]

    if "-" in locale:
        country_code = locale.rsplit("-", 1)[-1].upper()
        if _COUNTRY_CODE.match(country_code):
            flags.extend(["--geo-bypass-country", country_code])

    return flags
