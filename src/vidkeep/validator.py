"""Source validation before anything is persisted."""

from typing import Optional, Tuple

from .classifier import classify
from .models import Classification, SOURCE_KINDS


class SourceValidator:
    """Validates source URLs before adding them to the catalog.

    Validation is purely structural (no network requests): the URL must
    classify as a YouTube channel or playlist.
    """

    def validate_source(
        self, url: Optional[str]
    ) -> Tuple[bool, Optional[str], Optional[Classification]]:
        """Validate a source URL.

        Args:
            url: The URL the user entered

        Returns:
            Tuple of (is_valid, error_message, classification)
        """
        if not url or not url.strip():
            return False, "URL is required", None

        info = classify(url)
        if info is None:
            return False, f"Not a recognized YouTube channel or playlist URL: {url.strip()}", None

        if info.kind not in SOURCE_KINDS:
            return (
                False,
                f"URL points at a single {info.kind.value}, not a channel or playlist",
                info,
            )

        return True, None, info
