"""Local blob storage for source images and item thumbnails."""

import logging
import shutil
from pathlib import Path
from typing import Optional
from urllib.parse import urlsplit

import httpx

logger = logging.getLogger(__name__)


class MediaStore:
    """Downloads remote images and keeps them under a media directory.

    Layout: <root>/sources/<source_id>/<file> and <root>/items/<item_id>/<file>.
    Blobs belong to their record and are deleted with it.
    """

    def __init__(self, root: Path, timeout: float = 30.0, client: Optional[httpx.Client] = None):
        """Initialize the store.

        Args:
            root: Media root directory
            timeout: HTTP timeout in seconds for image downloads
            client: Optional preconfigured httpx client (tests inject a mock transport)
        """
        self.root = Path(root)
        self.timeout = timeout
        self.user_agent = "vidkeep/1.0"
        self._client = client

    @staticmethod
    def filename_for(url: str, fallback: str) -> str:
        """Derive a local file name from the URL path, or use fallback."""
        try:
            name = Path(urlsplit(url).path).name
        except ValueError:
            name = ""
        return name or fallback

    def _download(self, url: str, destination: Path) -> Path:
        destination.parent.mkdir(parents=True, exist_ok=True)

        if self._client is not None:
            response = self._client.get(url, follow_redirects=True)
        else:
            response = httpx.get(
                url,
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": self.user_agent},
            )
        response.raise_for_status()

        destination.write_bytes(response.content)
        logger.debug(f"Saved {len(response.content)} bytes to {destination}")
        return destination

    def attach_source_image(self, source_id: str, url: str) -> Path:
        """Download a source's image.

        Raises:
            httpx.HTTPError: If the download fails
        """
        filename = self.filename_for(url, f"image_{source_id}.jpg")
        return self._download(url, self.root / "sources" / source_id / filename)

    def attach_item_thumbnail(self, item_id: str, url: str) -> Path:
        """Download an item's thumbnail.

        Raises:
            httpx.HTTPError: If the download fails
        """
        filename = self.filename_for(url, f"thumbnail_{item_id}.jpg")
        return self._download(url, self.root / "items" / item_id / filename)

    def remove_source_media(self, source_id: str) -> None:
        self._remove_tree(self.root / "sources" / source_id)

    def remove_item_media(self, item_id: str) -> None:
        self._remove_tree(self.root / "items" / item_id)

    @staticmethod
    def _remove_tree(directory: Path) -> None:
        shutil.rmtree(directory, ignore_errors=True)
