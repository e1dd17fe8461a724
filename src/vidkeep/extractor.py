"""Extraction pipeline driving yt-dlp as a subprocess.

Builds yt-dlp command lines for metadata, item listings and downloads,
runs them, and parses the newline-delimited JSON they print.
"""

import json
import logging
import shutil
import subprocess
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence
from urllib.parse import parse_qsl, urlsplit

from .classifier import classify
from .config import Config
from .locale_options import locale_flags
from .models import Classification, ItemRecord, Metadata, ResourceKind
from .observability import log as obs_log

logger = logging.getLogger(__name__)

WATCH_URL = "https://www.youtube.com/watch?v={}"
PLAYLIST_URL = "https://www.youtube.com/playlist?list={}"
FILENAME_TEMPLATE = "%(uploader)s - %(title)s [%(id)s].%(ext)s"

# Files yt-dlp writes next to the media file
SIDECAR_SUFFIXES = (".info.json", ".jpg", ".jpeg", ".webp", ".png", ".part", ".ytdl")


class ExtractionError(Exception):
    """Raised by callers when an extraction step produced no usable result."""


class Extractor(Protocol):
    """What the orchestrators need from the extraction layer.

    Every fetch method returns None when the invocation failed or printed
    nothing. An empty list from fetch_items means output arrived but held
    no usable records.
    """

    def classify(self, url: str) -> Optional[Classification]: ...

    def fetch_metadata(
        self, url: str, kind: Optional[ResourceKind] = None, locale: Optional[str] = None
    ) -> Optional[Metadata]: ...

    def fetch_items(
        self, url: str, locale: Optional[str] = None
    ) -> Optional[List[ItemRecord]]: ...

    def download_media(self, url: str) -> Optional[Path]: ...


def best_thumbnail(thumbnails: Any) -> Optional[str]:
    """Pick the thumbnail URL with the largest width x height.

    Missing dimensions count as 0; on ties the first candidate wins.

    Args:
        thumbnails: The record's "thumbnails" value (list of dicts)

    Returns:
        URL of the best candidate, or None if there are no candidates
    """
    if not isinstance(thumbnails, list):
        return None

    candidates = [thumb for thumb in thumbnails if isinstance(thumb, dict)]
    if not candidates:
        return None

    best = max(
        candidates,
        key=lambda thumb: (thumb.get("width") or 0) * (thumb.get("height") or 0),
    )
    return best.get("url")


def truncate(text: Optional[str], limit: int, omission: str = "...") -> Optional[str]:
    """Cut text to at most limit characters, ending with omission when cut."""
    if text is None or len(text) <= limit:
        return text
    return text[: max(limit - len(omission), 0)] + omission


def _first(data: Dict[str, Any], *keys: str) -> Any:
    """First value among keys that is neither None nor an empty string."""
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_lines(output: str):
    """Yield each non-blank line parsed as a JSON object, skipping bad lines."""
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse JSON line: {line[:100]}... Error: {e}")
            continue
        if not isinstance(data, dict):
            logger.warning(f"Skipping non-object JSON line: {line[:100]}")
            continue
        yield data


def parse_item_record(data: Dict[str, Any], description_limit: int = 500) -> Optional[ItemRecord]:
    """Convert one yt-dlp JSON record into an ItemRecord.

    Returns:
        ItemRecord, or None when the record has no identifier
    """
    video_id = data.get("id")
    if video_id is None or video_id == "":
        return None
    video_id = str(video_id)

    description = data.get("description")
    if description is not None and not isinstance(description, str):
        description = str(description)

    upload_date = data.get("upload_date")

    return ItemRecord(
        id=video_id,
        title=data.get("title"),
        url=data.get("url") or WATCH_URL.format(video_id),
        duration=_as_int(data.get("duration")),
        upload_date=str(upload_date) if upload_date else None,
        uploader=data.get("uploader"),
        view_count=_as_int(data.get("view_count")),
        description=truncate(description, description_limit),
        thumbnail=best_thumbnail(data.get("thumbnails")),
    )


def parse_items_output(output: str, description_limit: int = 500) -> List[ItemRecord]:
    """Parse newline-delimited yt-dlp JSON into item records, in output order.

    Malformed lines and records without an identifier are skipped.
    """
    records = []
    for data in _parse_lines(output):
        record = parse_item_record(data, description_limit)
        if record:
            records.append(record)
    return records


def parse_metadata_output(output: str, kind: ResourceKind) -> Optional[Metadata]:
    """Return metadata from the first record that yields a non-empty name.

    Playlists use playlist-level fields. Channels read the channel fields
    riding on the single flattened item requested for them.
    """
    for data in _parse_lines(output):
        if kind == ResourceKind.PLAYLIST:
            metadata = Metadata(
                name=_first(data, "title", "playlist_title", "playlist"),
                description=_first(data, "description", "playlist_description"),
                image=best_thumbnail(data.get("thumbnails")),
                uploader=_first(data, "uploader", "channel"),
                url=_first(data, "webpage_url", "url"),
            )
        else:
            metadata = Metadata(
                name=_first(data, "playlist_channel", "playlist_uploader", "channel", "uploader"),
                description=_first(data, "channel_description", "description"),
                image=best_thumbnail(data.get("thumbnails")) or data.get("avatar_url"),
                uploader=_first(
                    data, "playlist_uploader", "playlist_channel", "uploader", "channel"
                ),
                url=_first(data, "playlist_webpage_url", "webpage_url", "url"),
                subscriber_count=_as_int(
                    _first(data, "channel_follower_count", "subscriber_count")
                ),
            )

        if isinstance(metadata.name, str) and metadata.name.strip():
            return metadata

    return None


def playlist_id_from_url(url: str) -> Optional[str]:
    """Return the "list" query parameter of a URL, if it has a non-empty one."""
    try:
        query = urlsplit(url.strip()).query
    except ValueError:
        return None
    if not query:
        return None
    return dict(parse_qsl(query, keep_blank_values=True)).get("list") or None


class YtDlpExtractor:
    """Runs yt-dlp to list, describe and download YouTube content.

    All settings are explicit constructor arguments; nothing is read from
    global state at call time.
    """

    def __init__(
        self,
        binary: str = "yt-dlp",
        timeout: int = 1800,
        download_dir: Optional[Path] = None,
        max_height: int = 720,
        description_limit: int = 500,
        working_dir: Optional[Path] = None,
    ):
        """Initialize the extractor.

        Args:
            binary: yt-dlp executable name or path
            timeout: Seconds before an invocation is killed and treated as failed
            download_dir: Root for per-item download directories
            max_height: Maximum video height requested for downloads
            description_limit: Maximum stored description length
            working_dir: Working directory for the subprocess
        """
        self.binary = binary
        self.timeout = timeout
        self.download_dir = Path(download_dir) if download_dir else Path("downloads")
        self.max_height = max_height
        self.description_limit = description_limit
        self.working_dir = working_dir

    @classmethod
    def from_config(cls, config: Config) -> "YtDlpExtractor":
        return cls(
            binary=config.extractor_binary,
            timeout=config.extractor_timeout,
            download_dir=config.downloads_dir,
            max_height=config.max_height,
            description_limit=config.description_limit,
            working_dir=config.data_dir,
        )

    def classify(self, url: str) -> Optional[Classification]:
        return classify(url)

    # -- command construction ---------------------------------------------

    def build_items_command(self, url: str, locale: Optional[str] = None) -> List[str]:
        """Build the listing command for a channel or playlist URL.

        URLs carrying a playlist parameter are rewritten to the canonical
        playlist URL and listed with full item detail; everything else gets
        a flat, non-recursive listing.
        """
        playlist_id = playlist_id_from_url(url)

        if playlist_id:
            cmd = [
                self.binary,
                "--dump-json",
                "--no-download",
                "--ignore-errors",
                PLAYLIST_URL.format(playlist_id),
            ]
        else:
            cmd = [
                self.binary,
                "--dump-json",
                "--flat-playlist",
                "--no-download",
                "--ignore-errors",
                url.strip(),
            ]

        return cmd + locale_flags(locale)

    def build_metadata_command(
        self, url: str, kind: ResourceKind, locale: Optional[str] = None
    ) -> List[str]:
        """Build the metadata command.

        Playlists ask for zero items (playlist record only). Channels ask
        for one flattened item whose record carries the channel fields.
        """
        if kind == ResourceKind.PLAYLIST:
            cmd = [
                self.binary,
                "--dump-json",
                "--playlist-items",
                "0",
                "--no-download",
                "--ignore-errors",
                url.strip(),
            ]
        else:
            cmd = [
                self.binary,
                "--dump-json",
                "--flat-playlist",
                "--playlist-items",
                "1",
                "--no-download",
                "--ignore-errors",
                url.strip(),
            ]

        return cmd + locale_flags(locale)

    def build_download_command(self, url: str, destination: Path) -> List[str]:
        return [
            self.binary,
            "--output",
            str(destination / FILENAME_TEMPLATE),
            "--format",
            f"best[height<={self.max_height}]",
            "--write-info-json",
            "--write-thumbnail",
            url.strip(),
        ]

    # -- execution ---------------------------------------------------------

    def run(self, cmd: Sequence[str]) -> Optional[str]:
        """Run a yt-dlp command and return its combined stdout/stderr.

        Returns:
            Output text on exit status 0; None if yt-dlp is missing, times
            out, cannot be started or exits nonzero
        """
        executable = shutil.which(cmd[0])
        if not executable:
            logger.error(f"{cmd[0]} is not installed or not in PATH")
            obs_log("extractor.failed", binary=cmd[0], reason="missing")
            return None

        logger.info(f"Executing: {' '.join(cmd)}")
        start_time = time.time()

        try:
            result = subprocess.run(
                [executable, *cmd[1:]],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=self.timeout,
                cwd=self.working_dir,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"Command timed out after {self.timeout}s: {' '.join(cmd)}")
            obs_log("extractor.failed", reason="timeout", timeout=self.timeout)
            return None
        except OSError as e:
            logger.error(f"Failed to start {cmd[0]}: {e}")
            obs_log("extractor.failed", reason="oserror", error=str(e))
            return None

        duration_ms = int((time.time() - start_time) * 1000)
        logger.debug(f"Command completed in {duration_ms}ms")

        # Undecodable bytes become U+FFFD so only the affected line fails to parse
        output = (result.stdout or b"").decode("utf-8", errors="replace")

        if result.returncode != 0:
            logger.error(
                f"Command failed with exit status {result.returncode}: {' '.join(cmd)}"
            )
            logger.error(f"Output: {output[-2000:]}")
            obs_log(
                "extractor.failed",
                reason="exit_status",
                exit_status=result.returncode,
                duration_ms=duration_ms,
            )
            return None

        return output

    # -- operations --------------------------------------------------------

    def fetch_metadata(
        self, url: str, kind: Optional[ResourceKind] = None, locale: Optional[str] = None
    ) -> Optional[Metadata]:
        """Fetch channel or playlist metadata (name, description, image).

        Args:
            url: Channel or playlist URL
            kind: Source kind; classified from the URL when omitted
            locale: Optional locale, None keeps the creator's language

        Returns:
            Metadata, or None if the URL is unsupported or nothing usable came back
        """
        if not url:
            return None

        if kind is None:
            info = classify(url)
            if info is None:
                return None
            kind = info.kind

        if kind not in (ResourceKind.CHANNEL, ResourceKind.PLAYLIST):
            logger.warning(f"Metadata is only available for channels and playlists: {url}")
            return None

        output = self.run(self.build_metadata_command(url, kind, locale=locale))
        if not output or not output.strip():
            return None

        return parse_metadata_output(output, kind)

    def fetch_items(
        self, url: str, locale: Optional[str] = None
    ) -> Optional[List[ItemRecord]]:
        """List the items of a channel or playlist.

        The list is materialized from one subprocess run; getting it again
        means running yt-dlp again.

        Returns:
            Item records in output order, or None if the invocation failed
            or printed nothing
        """
        if not url:
            return None

        output = self.run(self.build_items_command(url, locale=locale))
        if output is None:
            return None
        if not output.strip():
            logger.error(f"yt-dlp produced no output for {url}")
            obs_log("extractor.failed", reason="empty_output", url=url)
            return None

        return parse_items_output(output, self.description_limit)

    def download_media(self, url: str) -> Optional[Path]:
        """Download one video into its own directory under download_dir.

        Returns:
            Path of the media file, or None on any failure
        """
        info = classify(url)
        if not info or info.kind != ResourceKind.VIDEO:
            logger.error(f"Not a video URL, refusing to download: {url}")
            return None

        video_id = info.reference
        destination = self.download_dir / video_id
        destination.mkdir(parents=True, exist_ok=True)

        output = self.run(self.build_download_command(url, destination))
        if output is None:
            logger.error(f"yt-dlp command failed for URL: {url}")
            return None

        media_file = self.locate_media_file(destination, video_id)
        if media_file is None:
            logger.error(f"Downloaded file not found for video ID: {video_id}")
        return media_file

    @staticmethod
    def locate_media_file(directory: Path, video_id: str) -> Optional[Path]:
        """Find the primary media file for a video among yt-dlp's output files.

        Sidecar files (info json, thumbnails, partial downloads) are ignored.
        """
        if not directory.is_dir():
            return None

        marker = f"[{video_id}]."
        for path in sorted(directory.iterdir()):
            name = path.name
            if marker not in name or not path.is_file():
                continue
            if name.lower().endswith(SIDECAR_SUFFIXES):
                continue
            return path
        return None
