"""Data models for vidkeep."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any


class ResourceKind(str, Enum):
    """What a classified URL points at."""

    CHANNEL = "channel"
    PLAYLIST = "playlist"
    VIDEO = "video"


# Kinds a Source may subscribe to
SOURCE_KINDS = (ResourceKind.CHANNEL, ResourceKind.PLAYLIST)


class SyncStatus(str, Enum):
    """Lifecycle of a Source's item-discovery run."""

    DONE = "done"
    ENQUEUED = "enqueued"
    SYNCING = "syncing"
    FAILED = "failed"


class DownloadStatus(str, Enum):
    """Lifecycle of an Item's local media file."""

    PENDING = "pending"
    QUEUED = "queued"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"


class LifecycleEvent(str, Enum):
    """Lifecycle events published to the notification sink."""

    CREATED = "created"
    UPDATED = "updated"
    REMOVED = "removed"


@dataclass(frozen=True)
class Classification:
    """Result of classifying a URL: what it is and its stable external id."""

    kind: ResourceKind
    reference: str


@dataclass
class ItemRecord:
    """One item parsed from the extraction utility's listing output."""

    id: str
    title: Optional[str] = None
    url: Optional[str] = None
    duration: Optional[int] = None
    upload_date: Optional[str] = None  # YYYYMMDD as emitted by yt-dlp
    uploader: Optional[str] = None
    view_count: Optional[int] = None
    description: Optional[str] = None
    thumbnail: Optional[str] = None


@dataclass
class Metadata:
    """Channel or playlist level metadata."""

    name: str
    description: Optional[str] = None
    image: Optional[str] = None
    uploader: Optional[str] = None
    url: Optional[str] = None
    subscriber_count: Optional[int] = None  # channels only


@dataclass
class Source:
    """A subscribed channel or playlist.

    Matches the sources table schema.
    """

    url: str
    reference: str
    kind: ResourceKind
    name: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    image_path: Optional[str] = None
    active: bool = True
    sync_status: SyncStatus = SyncStatus.DONE
    sync_token: int = 0
    last_error: Optional[str] = None
    last_checked_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dict (enum values as strings) for events and output."""
        return {
            "id": self.id,
            "url": self.url,
            "reference": self.reference,
            "kind": self.kind.value,
            "name": self.name,
            "description": self.description,
            "image_url": self.image_url,
            "image_path": self.image_path,
            "active": self.active,
            "sync_status": self.sync_status.value,
            "last_error": self.last_error,
            "last_checked_at": self.last_checked_at,
        }


@dataclass
class Item:
    """A video belonging to exactly one Source.

    Matches the items table schema.
    """

    source_id: str
    reference: str
    title: Optional[str] = None
    description: Optional[str] = None
    duration: Optional[int] = None
    url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    thumbnail_path: Optional[str] = None
    media_path: Optional[str] = None
    uploader: Optional[str] = None
    view_count: Optional[int] = None
    uploaded_at: Optional[datetime] = None
    download_status: DownloadStatus = DownloadStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dict (enum values as strings) for events and output."""
        return {
            "id": self.id,
            "source_id": self.source_id,
            "reference": self.reference,
            "title": self.title,
            "description": self.description,
            "duration": self.duration,
            "url": self.url,
            "thumbnail_url": self.thumbnail_url,
            "thumbnail_path": self.thumbnail_path,
            "media_path": self.media_path,
            "uploader": self.uploader,
            "view_count": self.view_count,
            "uploaded_at": self.uploaded_at,
            "download_status": self.download_status.value,
        }
