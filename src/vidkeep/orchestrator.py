"""Sync and download orchestration, separated from entry points for testability."""

import logging
import shutil
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import httpx
from rich.console import Console
from rich.markup import escape

from .extractor import WATCH_URL, ExtractionError, Extractor
from .jobs import InlineJobQueue, JobQueue
from .media import MediaStore
from .models import (
    DownloadStatus,
    Item,
    ItemRecord,
    LifecycleEvent,
    Source,
    SyncStatus,
)
from .notifier import ITEMS_TOPIC, SOURCES_TOPIC, Notifier
from .observability import log as obs_log
from .storage import Storage
from .validator import SourceValidator

logger = logging.getLogger(__name__)


class ItemFetchOrchestrator:
    """Reconciles discovered items and drives per-item downloads.

    Download state machine: pending -> queued -> downloading -> completed | failed.
    failed and completed items can be queued again by a new fetch request.
    """

    def __init__(
        self,
        storage: Storage,
        extractor: Extractor,
        jobs: JobQueue | InlineJobQueue,
        notifier: Notifier,
        media: Optional[MediaStore] = None,
    ):
        """Initialize orchestrator with dependencies.

        Args:
            storage: Catalog storage
            extractor: Extraction pipeline (real yt-dlp or a test fake)
            jobs: Queue that runs thumbnail and download jobs
            notifier: Sink for item lifecycle events
            media: Optional blob store for thumbnails; thumbnails are skipped without it
        """
        self.storage = storage
        self.extractor = extractor
        self.jobs = jobs
        self.notifier = notifier
        self.media = media

    def _publish(self, kind: LifecycleEvent, item_id: str) -> None:
        item = self.storage.get_item(item_id)
        if item is not None:
            self.notifier.publish(ITEMS_TOPIC, kind, item.to_dict())

    def reconcile(self, source_id: str, record: ItemRecord) -> Tuple[str, bool]:
        """Upsert one discovered item and announce it.

        New items also get a thumbnail prefetch job.

        Returns:
            Tuple of (item_id, is_new)
        """
        item_id, is_new = self.storage.upsert_item(source_id, record)

        if is_new:
            self._publish(LifecycleEvent.CREATED, item_id)
            self.request_thumbnail(item_id)
        else:
            self._publish(LifecycleEvent.UPDATED, item_id)

        return item_id, is_new

    def request_thumbnail(self, item_id: str) -> None:
        self.jobs.enqueue(self.run_thumbnail, item_id, name="fetch_item_thumbnail")

    def run_thumbnail(self, item_id: str) -> Optional[Path]:
        """Download and attach an item's thumbnail unless it is already attached."""
        item = self.storage.get_item(item_id)
        if item is None:
            logger.debug(f"Item {item_id} is gone, skipping thumbnail")
            return None

        if item.thumbnail_path and Path(item.thumbnail_path).exists():
            return Path(item.thumbnail_path)

        if not item.thumbnail_url or self.media is None:
            return None

        try:
            path = self.media.attach_item_thumbnail(item.id, item.thumbnail_url)
        except (httpx.HTTPError, OSError) as e:
            logger.warning(f"Failed to fetch thumbnail for item {item.reference}: {e}")
            return None

        self.storage.update_item(item.id, {"thumbnail_path": str(path)})
        self._publish(LifecycleEvent.UPDATED, item.id)
        return path

    def request_fetch(self, item_id: str) -> bool:
        """Queue a download for an item.

        Returns:
            True if a download was queued, False if one is already queued or running

        Raises:
            ValueError: If the item does not exist
        """
        item = self.storage.get_item(item_id)
        if item is None:
            raise ValueError(f"Item not found: {item_id}")

        queued = self.storage.set_download_status(
            item_id,
            DownloadStatus.QUEUED,
            only_from=(
                DownloadStatus.PENDING,
                DownloadStatus.COMPLETED,
                DownloadStatus.FAILED,
            ),
        )
        if not queued:
            logger.info(f"Download already {item.download_status.value} for item {item.reference}")
            return False

        self._publish(LifecycleEvent.UPDATED, item_id)
        self.jobs.enqueue(self.run_download, item_id, name="fetch_item")
        return True

    def run_download(self, item_id: str) -> Optional[Path]:
        """Download an item's media file and record the outcome.

        Returns:
            Path of the media file, or None if the run was skipped

        Raises:
            Exception: Any download or persistence error, after the item is marked failed
        """
        item = self.storage.get_item(item_id)
        if item is None:
            logger.debug(f"Item {item_id} is gone, skipping download")
            return None

        started = self.storage.set_download_status(
            item_id, DownloadStatus.DOWNLOADING, only_from=(DownloadStatus.QUEUED,)
        )
        if not started:
            logger.info(f"Item {item.reference} is not queued, skipping download")
            return None

        self._publish(LifecycleEvent.UPDATED, item_id)
        obs_log("download.start", item_id=item_id, reference=item.reference)
        start_time = time.time()

        try:
            path = self.extractor.download_media(item.url or WATCH_URL.format(item.reference))
            if path is None:
                raise ExtractionError(f"Download failed for {item.reference}")
            self.storage.update_item(item_id, {"media_path": str(path)})
        except Exception as e:
            self.storage.set_download_status(item_id, DownloadStatus.FAILED)
            self._publish(LifecycleEvent.UPDATED, item_id)
            obs_log(
                "download.error",
                item_id=item_id,
                reference=item.reference,
                error=str(e),
                duration_ms=int((time.time() - start_time) * 1000),
            )
            logger.error(f"Failed to download item {item.reference}: {e}")
            raise

        self.storage.set_download_status(item_id, DownloadStatus.COMPLETED)
        self._publish(LifecycleEvent.UPDATED, item_id)
        obs_log(
            "download.complete",
            item_id=item_id,
            reference=item.reference,
            path=str(path),
            duration_ms=int((time.time() - start_time) * 1000),
        )
        return path

    def release_download(self, item: Item) -> None:
        """Delete a removed item's downloaded video unless another item still uses it.

        The whole per-video directory goes when it is the one download_media
        created, so subtitle and info sidecars leave with the video.
        """
        if not item.media_path:
            return
        if self.storage.count_items_with_media(item.media_path) > 0:
            logger.debug(f"Keeping shared download {item.media_path}")
            return

        media_file = Path(item.media_path)
        if media_file.parent.name == item.reference:
            shutil.rmtree(media_file.parent, ignore_errors=True)
        else:
            media_file.unlink(missing_ok=True)
        obs_log("item.download_removed", item_id=item.id, path=item.media_path)

    def remove_item(self, item_id: str) -> bool:
        """Delete an item with its attached thumbnail and downloaded video.

        Returns:
            True if the item existed
        """
        item = self.storage.get_item(item_id)
        if item is None:
            return False

        removed = self.storage.remove_item(item_id)
        if removed:
            if self.media is not None:
                self.media.remove_item_media(item_id)
            self.release_download(item)
            self.notifier.publish(ITEMS_TOPIC, LifecycleEvent.REMOVED, item.to_dict())
        return removed


class SourceSyncOrchestrator:
    """Creates sources and keeps their item lists in sync.

    Sync state machine: enqueued -> syncing -> done | failed. done and failed
    go back to enqueued on the next request. Each request takes a new sync
    token, so a superseded run never starts and never overwrites the status
    of the run that replaced it.
    """

    def __init__(
        self,
        storage: Storage,
        extractor: Extractor,
        jobs: JobQueue | InlineJobQueue,
        notifier: Notifier,
        items: ItemFetchOrchestrator,
        media: Optional[MediaStore] = None,
        locale: Optional[str] = None,
        console: Optional[Console] = None,
    ):
        """Initialize orchestrator with dependencies.

        Args:
            storage: Catalog storage
            extractor: Extraction pipeline (real yt-dlp or a test fake)
            jobs: Queue that runs metadata and sync jobs
            notifier: Sink for source lifecycle events
            items: Item orchestrator used to reconcile discovered items
            media: Optional blob store for source images
            locale: Optional locale passed to every extraction request
            console: Optional Rich console for progress output
        """
        self.storage = storage
        self.extractor = extractor
        self.jobs = jobs
        self.notifier = notifier
        self.items = items
        self.media = media
        self.locale = locale
        self.console = console or Console(quiet=True)
        self.validator = SourceValidator()

    def _publish(self, kind: LifecycleEvent, source_id: str) -> None:
        source = self.storage.get_source(source_id)
        if source is not None:
            self.notifier.publish(SOURCES_TOPIC, kind, source.to_dict())

    def create_source(
        self,
        url: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        active: bool = True,
        sync: bool = True,
    ) -> Tuple[Source, bool]:
        """Classify and persist a source, then queue its metadata and item sync.

        Adding a channel or playlist that is already subscribed returns the
        existing source and queues nothing.

        Args:
            url: Channel or playlist URL
            name: Optional display name (kept over fetched metadata)
            description: Optional description (kept over fetched metadata)
            active: Whether scheduled syncs include this source
            sync: Queue metadata and item discovery right away

        Returns:
            Tuple of (source, is_new)

        Raises:
            ValueError: If the URL is not a YouTube channel or playlist
        """
        is_valid, error, info = self.validator.validate_source(url)
        if not is_valid:
            raise ValueError(error)

        source = Source(
            url=url.strip(),
            reference=info.reference,
            kind=info.kind,
            name=name or None,
            description=description or None,
            active=active,
        )
        source_id, is_new = self.storage.add_source(source)

        if not is_new:
            logger.info(f"Source {info.kind.value}:{info.reference} already exists")
            return self.storage.get_source(source_id), False

        logger.info(f"Created {info.kind.value} source {info.reference}")
        self._publish(LifecycleEvent.CREATED, source_id)

        if sync:
            self.request_metadata(source_id)
            self.request_sync(source_id)

        return self.storage.get_source(source_id), True

    def request_metadata(self, source_id: str) -> None:
        self.jobs.enqueue(self.run_metadata, source_id, name="fetch_source_metadata")

    def request_sync(self, source_id: str) -> int:
        """Move a source to enqueued and queue an item-discovery run.

        Returns:
            The sync token carried by the queued run

        Raises:
            ValueError: If the source does not exist
        """
        token = self.storage.begin_sync(source_id)
        if token is None:
            raise ValueError(f"Source not found: {source_id}")

        self._publish(LifecycleEvent.UPDATED, source_id)
        self.jobs.enqueue(self.run_sync, source_id, token, name="fetch_source_items")
        return token

    def request_scheduled_syncs(self) -> int:
        """Queue a sync for every active source that isn't already syncing.

        Returns:
            Number of syncs queued
        """
        queued = 0
        for source in self.storage.get_active_sources():
            if source.sync_status in (SyncStatus.ENQUEUED, SyncStatus.SYNCING):
                logger.debug(f"Sync already {source.sync_status.value} for {source.reference}")
                continue
            self.request_sync(source.id)
            queued += 1
        logger.info(f"Scheduled sync queued for {queued} source(s)")
        return queued

    def run_sync(self, source_id: str, token: int) -> Dict[str, Any]:
        """Discover a source's items and reconcile them into the catalog.

        Items upserted before a failure stay persisted; the run is safe to
        repeat because every upsert is keyed by (source_id, reference).

        Returns:
            Dict with stats: items_fetched, items_new, items_updated, superseded

        Raises:
            Exception: Any extraction or persistence error, after the source is marked failed
        """
        stats = {"items_fetched": 0, "items_new": 0, "items_updated": 0, "superseded": False}

        if not self.storage.start_sync(source_id, token):
            logger.info(f"Sync {token} for source {source_id} was superseded, skipping")
            obs_log("sync.superseded", source_id=source_id, token=token)
            stats["superseded"] = True
            return stats

        source = self.storage.get_source(source_id)
        if source is None:
            logger.debug(f"Source {source_id} is gone, skipping sync")
            return stats

        self._publish(LifecycleEvent.UPDATED, source_id)
        obs_log("sync.start", source_id=source_id, url=source.url, token=token)
        start_time = time.time()

        try:
            records = self.extractor.fetch_items(source.url, locale=self.locale)
            if records is None:
                raise ExtractionError(f"Item listing failed for {source.url}")

            stats["items_fetched"] = len(records)
            self.console.print(
                f"  📰 Fetched {len(records)} items from {source.name or source.url}"
            )

            for record in records:
                _, is_new = self.items.reconcile(source_id, record)
                if is_new:
                    stats["items_new"] += 1
                else:
                    stats["items_updated"] += 1

        except Exception as e:
            self.storage.finish_sync(source_id, token, SyncStatus.FAILED, str(e))
            self._publish(LifecycleEvent.UPDATED, source_id)
            obs_log(
                "sync.error",
                source_id=source_id,
                url=source.url,
                error=str(e),
                items_new=stats["items_new"],
                items_updated=stats["items_updated"],
                duration_ms=int((time.time() - start_time) * 1000),
            )
            logger.error(f"Sync failed for {source.url}: {e}")
            self.console.print(f"  [red]Sync failed for {source.url}: {escape(str(e))}[/red]")
            raise

        if not self.storage.finish_sync(source_id, token, SyncStatus.DONE):
            logger.info(f"Sync {token} for source {source_id} finished after being superseded")
            stats["superseded"] = True
        else:
            self._publish(LifecycleEvent.UPDATED, source_id)

        obs_log(
            "sync.complete",
            source_id=source_id,
            url=source.url,
            duration_ms=int((time.time() - start_time) * 1000),
            **{k: v for k, v in stats.items() if k != "superseded"},
        )
        self.console.print(
            f"  🆕 {stats['items_new']} new, 🔄 {stats['items_updated']} updated"
        )
        return stats

    def run_metadata(self, source_id: str) -> bool:
        """Fill in a source's display name, description and image.

        Values the user set are kept. Failures are logged and leave
        sync_status alone.

        Returns:
            True if metadata was applied
        """
        source = self.storage.get_source(source_id)
        if source is None:
            logger.debug(f"Source {source_id} is gone, skipping metadata")
            return False

        metadata = self.extractor.fetch_metadata(source.url, source.kind, locale=self.locale)
        if metadata is None:
            logger.warning(f"No metadata found for {source.url}")
            obs_log("metadata.error", source_id=source_id, url=source.url)
            return False

        updates: Dict[str, Any] = {}
        if not source.name:
            updates["name"] = metadata.name
        if not source.description and metadata.description:
            updates["description"] = metadata.description
        if metadata.image:
            updates["image_url"] = metadata.image

        if metadata.image and self.media is not None:
            try:
                path = self.media.attach_source_image(source_id, metadata.image)
                updates["image_path"] = str(path)
            except (httpx.HTTPError, OSError) as e:
                logger.warning(f"Failed to fetch image for {source.url}: {e}")

        if updates:
            self.storage.update_source(source_id, updates)
            self._publish(LifecycleEvent.UPDATED, source_id)

        obs_log("metadata.complete", source_id=source_id, name=metadata.name)
        return True

    def remove_source(self, source_id: str) -> bool:
        """Delete a source, its items and their attached media.

        Returns:
            True if the source existed
        """
        source = self.storage.get_source(source_id)
        if source is None:
            return False

        items = self.storage.get_items_for_source(source_id)
        removed = self.storage.remove_source(source_id)
        if not removed:
            return False

        for item in items:
            if self.media is not None:
                self.media.remove_item_media(item.id)
            self.items.release_download(item)
            self.notifier.publish(ITEMS_TOPIC, LifecycleEvent.REMOVED, item.to_dict())

        if self.media is not None:
            self.media.remove_source_media(source_id)
        self.notifier.publish(SOURCES_TOPIC, LifecycleEvent.REMOVED, source.to_dict())
        logger.info(f"Removed source {source.reference} and {len(items)} item(s)")
        return True
