"""Repository pattern storage layer for the vidkeep catalog."""

import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Dict, Any, Optional, Tuple

from .database import get_db_connection
from .models import (
    DownloadStatus,
    Item,
    ItemRecord,
    ResourceKind,
    Source,
    SyncStatus,
    SOURCE_KINDS,
)

SOURCE_COLUMNS = """id, url, reference, kind, name, description, image_url, image_path,
    active, sync_status, sync_token, last_error, last_checked_at, created_at, updated_at"""

ITEM_COLUMNS = """id, source_id, reference, title, description, duration, url,
    thumbnail_url, thumbnail_path, media_path, uploader, view_count, uploaded_at,
    download_status, created_at, updated_at"""

# Fields a caller may change through update_source / update_item
SOURCE_UPDATABLE = ("url", "name", "description", "image_url", "image_path", "active")
ITEM_UPDATABLE = ("title", "description", "thumbnail_path", "media_path")


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def parse_upload_date(date_str: Optional[str]) -> Optional[datetime]:
    """Parse YouTube's upload date format (YYYYMMDD) into an aware UTC datetime."""
    if not date_str:
        return None
    try:
        return datetime.strptime(str(date_str), "%Y%m%d").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Storage:
    """Repository for all catalog operations.

    Implements the repository pattern - all SQL stays in this class.
    One connection is shared by the worker threads; every operation runs
    under a lock so transactions from different jobs never interleave.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize storage with database connection.

        Args:
            db_path: Optional custom database path for testing.
                     Defaults to $XDG_DATA_HOME/vidkeep/vidkeep.db
        """
        self.db_path = db_path
        self._conn = None
        self._lock = threading.RLock()
        # Fail fast if the database is missing
        test_conn = get_db_connection(self.db_path)
        test_conn.close()

    @property
    def conn(self) -> sqlite3.Connection:
        """Get or create database connection with lazy initialization."""
        if self._conn is None:
            self._conn = get_db_connection(self.db_path)
        return self._conn

    def close(self) -> None:
        """Close the database connection if open."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # -- row mapping -------------------------------------------------------

    @staticmethod
    def _row_to_source(row: sqlite3.Row) -> Source:
        return Source(
            id=row["id"],
            url=row["url"],
            reference=row["reference"],
            kind=ResourceKind(row["kind"]),
            name=row["name"],
            description=row["description"],
            image_url=row["image_url"],
            image_path=row["image_path"],
            active=bool(row["active"]),
            sync_status=SyncStatus(row["sync_status"]),
            sync_token=row["sync_token"],
            last_error=row["last_error"],
            last_checked_at=_parse_timestamp(row["last_checked_at"]),
            created_at=_parse_timestamp(row["created_at"]),
            updated_at=_parse_timestamp(row["updated_at"]),
        )

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> Item:
        return Item(
            id=row["id"],
            source_id=row["source_id"],
            reference=row["reference"],
            title=row["title"],
            description=row["description"],
            duration=row["duration"],
            url=row["url"],
            thumbnail_url=row["thumbnail_url"],
            thumbnail_path=row["thumbnail_path"],
            media_path=row["media_path"],
            uploader=row["uploader"],
            view_count=row["view_count"],
            uploaded_at=_parse_timestamp(row["uploaded_at"]),
            download_status=DownloadStatus(row["download_status"]),
            created_at=_parse_timestamp(row["created_at"]),
            updated_at=_parse_timestamp(row["updated_at"]),
        )

    # -- sources -----------------------------------------------------------

    def add_source(self, source: Source) -> Tuple[str, bool]:
        """Persist a new source, or return the existing one for the same channel/playlist.

        Args:
            source: Source with reference and kind already classified

        Returns:
            Tuple of (source_id, is_new)

        Raises:
            ValueError: If reference is empty or kind is not channel/playlist
            sqlite3.Error: If database operation fails
        """
        if not source.reference:
            raise ValueError("Source reference must not be empty")
        if source.kind not in SOURCE_KINDS:
            raise ValueError(f"Invalid source kind: {source.kind.value}")

        with self._lock:
            try:
                cursor = self.conn.execute(
                    "SELECT id FROM sources WHERE kind = ? AND reference = ?",
                    (source.kind.value, source.reference),
                )
                existing = cursor.fetchone()
                if existing:
                    return existing["id"], False

                self.conn.execute(
                    """
                    INSERT INTO sources (
                        id, url, reference, kind, name, description, active,
                        sync_status, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                    """,
                    (
                        source.id,
                        source.url,
                        source.reference,
                        source.kind.value,
                        source.name,
                        source.description,
                        source.active,
                        source.sync_status.value,
                    ),
                )
                self.conn.commit()
                return source.id, True

            except sqlite3.Error as e:
                self.conn.rollback()
                raise sqlite3.Error(f"Failed to add source: {e}")

    def get_source(self, source_id: str) -> Optional[Source]:
        """Find a source by id."""
        with self._lock:
            try:
                cursor = self.conn.execute(
                    f"SELECT {SOURCE_COLUMNS} FROM sources WHERE id = ?", (source_id,)
                )
                row = cursor.fetchone()
                return self._row_to_source(row) if row else None
            except sqlite3.Error as e:
                raise sqlite3.Error(f"Failed to get source: {e}")

    def get_all_sources(self) -> List[Source]:
        """Get all sources (active and inactive), newest first."""
        with self._lock:
            try:
                cursor = self.conn.execute(
                    f"SELECT {SOURCE_COLUMNS} FROM sources ORDER BY created_at DESC, id"
                )
                return [self._row_to_source(row) for row in cursor.fetchall()]
            except sqlite3.Error as e:
                raise sqlite3.Error(f"Failed to get all sources: {e}")

    def get_active_sources(self) -> List[Source]:
        """Get sources with the active flag set."""
        with self._lock:
            try:
                cursor = self.conn.execute(
                    f"SELECT {SOURCE_COLUMNS} FROM sources WHERE active = 1 ORDER BY id"
                )
                return [self._row_to_source(row) for row in cursor.fetchall()]
            except sqlite3.Error as e:
                raise sqlite3.Error(f"Failed to get active sources: {e}")

    def update_source(self, source_id: str, update_data: Dict[str, Any]) -> bool:
        """Update user-editable or metadata fields of a source.

        Args:
            source_id: UUID of the source
            update_data: Dict restricted to url, name, description, image_url,
                         image_path and active

        Returns:
            True if a row was updated, False if not found or nothing to update

        Raises:
            ValueError: If update_data names a field that may not be changed
            sqlite3.Error: If database operation fails
        """
        unknown = set(update_data) - set(SOURCE_UPDATABLE)
        if unknown:
            raise ValueError(f"Cannot update source fields: {sorted(unknown)}")
        if not update_data:
            return False

        columns = [name for name in SOURCE_UPDATABLE if name in update_data]
        assignments = ", ".join(f"{name} = ?" for name in columns)
        values = [update_data[name] for name in columns]

        with self._lock:
            try:
                cursor = self.conn.execute(
                    f"UPDATE sources SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (*values, source_id),
                )
                self.conn.commit()
                return cursor.rowcount > 0
            except sqlite3.Error as e:
                self.conn.rollback()
                raise sqlite3.Error(f"Failed to update source: {e}")

    def remove_source(self, source_id: str) -> bool:
        """Remove a source; its items are deleted by the foreign key cascade.

        Returns:
            True if source was removed, False if not found
        """
        with self._lock:
            try:
                cursor = self.conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
                self.conn.commit()
                return cursor.rowcount > 0
            except sqlite3.Error as e:
                self.conn.rollback()
                raise sqlite3.Error(f"Failed to remove source: {e}")

    # -- sync state --------------------------------------------------------

    def begin_sync(self, source_id: str) -> Optional[int]:
        """Move a source to enqueued and hand out a fresh sync token.

        Any run holding an older token is superseded: its later transitions
        are ignored.

        Returns:
            The new token, or None if the source does not exist
        """
        with self._lock:
            try:
                cursor = self.conn.execute(
                    """
                    UPDATE sources
                    SET sync_status = ?, sync_token = sync_token + 1,
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                    """,
                    (SyncStatus.ENQUEUED.value, source_id),
                )
                if cursor.rowcount == 0:
                    self.conn.rollback()
                    return None
                row = self.conn.execute(
                    "SELECT sync_token FROM sources WHERE id = ?", (source_id,)
                ).fetchone()
                self.conn.commit()
                return row["sync_token"]
            except sqlite3.Error as e:
                self.conn.rollback()
                raise sqlite3.Error(f"Failed to enqueue sync: {e}")

    def start_sync(self, source_id: str, token: int) -> bool:
        """Transition enqueued -> syncing if the token is still current."""
        return self._transition_sync(
            source_id, token, SyncStatus.SYNCING, from_status=SyncStatus.ENQUEUED
        )

    def finish_sync(
        self,
        source_id: str,
        token: int,
        status: SyncStatus,
        error_message: Optional[str] = None,
    ) -> bool:
        """Transition syncing -> done/failed if the token is still current.

        A done transition records last_checked_at and clears last_error.
        """
        if status not in (SyncStatus.DONE, SyncStatus.FAILED):
            raise ValueError(f"Not a terminal sync status: {status.value}")
        return self._transition_sync(
            source_id,
            token,
            status,
            from_status=SyncStatus.SYNCING,
            error_message=error_message,
        )

    def _transition_sync(
        self,
        source_id: str,
        token: int,
        status: SyncStatus,
        from_status: SyncStatus,
        error_message: Optional[str] = None,
    ) -> bool:
        extra = ""
        params: List[Any] = [status.value]
        if status == SyncStatus.DONE:
            extra = ", last_checked_at = ?, last_error = NULL"
            params.append(_now())
        elif status == SyncStatus.FAILED:
            extra = ", last_error = ?"
            params.append(error_message)
        params.extend([source_id, token, from_status.value])

        with self._lock:
            try:
                cursor = self.conn.execute(
                    f"""
                    UPDATE sources
                    SET sync_status = ?{extra}, updated_at = CURRENT_TIMESTAMP
                    WHERE id = ? AND sync_token = ? AND sync_status = ?
                    """,
                    params,
                )
                self.conn.commit()
                return cursor.rowcount > 0
            except sqlite3.Error as e:
                self.conn.rollback()
                raise sqlite3.Error(f"Failed to update sync status: {e}")

    def reset_interrupted(self) -> Tuple[int, int]:
        """Fail work orphaned by a previous process so it can be re-queued.

        Returns:
            Tuple of (sources_reset, items_reset)
        """
        with self._lock:
            try:
                sources = self.conn.execute(
                    """
                    UPDATE sources
                    SET sync_status = ?, last_error = 'Interrupted',
                        updated_at = CURRENT_TIMESTAMP
                    WHERE sync_status IN (?, ?)
                    """,
                    (
                        SyncStatus.FAILED.value,
                        SyncStatus.ENQUEUED.value,
                        SyncStatus.SYNCING.value,
                    ),
                ).rowcount
                items = self.conn.execute(
                    """
                    UPDATE items
                    SET download_status = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE download_status IN (?, ?)
                    """,
                    (
                        DownloadStatus.FAILED.value,
                        DownloadStatus.QUEUED.value,
                        DownloadStatus.DOWNLOADING.value,
                    ),
                ).rowcount
                self.conn.commit()
                return sources, items
            except sqlite3.Error as e:
                self.conn.rollback()
                raise sqlite3.Error(f"Failed to reset interrupted work: {e}")

    # -- items -------------------------------------------------------------

    def get_item(self, item_id: str) -> Optional[Item]:
        """Find an item by id."""
        with self._lock:
            try:
                cursor = self.conn.execute(
                    f"SELECT {ITEM_COLUMNS} FROM items WHERE id = ?", (item_id,)
                )
                row = cursor.fetchone()
                return self._row_to_item(row) if row else None
            except sqlite3.Error as e:
                raise sqlite3.Error(f"Failed to get item: {e}")

    def get_item_by_reference(self, source_id: str, reference: str) -> Optional[Item]:
        """Find an item by its (source_id, reference) key."""
        with self._lock:
            try:
                cursor = self.conn.execute(
                    f"SELECT {ITEM_COLUMNS} FROM items WHERE source_id = ? AND reference = ?",
                    (source_id, reference),
                )
                row = cursor.fetchone()
                return self._row_to_item(row) if row else None
            except sqlite3.Error as e:
                raise sqlite3.Error(f"Failed to get item by reference: {e}")

    def get_items_for_source(
        self, source_id: str, limit: Optional[int] = None
    ) -> List[Item]:
        """Get a source's items in discovery order."""
        query = f"SELECT {ITEM_COLUMNS} FROM items WHERE source_id = ? ORDER BY rowid"
        params: List[Any] = [source_id]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._lock:
            try:
                cursor = self.conn.execute(query, params)
                return [self._row_to_item(row) for row in cursor.fetchall()]
            except sqlite3.Error as e:
                raise sqlite3.Error(f"Failed to get items for source: {e}")

    def count_items(self, source_id: str) -> int:
        with self._lock:
            try:
                cursor = self.conn.execute(
                    "SELECT COUNT(*) FROM items WHERE source_id = ?", (source_id,)
                )
                return cursor.fetchone()[0]
            except sqlite3.Error as e:
                raise sqlite3.Error(f"Failed to count items: {e}")

    def count_items_with_media(self, media_path: str) -> int:
        """Count items whose download is the file at media_path."""
        with self._lock:
            try:
                cursor = self.conn.execute(
                    "SELECT COUNT(*) FROM items WHERE media_path = ?", (media_path,)
                )
                return cursor.fetchone()[0]
            except sqlite3.Error as e:
                raise sqlite3.Error(f"Failed to count items: {e}")

    def upsert_item(self, source_id: str, record: ItemRecord) -> Tuple[str, bool]:
        """Create or update the item keyed by (source_id, record.id).

        Existing items get title, description, url, duration and thumbnail
        overwritten; uploader, view count and upload date are only replaced
        when the record carries them. Download state is never touched.

        Args:
            source_id: UUID of the owning source
            record: Parsed listing record

        Returns:
            Tuple of (item_id, is_new)

        Raises:
            ValueError: If the record has no identifier
            sqlite3.Error: If database operation fails
        """
        if not record.id:
            raise ValueError("Item record has no identifier")

        uploaded_at = parse_upload_date(record.upload_date)
        uploaded_at_value = uploaded_at.isoformat() if uploaded_at else None

        with self._lock:
            try:
                existing = self.get_item_by_reference(source_id, record.id)
                if existing is None:
                    item_id = str(uuid.uuid4())
                    try:
                        self.conn.execute(
                            """
                            INSERT INTO items (
                                id, source_id, reference, title, description, duration,
                                url, thumbnail_url, uploader, view_count, uploaded_at,
                                download_status, created_at, updated_at
                            )
                            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
                                    CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                            """,
                            (
                                item_id,
                                source_id,
                                record.id,
                                record.title,
                                record.description,
                                record.duration,
                                record.url,
                                record.thumbnail,
                                record.uploader,
                                record.view_count,
                                uploaded_at_value,
                                DownloadStatus.PENDING.value,
                            ),
                        )
                        self.conn.commit()
                        return item_id, True
                    except sqlite3.IntegrityError:
                        # Another writer created the row first: fall through to update
                        self.conn.rollback()
                        existing = self.get_item_by_reference(source_id, record.id)
                        if existing is None:
                            raise

                self.conn.execute(
                    """
                    UPDATE items
                    SET title = ?, description = ?, url = ?, duration = ?,
                        thumbnail_url = ?,
                        uploader = COALESCE(?, uploader),
                        view_count = COALESCE(?, view_count),
                        uploaded_at = COALESCE(?, uploaded_at),
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                    """,
                    (
                        record.title,
                        record.description,
                        record.url,
                        record.duration,
                        record.thumbnail,
                        record.uploader,
                        record.view_count,
                        uploaded_at_value,
                        existing.id,
                    ),
                )
                self.conn.commit()
                return existing.id, False

            except sqlite3.Error as e:
                self.conn.rollback()
                raise sqlite3.Error(f"Failed to upsert item: {e}")

    def update_item(self, item_id: str, update_data: Dict[str, Any]) -> bool:
        """Update attachment or descriptive fields of an item.

        Raises:
            ValueError: If update_data names a field that may not be changed
        """
        unknown = set(update_data) - set(ITEM_UPDATABLE)
        if unknown:
            raise ValueError(f"Cannot update item fields: {sorted(unknown)}")
        if not update_data:
            return False

        columns = [name for name in ITEM_UPDATABLE if name in update_data]
        assignments = ", ".join(f"{name} = ?" for name in columns)
        values = [update_data[name] for name in columns]

        with self._lock:
            try:
                cursor = self.conn.execute(
                    f"UPDATE items SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (*values, item_id),
                )
                self.conn.commit()
                return cursor.rowcount > 0
            except sqlite3.Error as e:
                self.conn.rollback()
                raise sqlite3.Error(f"Failed to update item: {e}")

    def set_download_status(
        self,
        item_id: str,
        status: DownloadStatus,
        only_from: Optional[Tuple[DownloadStatus, ...]] = None,
    ) -> bool:
        """Set an item's download status.

        Args:
            item_id: UUID of the item
            status: New status
            only_from: If given, only transition when the current status is one of these

        Returns:
            True if the status was changed
        """
        query = "UPDATE items SET download_status = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?"
        params: List[Any] = [status.value, item_id]
        if only_from:
            placeholders = ", ".join("?" for _ in only_from)
            query += f" AND download_status IN ({placeholders})"
            params.extend(s.value for s in only_from)

        with self._lock:
            try:
                cursor = self.conn.execute(query, params)
                self.conn.commit()
                return cursor.rowcount > 0
            except sqlite3.Error as e:
                self.conn.rollback()
                raise sqlite3.Error(f"Failed to set download status: {e}")

    def remove_item(self, item_id: str) -> bool:
        """Remove a single item.

        Returns:
            True if the item was removed, False if not found
        """
        with self._lock:
            try:
                cursor = self.conn.execute("DELETE FROM items WHERE id = ?", (item_id,))
                self.conn.commit()
                return cursor.rowcount > 0
            except sqlite3.Error as e:
                self.conn.rollback()
                raise sqlite3.Error(f"Failed to remove item: {e}")
