"""Shared test fixtures for all tests."""

from pathlib import Path
from typing import List, Optional

import pytest

from vidkeep import database, observability
from vidkeep.classifier import classify
from vidkeep.jobs import InlineJobQueue
from vidkeep.models import ItemRecord, Metadata, ResourceKind
from vidkeep.notifier import ITEMS_TOPIC, SOURCES_TOPIC, Event, Notifier
from vidkeep.orchestrator import ItemFetchOrchestrator, SourceSyncOrchestrator
from vidkeep.storage import Storage


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path: Path, monkeypatch) -> Path:
    """Point every XDG directory at a per-test temp dir."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "state"))
    # Event log singleton must not leak between tests
    monkeypatch.setattr(observability, "_event_log", None)
    return tmp_path


@pytest.fixture
def test_db(tmp_path: Path) -> Path:
    """Create a temporary test database for each test."""
    db_path = tmp_path / "data" / "vidkeep" / "vidkeep.db"
    database.init_db(db_path)
    return db_path


@pytest.fixture
def storage(test_db: Path):
    store = Storage(test_db)
    yield store
    store.close()


class FakeExtractor:
    """Extractor returning canned results instead of running yt-dlp.

    Set items (or metadata) to None to simulate a failed invocation.
    """

    def __init__(self, download_dir: Path):
        self.items: Optional[List[ItemRecord]] = []
        self.metadata: Optional[Metadata] = Metadata(name="Fake Channel")
        self.download_dir = download_dir
        self.download_fails = False
        self.calls: List[tuple] = []

    def classify(self, url: str):
        return classify(url)

    def fetch_metadata(self, url: str, kind=None, locale=None):
        self.calls.append(("fetch_metadata", url, locale))
        return self.metadata

    def fetch_items(self, url: str, locale=None):
        self.calls.append(("fetch_items", url, locale))
        return None if self.items is None else list(self.items)

    def download_media(self, url: str):
        self.calls.append(("download_media", url))
        info = classify(url)
        if self.download_fails or info is None or info.kind != ResourceKind.VIDEO:
            return None
        destination = self.download_dir / info.reference
        destination.mkdir(parents=True, exist_ok=True)
        path = destination / f"Uploader - Title [{info.reference}].mp4"
        path.write_bytes(b"video")
        return path

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


def make_record(video_id: str, title: Optional[str] = None, **fields) -> ItemRecord:
    """Build an ItemRecord the way the listing parser would."""
    return ItemRecord(
        id=video_id,
        title=title or f"Video {video_id}",
        url=f"https://www.youtube.com/watch?v={video_id}",
        **fields,
    )


@pytest.fixture
def fake_extractor(tmp_path: Path) -> FakeExtractor:
    return FakeExtractor(tmp_path / "downloads")


@pytest.fixture
def jobs() -> InlineJobQueue:
    return InlineJobQueue()


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def events(notifier: Notifier) -> List[Event]:
    """Every event published on the items and sources topics, in order."""
    received: List[Event] = []
    notifier.subscribe(ITEMS_TOPIC, received.append)
    notifier.subscribe(SOURCES_TOPIC, received.append)
    return received


@pytest.fixture
def item_orchestrator(storage, fake_extractor, jobs, notifier) -> ItemFetchOrchestrator:
    return ItemFetchOrchestrator(
        storage=storage, extractor=fake_extractor, jobs=jobs, notifier=notifier
    )


@pytest.fixture
def source_orchestrator(
    storage, fake_extractor, jobs, notifier, item_orchestrator
) -> SourceSyncOrchestrator:
    return SourceSyncOrchestrator(
        storage=storage,
        extractor=fake_extractor,
        jobs=jobs,
        notifier=notifier,
        items=item_orchestrator,
    )
