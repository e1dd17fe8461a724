"""Integration tests for item downloads, thumbnails and media storage."""

from pathlib import Path

import httpx
import pytest

from vidkeep.media import MediaStore
from vidkeep.models import DownloadStatus, LifecycleEvent, ResourceKind, Source
from vidkeep.notifier import ITEMS_TOPIC
from vidkeep.orchestrator import ItemFetchOrchestrator

from conftest import make_record


@pytest.fixture
def source_id(storage) -> str:
    source_id, _ = storage.add_source(
        Source(
            url="https://www.youtube.com/@chan",
            reference="chan",
            kind=ResourceKind.CHANNEL,
        )
    )
    return source_id


def _media_store(root: Path, status_code: int = 200) -> MediaStore:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, content=b"\x89PNG image bytes")

    return MediaStore(root, client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_download_success(item_orchestrator, storage, source_id, events) -> None:
    """Test pending -> queued -> downloading -> completed with the file attached."""
    item_id, _ = item_orchestrator.reconcile(source_id, make_record("abc"))
    events.clear()

    assert item_orchestrator.request_fetch(item_id)

    item = storage.get_item(item_id)
    assert item.download_status == DownloadStatus.COMPLETED
    assert item.media_path.endswith("Uploader - Title [abc].mp4")
    assert Path(item.media_path).exists()

    statuses = [e.payload["download_status"] for e in events if e.topic == ITEMS_TOPIC]
    assert statuses == ["queued", "downloading", "completed"]


def test_download_failure_is_resting_state(
    item_orchestrator, storage, source_id, fake_extractor, jobs
) -> None:
    item_id, _ = item_orchestrator.reconcile(source_id, make_record("abc"))
    fake_extractor.download_fails = True

    assert item_orchestrator.request_fetch(item_id)

    item = storage.get_item(item_id)
    assert item.download_status == DownloadStatus.FAILED
    assert item.media_path is None
    assert jobs.failed == 1
    assert fake_extractor.call_names() == ["download_media"]

    # A new request re-queues a failed item
    fake_extractor.download_fails = False
    assert item_orchestrator.request_fetch(item_id)
    assert storage.get_item(item_id).download_status == DownloadStatus.COMPLETED


def test_fetch_ignored_while_in_progress(
    item_orchestrator, storage, source_id, fake_extractor
) -> None:
    item_id, _ = item_orchestrator.reconcile(source_id, make_record("abc"))

    for status in (DownloadStatus.QUEUED, DownloadStatus.DOWNLOADING):
        storage.set_download_status(item_id, status)
        assert not item_orchestrator.request_fetch(item_id)
        assert storage.get_item(item_id).download_status == status

    assert fake_extractor.calls == []


def test_run_download_skips_unqueued_item(
    item_orchestrator, storage, source_id, fake_extractor
) -> None:
    item_id, _ = item_orchestrator.reconcile(source_id, make_record("abc"))

    assert item_orchestrator.run_download(item_id) is None
    assert storage.get_item(item_id).download_status == DownloadStatus.PENDING
    assert item_orchestrator.run_download("missing") is None
    assert fake_extractor.calls == []


def test_remove_item_deletes_download(item_orchestrator, storage, source_id, tmp_path) -> None:
    """Test removing an item deletes its video and the sidecars beside it."""
    item_id, _ = item_orchestrator.reconcile(source_id, make_record("abc"))
    item_orchestrator.request_fetch(item_id)
    download_dir = tmp_path / "downloads" / "abc"
    (download_dir / "Uploader - Title [abc].en.vtt").write_text("WEBVTT")

    assert item_orchestrator.remove_item(item_id)

    assert not download_dir.exists()
    assert (tmp_path / "downloads").exists()


def test_remove_source_deletes_downloads(
    source_orchestrator, item_orchestrator, storage, fake_extractor, tmp_path
) -> None:
    fake_extractor.items = [make_record("abc"), make_record("def")]
    source, _ = source_orchestrator.create_source("https://www.youtube.com/@chan")
    for item in storage.get_items_for_source(source.id):
        item_orchestrator.request_fetch(item.id)
    assert (tmp_path / "downloads" / "abc").exists()

    assert source_orchestrator.remove_source(source.id)

    assert not (tmp_path / "downloads" / "abc").exists()
    assert not (tmp_path / "downloads" / "def").exists()


def test_shared_download_survives_until_last_item(
    item_orchestrator, storage, source_id, tmp_path
) -> None:
    """Test a video listed by two sources is deleted with the last item using it."""
    other_source, _ = storage.add_source(
        Source(
            url="https://www.youtube.com/playlist?list=PL1",
            reference="PL1",
            kind=ResourceKind.PLAYLIST,
        )
    )
    first, _ = item_orchestrator.reconcile(source_id, make_record("abc"))
    second, _ = item_orchestrator.reconcile(other_source, make_record("abc"))
    item_orchestrator.request_fetch(first)
    item_orchestrator.request_fetch(second)
    media_path = Path(storage.get_item(first).media_path)
    assert storage.get_item(second).media_path == str(media_path)

    assert item_orchestrator.remove_item(first)
    assert media_path.exists()

    assert item_orchestrator.remove_item(second)
    assert not media_path.parent.exists()


def test_fetch_unknown_item(item_orchestrator) -> None:
    with pytest.raises(ValueError, match="Item not found"):
        item_orchestrator.request_fetch("missing")


def test_reconcile_announces_create_then_update(item_orchestrator, source_id, events) -> None:
    item_orchestrator.reconcile(source_id, make_record("abc", "First"))
    item_orchestrator.reconcile(source_id, make_record("abc", "Second"))

    assert [e.kind for e in events] == [LifecycleEvent.CREATED, LifecycleEvent.UPDATED]
    assert events[1].payload["title"] == "Second"


def test_new_item_gets_thumbnail(
    storage, fake_extractor, jobs, notifier, source_id, tmp_path: Path
) -> None:
    orchestrator = ItemFetchOrchestrator(
        storage=storage,
        extractor=fake_extractor,
        jobs=jobs,
        notifier=notifier,
        media=_media_store(tmp_path / "media"),
    )
    record = make_record("abc", thumbnail="https://i.ytimg.com/vi/abc/maxresdefault.jpg")

    item_id, _ = orchestrator.reconcile(source_id, record)

    item = storage.get_item(item_id)
    assert item.thumbnail_url == "https://i.ytimg.com/vi/abc/maxresdefault.jpg"
    assert item.thumbnail_path == str(
        tmp_path / "media" / "items" / item_id / "maxresdefault.jpg"
    )
    assert Path(item.thumbnail_path).read_bytes() == b"\x89PNG image bytes"

    # Already attached: nothing is downloaded again
    assert orchestrator.run_thumbnail(item_id) == Path(item.thumbnail_path)

    assert orchestrator.remove_item(item_id)
    assert not (tmp_path / "media" / "items" / item_id).exists()
    assert not orchestrator.remove_item(item_id)


def test_thumbnail_failure_is_not_fatal(
    storage, fake_extractor, jobs, notifier, source_id, tmp_path: Path
) -> None:
    orchestrator = ItemFetchOrchestrator(
        storage=storage,
        extractor=fake_extractor,
        jobs=jobs,
        notifier=notifier,
        media=_media_store(tmp_path / "media", status_code=404),
    )

    item_id, is_new = orchestrator.reconcile(
        source_id, make_record("abc", thumbnail="https://i.ytimg.com/vi/abc/hq.jpg")
    )

    assert is_new
    assert storage.get_item(item_id).thumbnail_path is None
    assert jobs.failed == 0


def test_media_store_source_image(tmp_path: Path) -> None:
    store = _media_store(tmp_path)

    path = store.attach_source_image("src-1", "https://yt3.ggpht.com/avatar")

    assert path == tmp_path / "sources" / "src-1" / "avatar"
    assert path.exists()

    store.remove_source_media("src-1")
    assert not (tmp_path / "sources" / "src-1").exists()
    # Removing twice is harmless
    store.remove_source_media("src-1")


def test_media_store_filename_fallback() -> None:
    assert MediaStore.filename_for("https://example.com/", "fallback.jpg") == "fallback.jpg"
    assert MediaStore.filename_for("https://example.com/a/b.png?x=1", "f") == "b.png"
