"""Integration tests for the vidkeep command line."""

from pathlib import Path

import pytest
from typer.testing import CliRunner

from vidkeep import cli
from vidkeep.cli import app
from vidkeep.config import Config
from vidkeep.models import DownloadStatus, SyncStatus
from vidkeep.storage import Storage

from conftest import FakeExtractor, make_record

runner = CliRunner()


@pytest.fixture
def fake_yt_dlp(monkeypatch, tmp_path: Path) -> FakeExtractor:
    """Swap the real extractor for a fake in every command."""
    fake = FakeExtractor(tmp_path / "downloads")
    monkeypatch.setattr(cli.YtDlpExtractor, "from_config", classmethod(lambda cls, config: fake))
    return fake


def _storage() -> Storage:
    return Storage(Config().db_path)


def test_init_creates_config_and_database(isolated_dirs: Path) -> None:
    result = runner.invoke(app, ["init"])

    assert result.exit_code == 0
    assert (isolated_dirs / "config" / "vidkeep" / "config.toml").exists()
    assert (isolated_dirs / "data" / "vidkeep" / "vidkeep.db").exists()


def test_classify() -> None:
    result = runner.invoke(app, ["classify", "https://www.youtube.com/watch?v=abc&list=PL9"])
    assert result.exit_code == 0
    assert "playlist PL9" in result.stdout

    result = runner.invoke(app, ["classify", "https://example.com/"])
    assert result.exit_code == 1
    assert "Not recognized" in result.stdout


def test_add_list_and_remove_source(fake_yt_dlp: FakeExtractor) -> None:
    fake_yt_dlp.items = [make_record("v1"), make_record("v2")]

    result = runner.invoke(app, ["add", "https://www.youtube.com/@chan", "--name", "Chan"])
    assert result.exit_code == 0, result.stdout
    assert "Added channel Chan" in result.stdout

    with _storage() as storage:
        [source] = storage.get_all_sources()
        assert source.sync_status == SyncStatus.DONE
        assert storage.count_items(source.id) == 2

    result = runner.invoke(app, ["add", "https://youtube.com/@chan"])
    assert result.exit_code == 0
    assert "Already subscribed" in result.stdout

    result = runner.invoke(app, ["sources"])
    assert result.exit_code == 0
    assert "Sources" in result.stdout

    result = runner.invoke(app, ["items", source.id])
    assert result.exit_code == 0

    result = runner.invoke(app, ["remove", source.id])
    assert result.exit_code == 0
    with _storage() as storage:
        assert storage.get_all_sources() == []


def test_add_rejects_video_url(fake_yt_dlp: FakeExtractor) -> None:
    result = runner.invoke(app, ["add", "https://youtu.be/abc"])

    assert result.exit_code == 1
    assert "single video" in result.stdout
    assert fake_yt_dlp.calls == []


def test_add_without_sync(fake_yt_dlp: FakeExtractor) -> None:
    result = runner.invoke(
        app, ["add", "https://www.youtube.com/playlist?list=PL1", "--no-sync", "--inactive"]
    )

    assert result.exit_code == 0
    assert fake_yt_dlp.calls == []
    with _storage() as storage:
        [source] = storage.get_all_sources()
        assert source.active is False


def test_sync_reports_failure(fake_yt_dlp: FakeExtractor) -> None:
    runner.invoke(app, ["add", "https://www.youtube.com/@chan", "--no-sync"])
    with _storage() as storage:
        [source] = storage.get_all_sources()

    fake_yt_dlp.items = None
    result = runner.invoke(app, ["sync", source.id])
    assert result.exit_code == 1
    assert "failed" in result.stdout

    fake_yt_dlp.items = [make_record("v1")]
    result = runner.invoke(app, ["sync", source.id])
    assert result.exit_code == 0
    assert "done" in result.stdout


def test_fetch_downloads_item(fake_yt_dlp: FakeExtractor) -> None:
    fake_yt_dlp.items = [make_record("abc")]
    runner.invoke(app, ["add", "https://www.youtube.com/@chan"])
    with _storage() as storage:
        [source] = storage.get_all_sources()
        [item] = storage.get_items_for_source(source.id)

    result = runner.invoke(app, ["fetch", item.id])

    assert result.exit_code == 0
    assert "Downloaded" in result.stdout
    with _storage() as storage:
        assert storage.get_item(item.id).download_status == DownloadStatus.COMPLETED

    result = runner.invoke(app, ["remove-item", item.id])
    assert result.exit_code == 0


def test_unknown_ids_exit_nonzero(fake_yt_dlp: FakeExtractor) -> None:
    for args in (
        ["sync", "missing"],
        ["items", "missing"],
        ["fetch", "missing"],
        ["remove", "missing"],
        ["remove-item", "missing"],
    ):
        result = runner.invoke(app, args)
        assert result.exit_code == 1, args


def test_sync_all_and_daemon_once(fake_yt_dlp: FakeExtractor) -> None:
    runner.invoke(app, ["add", "https://www.youtube.com/@one", "--no-sync"])
    runner.invoke(app, ["add", "https://www.youtube.com/@two", "--no-sync", "--inactive"])

    result = runner.invoke(app, ["sync-all"])
    assert result.exit_code == 0
    assert "Synced 1 source(s)" in result.stdout

    result = runner.invoke(app, ["daemon", "--once"])
    assert result.exit_code == 0
    assert "Synced 1 source(s)" in result.stdout


def test_bad_config_exits(isolated_dirs: Path) -> None:
    config_file = isolated_dirs / "bad.toml"
    config_file.write_text("[daemon]\nworkers = 0\n")

    result = runner.invoke(app, ["--config", str(config_file), "sources"])

    assert result.exit_code == 1
    assert "Configuration error" in result.stdout
