"""Unit tests for YouTube URL classification."""

import pytest

from vidkeep.classifier import classify, is_platform_host
from vidkeep.models import Classification, ResourceKind


@pytest.mark.parametrize(
    "url,reference",
    [
        ("https://www.youtube.com/channel/UCabc123_-x", "UCabc123_-x"),
        ("http://youtube.com/channel/UCabc123", "UCabc123"),
        ("https://www.youtube.com/c/SomeChannel", "SomeChannel"),
        ("https://www.youtube.com/@some.handle-name", "some.handle-name"),
        ("https://www.youtube.com/user/OldUser", "OldUser"),
    ],
)
def test_channel_shapes(url: str, reference: str) -> None:
    """Test every channel path shape yields the captured segment."""
    assert classify(url) == Classification(ResourceKind.CHANNEL, reference)


@pytest.mark.parametrize(
    "url",
    [
        "https://www.youtube.com/@LexClips",
        "http://youtube.com/@LexClips",
        "https://m.youtube.com/@LexClips/",
        "https://www.youtube.com/@LexClips/videos?view=0&sort=p",
        "   https://www.youtube.com/@LexClips  \n",
        "https://WWW.YouTube.COM/@LexClips",
    ],
)
def test_channel_ignores_scheme_prefix_and_decoration(url: str) -> None:
    """Test scheme, www, trailing slash, query and whitespace don't change the result."""
    assert classify(url) == Classification(ResourceKind.CHANNEL, "LexClips")


def test_watch_with_list_is_playlist() -> None:
    """Test playlist wins over video when both parameters are present."""
    result = classify("https://www.youtube.com/watch?v=dQw4w9WgXcQ&list=PL123abc")
    assert result == Classification(ResourceKind.PLAYLIST, "PL123abc")

    # Parameter order doesn't matter
    result = classify("https://www.youtube.com/watch?list=PL123abc&v=dQw4w9WgXcQ")
    assert result == Classification(ResourceKind.PLAYLIST, "PL123abc")


def test_watch_with_video_only() -> None:
    result = classify("https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=42s")
    assert result == Classification(ResourceKind.VIDEO, "dQw4w9WgXcQ")


def test_short_link_and_shorts() -> None:
    """Test youtu.be root paths and /shorts/ paths are videos."""
    assert classify("https://youtu.be/dQw4w9WgXcQ") == Classification(
        ResourceKind.VIDEO, "dQw4w9WgXcQ"
    )
    assert classify("https://youtu.be/dQw4w9WgXcQ?t=10") == Classification(
        ResourceKind.VIDEO, "dQw4w9WgXcQ"
    )
    assert classify("https://www.youtube.com/shorts/abc_DEF-123") == Classification(
        ResourceKind.VIDEO, "abc_DEF-123"
    )


def test_playlist_page() -> None:
    result = classify("https://www.youtube.com/playlist?list=PLxyz")
    assert result == Classification(ResourceKind.PLAYLIST, "PLxyz")


@pytest.mark.parametrize(
    "url",
    [
        None,
        "",
        "   ",
        "not a url",
        "http://[::1",
        "https://vimeo.com/channel/UCabc",
        "https://notyoutube.com/channel/UCabc",
        "https://youtube.com.evil.example/channel/UCabc",
        "https://www.youtube.com/",
        "https://www.youtube.com/watch",
        "https://www.youtube.com/watch?v=",
        "https://www.youtube.com/watch?feature=share",
        "https://www.youtube.com/playlist",
        "https://www.youtube.com/playlist?list=",
        "https://www.youtube.com/feed/subscriptions",
        "https://youtu.be/",
    ],
)
def test_not_recognized(url) -> None:
    """Test foreign hosts, garbage and incomplete shapes yield None without raising."""
    assert classify(url) is None


def test_non_string_input() -> None:
    assert classify(12345) is None


def test_is_platform_host() -> None:
    assert is_platform_host("youtube.com")
    assert is_platform_host("www.youtube.com")
    assert is_platform_host("music.youtube.com")
    assert is_platform_host("YOUTU.BE")
    assert not is_platform_host("youtube.co")
    assert not is_platform_host("fakeyoutube.com")
    assert not is_platform_host(None)
    assert not is_platform_host("")
