"""Unit tests for locale flag construction."""

from vidkeep.locale_options import locale_flags


def test_locale_with_country() -> None:
    assert locale_flags("es-ES") == [
        "--add-header",
        "Accept-Language:es-ES",
        "--geo-bypass-country",
        "ES",
    ]


def test_country_code_is_upper_cased() -> None:
    flags = locale_flags("pt-br")
    assert flags[:2] == ["--add-header", "Accept-Language:pt-br"]
    assert flags[2:] == ["--geo-bypass-country", "BR"]


def test_last_hyphen_segment_is_the_country() -> None:
    assert locale_flags("zh-Hant-TW")[-2:] == ["--geo-bypass-country", "TW"]


def test_invalid_country_segment_is_skipped() -> None:
    """Test a country segment that isn't two letters adds no geo flag."""
    assert locale_flags("en-USA") == ["--add-header", "Accept-Language:en-USA"]
    assert locale_flags("en-1A") == ["--add-header", "Accept-Language:en-1A"]
    assert locale_flags("es-419") == ["--add-header", "Accept-Language:es-419"]


def test_language_only() -> None:
    assert locale_flags("fr") == ["--add-header", "Accept-Language:fr"]


def test_empty_locale() -> None:
    assert locale_flags("") == []
    assert locale_flags(None) == []
    assert locale_flags("   ") == []
