from pathlib import Path

import pytest

from bibref.config import DEFAULT_CACHE_TTL, DEFAULT_SPECREF_URL, load_settings


def test_load_settings_defaults(monkeypatch):
    for name in (
        "BIBREF_SPECREF_URL",
        "BIBREF_CACHE_PATH",
        "BIBREF_CACHE_TTL",
        "BIBREF_OFFLINE",
        "CROSSREF_MAILTO",
    ):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.specref_url == DEFAULT_SPECREF_URL
    assert settings.cache_ttl == DEFAULT_CACHE_TTL
    assert settings.offline is False
    assert settings.crossref_mailto is None


def test_load_settings_reads_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("BIBREF_CACHE_PATH", str(tmp_path / "db.sqlite3"))
    monkeypatch.setenv("BIBREF_CACHE_TTL", "600")
    monkeypatch.setenv("BIBREF_OFFLINE", "yes")
    monkeypatch.setenv("CROSSREF_MAILTO", "team@example.org")
    settings = load_settings()
    assert settings.cache_path == Path(tmp_path / "db.sqlite3")
    assert settings.cache_ttl == 600
    assert settings.offline is True
    assert settings.crossref_mailto == "team@example.org"


@pytest.mark.parametrize("value", ["soon", "0", "-5"])
def test_load_settings_rejects_bad_numbers(monkeypatch, value):
    monkeypatch.setenv("BIBREF_HTTP_TIMEOUT", value)
    with pytest.raises(RuntimeError):
        load_settings()
