from datetime import datetime, timedelta, timezone

import pytest

from bibref.config import Settings
from bibref.models import parse_entry
from bibref.store import ReferenceStore

T0 = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def sample_settings(tmp_path) -> Settings:
    return Settings(
        specref_url="https://specref.example/bibrefs",
        crossref_url="https://crossref.example/works",
        cache_path=tmp_path / "cache" / "biblio.sqlite3",
        cache_ttl=3600,
        http_timeout=5.0,
        offline=False,
        search_url="https://www.specref.org?q={key}",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_store():
    def _make(entries: dict) -> ReferenceStore:
        store = ReferenceStore()
        store.begin_merge()
        store.apply({key: parse_entry(key, value) for key, value in entries.items()})
        store.mark_ready()
        return store

    return _make
