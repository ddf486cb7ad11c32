from datetime import timedelta

from bibref.models import AliasEntry, ShortFormEntry
from bibref.services.cache import BiblioCache, NullCache, compute_expiry

from conftest import T0


def test_add_all_then_find_returns_fresh_record(tmp_path, clock):
    cache = BiblioCache(tmp_path / "biblio.sqlite3", clock=clock)
    assert cache.add_all(
        {"RFC2119": {"title": "Key words"}, "HTML5": AliasEntry(alias_of="HTML")},
        T0 + timedelta(hours=1),
    )

    record = cache.find("RFC2119")
    assert record is not None
    assert isinstance(record.data, ShortFormEntry)
    assert record.data.title == "Key words"
    assert record.expires_at == T0 + timedelta(hours=1)
    assert cache.find("HTML5").data.alias_of == "HTML"
    assert cache.find("DOM") is None


def test_expired_record_is_a_miss(tmp_path, clock):
    cache = BiblioCache(tmp_path / "biblio.sqlite3", clock=clock)
    cache.add_all({"RFC2119": {"title": "Key words"}}, T0 + timedelta(minutes=30))

    clock.advance(minutes=45)

    assert cache.find("RFC2119") is None


def test_records_survive_reopening(tmp_path, clock):
    path = tmp_path / "biblio.sqlite3"
    first = BiblioCache(path, clock=clock)
    first.add_all({"doi:10.1/xyz": {"id": "doi:10.1/xyz", "title": ["Deep Things"]}}, T0 + timedelta(hours=1))
    first.close()

    record = BiblioCache(path, clock=clock).find("doi:10.1/xyz")
    assert record.data.kind == "long"
    assert record.data.title == "Deep Things"


def test_unusable_location_degrades_to_misses(tmp_path, clock):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("occupied")

    cache = BiblioCache(blocker / "biblio.sqlite3", clock=clock)

    assert not cache.available
    assert cache.find("RFC2119") is None
    assert cache.add_all({"RFC2119": {"title": "Key words"}}, T0) is False


def test_read_failure_is_a_miss(tmp_path, clock):
    cache = BiblioCache(tmp_path / "biblio.sqlite3", clock=clock)
    cache.add_all({"RFC2119": {"title": "Key words"}}, T0 + timedelta(hours=1))
    cache._conn.close()

    assert cache.find("RFC2119") is None
    assert cache.add_all({"DOM": {"title": "DOM"}}, T0 + timedelta(hours=1)) is False


def test_purge_expired_and_clear(tmp_path, clock):
    cache = BiblioCache(tmp_path / "biblio.sqlite3", clock=clock)
    cache.add_all({"old": {"title": "Old"}}, T0 + timedelta(minutes=5))
    cache.add_all({"new": {"title": "New"}}, T0 + timedelta(hours=1))
    clock.advance(minutes=10)

    assert cache.purge_expired() == 1
    assert cache.find("new") is not None

    cache.clear()
    assert cache.find("new") is None


def test_compute_expiry_takes_the_earlier_stamp():
    assert compute_expiry(T0, 3600) == T0 + timedelta(hours=1)
    assert compute_expiry(T0, 3600, T0 + timedelta(minutes=10)) == T0 + timedelta(minutes=10)
    assert compute_expiry(T0, 3600, T0 + timedelta(hours=3)) == T0 + timedelta(hours=1)


def test_null_cache_never_hits():
    cache = NullCache()
    assert cache.find("RFC2119") is None
    assert cache.add_all({"RFC2119": {"title": "x"}}, T0) is False
