"""Resolution of a document's reference keys into a ready reference store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol, Sequence

from pydantic import ValidationError

from bibref.config import Settings
from bibref.models import AliasEntry, CacheRecord, is_doi_key, parse_entry
from bibref.services.cache import Clock, compute_expiry, utcnow
from bibref.services.sources import CrossrefSource, FetchResult, SpecrefSource
from bibref.store import Entry, ReferenceStore

logger = logging.getLogger(__name__)


class CacheGateway(Protocol):
    def find(self, key: str) -> Optional[CacheRecord]: ...

    def add_all(self, entries: Mapping[str, Any], expires_at: Any) -> bool: ...


def normalize_references(normative: Sequence[str], informative: Sequence[str]) -> list[str]:
    """Drop informative keys that are also normative, ignoring case."""
    normative_keys = {key.lower() for key in normative}
    return [key for key in informative if key.lower() not in normative_keys]


def needed_keys(
    normative: Sequence[str],
    informative: Sequence[str],
    local_biblio: Mapping[str, Entry],
) -> list[str]:
    """Keys that must come from the cache or the network.

    Locally defined keys are excluded, but the targets of local aliases that
    point outside the override table are added.
    """
    local_aliases = [
        entry.alias_of
        for entry in local_biblio.values()
        if isinstance(entry, AliasEntry) and entry.alias_of not in local_biblio
    ]
    requested = [key for key in [*normative, *informative] if key not in local_biblio]
    return sorted(set(requested) | set(local_aliases))


def parse_entries(raw: Mapping[str, Any], origin: str) -> dict[str, Entry]:
    entries: dict[str, Entry] = {}
    for key, value in raw.items():
        try:
            entries[key] = parse_entry(key, value)
        except (ValueError, ValidationError) as exc:
            logger.error("Skipping malformed %s entry %s: %s", origin, key, exc)
    return entries


@dataclass
class ReferenceResolver:
    """Runs one merge pass: cache, then network, then local overrides."""

    settings: Settings
    cache: CacheGateway
    specref: Optional[SpecrefSource] = None
    crossref: Optional[CrossrefSource] = None
    clock: Clock = field(default=utcnow)

    def __post_init__(self) -> None:
        if self.specref is None:
            self.specref = SpecrefSource(settings=self.settings)
        if self.crossref is None:
            self.crossref = CrossrefSource(settings=self.settings)

    def lookup_cache(self, keys: Sequence[str]) -> tuple[dict[str, Entry], list[str]]:
        """Split ``keys`` into cached entries and keys that missed."""
        hits: dict[str, Entry] = {}
        misses: list[str] = []
        for key in keys:
            record = self.cache.find(key)
            if record is None:
                misses.append(key)
            else:
                hits[key] = record.data
        logger.debug("Cache lookup: %d hits, %d misses", len(hits), len(misses))
        return hits, misses

    def update_from_network(self, keys: Sequence[str], force_update: bool = False) -> dict[str, Entry]:
        """Fetch ``keys`` from both sources and write what came back to the cache."""
        refs = [key for key in dict.fromkeys(keys) if key.strip()]
        specref_ids = [key for key in refs if not is_doi_key(key)]
        crossref_ids = [key for key in refs if is_doi_key(key)]

        results: list[FetchResult] = []
        specref_data = self.specref.fetch(specref_ids, force_update=force_update) if specref_ids else None
        if specref_data is not None:
            results.append(specref_data)
        crossref_data = self.crossref.fetch(crossref_ids) if crossref_ids else None
        if crossref_data is not None:
            results.append(crossref_data)

        raw: dict[str, Any] = {}
        source_expiry = None
        for result in results:
            raw.update(result.entries)
            if result.expires is not None and (source_expiry is None or result.expires < source_expiry):
                source_expiry = result.expires
        entries = parse_entries(raw, "fetched")
        if not entries:
            return entries

        expires_at = compute_expiry(self.clock(), self.settings.cache_ttl, source_expiry)
        if not self.cache.add_all(entries, expires_at):
            logger.warning("Could not cache %d fetched entries", len(entries))
        return entries

    def run(
        self,
        normative: Sequence[str],
        informative: Sequence[str],
        local_biblio: Optional[Mapping[str, Any]] = None,
        store: Optional[ReferenceStore] = None,
    ) -> tuple[ReferenceStore, list[str]]:
        """Populate a fresh store and mark it ready.

        Returns the store together with the normalized informative keys.
        Failures only leave keys unresolved; overrides are always applied
        and the store is always marked ready.
        """
        if store is None:
            store = ReferenceStore()
        store.begin_merge()
        overrides = parse_entries(local_biblio or {}, "local")
        informative = normalize_references(normative, informative)
        try:
            needed = needed_keys(normative, informative, overrides)
            if needed:
                hits, misses = self.lookup_cache(needed)
                store.apply(hits)
                if misses:
                    logger.info("Fetching %d references from the network", len(misses))
                    store.apply(self.update_from_network(misses, force_update=True))
        finally:
            store.apply(overrides)
            store.mark_ready()
        return store, informative
