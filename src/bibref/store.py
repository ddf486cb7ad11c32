"""Per-render mapping from reference keys to bibliographic entries."""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Iterator, Mapping, Optional, Union

from bibref.models import AliasEntry, ContentEntry, LongFormEntry, ShortFormEntry

logger = logging.getLogger(__name__)

Entry = Union[AliasEntry, ShortFormEntry, LongFormEntry]


class StoreStateError(RuntimeError):
    """Raised on an illegal reference store transition."""


class StoreState(str, Enum):
    EMPTY = "empty"
    POPULATING = "populating"
    READY = "ready"


class ReferenceStore:
    """Written once by a single merge pass, then read-only.

    Readers may block on :meth:`wait_ready` from any thread; the gate opens
    exactly once. A new render pass needs a new store.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Entry] = {}
        self._state = StoreState.EMPTY
        self._ready = threading.Event()
        self._lock = threading.Lock()

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def begin_merge(self) -> None:
        with self._lock:
            if self._state is not StoreState.EMPTY:
                raise StoreStateError(f"Cannot start merging a store that is {self._state.value}.")
            self._state = StoreState.POPULATING

    def apply(self, entries: Mapping[str, Entry]) -> None:
        """Merge ``entries`` into the store, later calls overriding earlier ones."""
        with self._lock:
            if self._state is not StoreState.POPULATING:
                raise StoreStateError(f"Cannot write to a store that is {self._state.value}.")
            self._entries.update(entries)

    def mark_ready(self) -> None:
        with self._lock:
            if self._state is StoreState.READY:
                raise StoreStateError("Reference store has already been marked ready.")
            self._state = StoreState.READY
        logger.debug("Reference store ready with %d entries", len(self._entries))
        self._ready.set()

    def wait_ready(self, timeout: Optional[float] = None) -> bool:
        return self._ready.wait(timeout)

    def get(self, key: str) -> Optional[Entry]:
        return self._entries.get(key)

    def lookup(self, key: str, timeout: Optional[float] = None) -> Optional[Entry]:
        """Wait for readiness, then return the raw entry stored under ``key``."""
        if not self._ready.wait(timeout):
            raise TimeoutError(f"Reference store not ready after {timeout} seconds.")
        return self._entries.get(key)

    def resolve_ref(self, key: str, timeout: Optional[float] = None) -> Optional[ContentEntry]:
        """Wait for readiness, then follow aliases from ``key`` to a content entry.

        Returns ``None`` for missing keys, dangling aliases and alias cycles.
        """
        entry = self.lookup(key, timeout)
        seen = {key}
        while isinstance(entry, AliasEntry):
            target = entry.alias_of
            if target in seen:
                return None
            seen.add(target)
            entry = self._entries.get(target)
        return entry

    def keys(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)
