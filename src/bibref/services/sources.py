"""Fetchers for the short-form (Specref) and long-form (Crossref) sources."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional, Sequence

import httpx

from bibref.config import Settings
from bibref.models import DOI_PREFIX

logger = logging.getLogger(__name__)

USER_AGENT = "bibref/0.1 (+https://github.com/bibref/bibref)"


class SourceError(RuntimeError):
    """Raised when a source could not be queried or its answer parsed."""


@dataclass
class FetchResult:
    """Raw metadata keyed by reference key, plus the source's ``Expires`` stamp."""

    entries: dict[str, dict[str, Any]] = field(default_factory=dict)
    expires: Optional[datetime] = None


def parse_expires(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring unparsable Expires header %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _usable_keys(keys: Sequence[str]) -> list[str]:
    return [key for key in dict.fromkeys(keys) if key.strip()]


@dataclass
class _HTTPSource:
    settings: Settings
    client: Optional[httpx.Client] = None

    name = "source"

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": USER_AGENT, "Accept": "application/json"}

    def _get(
        self,
        url: str,
        headers: dict[str, str],
        params: dict[str, str],
    ) -> httpx.Response:
        logger.debug("GET %s %s", url, params)
        # Keys travel as query parameters so httpx percent-encodes them.
        request = {
            "headers": headers,
            "params": params,
            "timeout": self.settings.http_timeout,
            "follow_redirects": True,
        }
        try:
            if self.client is not None:
                return self.client.get(url, **request)
            return httpx.get(url, **request)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise SourceError(f"{self.name} request failed: {exc}") from exc

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise SourceError(f"{self.name} returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise SourceError(f"{self.name} returned {type(payload).__name__}, expected an object")
        return payload


@dataclass
class SpecrefSource(_HTTPSource):
    """Short-form source: one request for all requested keys."""

    name = "Specref"

    def fetch(self, keys: Sequence[str], force_update: bool = False) -> Optional[FetchResult]:
        """Return raw entries for ``keys``, or ``None`` on any failure.

        ``force_update`` asks intermediaries not to serve a cached answer.
        Only an HTTP 200 yields data, whatever the flag.
        """
        refs = _usable_keys(keys)
        if not refs or self.settings.offline:
            return None
        try:
            return self._fetch(refs, force_update)
        except SourceError as exc:
            logger.error("%s", exc)
            return None

    def _fetch(self, refs: list[str], force_update: bool) -> FetchResult:
        headers = self._headers()
        if force_update:
            headers["Cache-Control"] = "no-cache"
        response = self._get(self.settings.specref_url, headers, {"refs": ",".join(refs)})
        if response.status_code != 200:
            raise SourceError(f"Specref answered HTTP {response.status_code}")
        payload = self._json(response)
        entries = {key: value for key, value in payload.items() if isinstance(value, dict)}
        logger.debug("Specref returned %d of %d requested entries", len(entries), len(refs))
        return FetchResult(entries=entries, expires=parse_expires(response.headers.get("Expires")))


@dataclass
class CrossrefSource(_HTTPSource):
    """Long-form source for ``doi:`` keys."""

    name = "Crossref"

    def fetch(self, keys: Sequence[str]) -> Optional[FetchResult]:
        """Return CSL items keyed by requested ``doi:`` key, or ``None`` on failure.

        Items without a ``DOI`` are dropped; keys the source did not answer
        are simply absent.
        """
        refs = _usable_keys(keys)
        if not refs or self.settings.offline:
            return None
        try:
            return self._fetch(refs)
        except SourceError as exc:
            logger.error("%s", exc)
            return None

    def _fetch(self, refs: list[str]) -> FetchResult:
        # Crossref pages at 20 items unless asked for more.
        params = {"filter": ",".join(refs), "rows": str(len(refs))}
        if self.settings.crossref_mailto:
            params["mailto"] = self.settings.crossref_mailto
        response = self._get(self.settings.crossref_url, self._headers(), params)
        if not response.is_success:
            raise SourceError(f"Crossref answered HTTP {response.status_code}")
        message = self._json(response).get("message")
        items = message.get("items") if isinstance(message, dict) else None
        if not isinstance(items, list):
            raise SourceError("Crossref response missing 'message.items'")

        requested = {key.lower(): key for key in refs}
        entries: dict[str, dict[str, Any]] = {}
        for item in items:
            doi = item.get("DOI") if isinstance(item, dict) else None
            if not doi:
                logger.error("Invalid DOI metadata returned by Crossref: %r", item)
                continue
            entry = {name: value for name, value in item.items() if name != "reference"}
            entry["id"] = f"{DOI_PREFIX}{doi}"
            entries[requested.get(entry["id"].lower(), entry["id"])] = entry
        logger.debug("Crossref returned %d of %d requested entries", len(entries), len(refs))
        return FetchResult(entries=entries, expires=parse_expires(response.headers.get("Expires")))
