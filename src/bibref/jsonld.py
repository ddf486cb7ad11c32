"""JSON-LD views of resolved bibliographic entries."""

from __future__ import annotations

from typing import Any

from bibref.models import ContentEntry, LongFormAuthor, LongFormEntry, ShortFormEntry


def citation_metadata_to_jsonld(entry: ContentEntry) -> dict[str, Any]:
    if isinstance(entry, LongFormEntry):
        return crossref_metadata_to_jsonld(entry)
    return specref_metadata_to_jsonld(entry)


def specref_metadata_to_jsonld(entry: ShortFormEntry) -> dict[str, Any]:
    jsonld: dict[str, Any] = {
        "id": entry.href,
        "type": "TechArticle",
        "name": entry.title,
        "url": entry.href,
    }
    if entry.authors:
        jsonld["creator"] = [{"name": author} for author in entry.authors]
    raw_date = (entry.model_extra or {}).get("rawDate")
    if raw_date:
        jsonld["publishedDate"] = raw_date
    isbn = (entry.model_extra or {}).get("isbn")
    if isbn:
        jsonld["identifier"] = isbn
    if entry.publisher:
        jsonld["publisher"] = {"name": entry.publisher}
    return jsonld


def crossref_metadata_to_jsonld(entry: LongFormEntry) -> dict[str, Any]:
    jsonld: dict[str, Any] = {
        "url": entry.url,
        "name": entry.title,
        "subtitle": entry.subtitle,
    }
    if entry.author:
        jsonld["creator"] = [crossref_author_to_jsonld(author) for author in entry.author]
    if entry.publisher:
        jsonld["publisher"] = {"name": entry.publisher}
    identifiers = []
    if entry.doi:
        identifiers.append(entry.doi)
    identifiers.extend(entry.isbn)
    if identifiers:
        jsonld["identifier"] = identifiers
    return jsonld


def crossref_author_to_jsonld(author: LongFormAuthor) -> dict[str, Any]:
    jsonld: dict[str, Any] = {
        "givenName": author.given,
        "familyName": author.family,
        "name": author.literal or author.display_name(),
    }
    if author.orcid:
        jsonld["sameAs"] = author.orcid
    return jsonld
