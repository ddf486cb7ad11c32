"""Reference list and inline citation rendering over a ready reference store."""

from __future__ import annotations

import locale
import logging
import re
import unicodedata
from dataclasses import dataclass
from html import escape
from typing import Iterable, Optional, Sequence
from urllib.parse import quote

from bibref.config import DEFAULT_SEARCH_URL
from bibref.models import (
    AliasEntry,
    Citation,
    ContentEntry,
    Diagnostic,
    InlineCitation,
    LongFormAuthor,
    LongFormEntry,
    ReferencesReport,
    RenderedSection,
    RewriteInstruction,
    ShortFormEntry,
)
from bibref.services.resolver import normalize_references
from bibref.store import ReferenceStore

logger = logging.getLogger(__name__)

NORMATIVE_TITLE = "Normative references"
INFORMATIVE_TITLE = "Informative references"

REF_STATUSES = {
    "CR": "W3C Candidate Recommendation",
    "ED": "W3C Editor's Draft",
    "LCWD": "W3C Last Call Working Draft",
    "NOTE": "W3C Working Group Note",
    "PER": "W3C Proposed Edited Recommendation",
    "PR": "W3C Proposed Recommendation",
    "REC": "W3C Recommendation",
    "WD": "W3C Working Draft",
}


def end_with_dot(text: str) -> str:
    trimmed = text.strip()
    if not trimmed or trimmed.endswith("."):
        return trimmed
    return f"{trimmed}."


def anchor_for(key: str) -> str:
    return f"bib-{key.lower()}"


def render_inline_citation(ref: str, link_text: Optional[str] = None) -> str:
    """Markup for an inline ``[KEY]`` citation; ``!``/``?`` markers are stripped."""
    key = re.sub(r"^[!?]", "", ref)
    text = link_text or key
    elem = (
        f'<cite><a class="bibref" href="#{escape(anchor_for(key))}" '
        f'data-link-type="biblio">{escape(text)}</a></cite>'
    )
    return elem if link_text else f"[{elem}]"


def _link(href: Optional[str], inner: str) -> str:
    if not href:
        return inner
    return f'<a href="{escape(href)}">{inner}</a>'


def render_short_form(entry: ShortFormEntry) -> str:
    cite = f"<cite>{escape(entry.title or '')}</cite>"
    output = f"{_link(entry.href, cite)}. "
    if entry.authors:
        output += "; ".join(escape(author) for author in entry.authors)
        if entry.et_al:
            output += " et al"
        output += ". "
    if entry.publisher:
        output += f"{end_with_dot(escape(entry.publisher))} "
    if entry.date:
        output += f"{escape(entry.date)}. "
    if entry.status:
        output += f"{escape(REF_STATUSES.get(entry.status, entry.status))}. "
    if entry.href:
        output += f"URL: {_link(entry.href, escape(entry.href))}"
    return output.strip()


def render_long_form_author(author: LongFormAuthor) -> Optional[str]:
    name = author.display_name()
    if not name:
        return None
    if author.orcid:
        return f'{escape(name)}&nbsp;<a class="orcid" href="{escape(author.orcid)}">ORCID</a>'
    return escape(name)


def render_long_form(entry: LongFormEntry) -> str:
    title = entry.title or ""
    if entry.subtitle:
        title = f"{title}. {entry.subtitle}"
    output = f"{_link(entry.url, f'<cite>{escape(title)}</cite>')}. "

    authors = [name for name in map(render_long_form_author, entry.author) if name]
    if authors:
        output += f"{', '.join(authors)}. "

    journal_parts = []
    if entry.container_title:
        journal_parts.append(escape(entry.container_title))
    elif entry.publisher:
        journal_parts.append(escape(entry.publisher))
    if entry.volume and entry.issue:
        journal_parts.append(f"<strong>{escape(entry.volume)}</strong> ({escape(entry.issue)})")
    if entry.page:
        journal_parts.append(f"pp. {escape(entry.page)}")
    issued = entry.issued.as_text() if entry.issued else None
    if issued:
        journal_parts.append(escape(issued))
    if journal_parts:
        output += f"{end_with_dot(', '.join(journal_parts))} "

    identifiers = []
    if entry.doi:
        identifiers.append(f"DOI:&nbsp;{_link(f'https://doi.org/{entry.doi}', escape(entry.doi))}")
    if entry.isbn and entry.type == "book":
        identifiers.append(f"ISBN:&nbsp;{', '.join(escape(isbn) for isbn in entry.isbn)}")
    output += ", ".join(identifiers)
    return output.strip()


def stringify_reference(entry: ContentEntry) -> str:
    # The doi: id prefix already decided the entry kind when it was parsed.
    if isinstance(entry, LongFormEntry):
        return render_long_form(entry)
    return render_short_form(entry)


def _sort_key(key: str) -> tuple[str, str]:
    # Accents only break ties, so "Émile" sorts with the e's.
    folded = unicodedata.normalize("NFD", key.lower())
    base = "".join(ch for ch in folded if unicodedata.category(ch) != "Mn")
    return locale.strxfrm(base), locale.strxfrm(key.lower())


@dataclass
class ResolvedReference:
    key: str
    entry: Optional[ContentEntry]
    diagnostic: Optional[Diagnostic] = None


class CitationFormatter:
    """Turns requested keys into rendered sections, rewrites and diagnostics."""

    def __init__(
        self,
        store: ReferenceStore,
        search_url: str = DEFAULT_SEARCH_URL,
        timeout: Optional[float] = None,
    ) -> None:
        self.store = store
        self.search_url = search_url
        self.timeout = timeout

    def resolve(self, key: str) -> ResolvedReference:
        """Follow aliases from ``key`` to its canonical entry.

        An alias cycle yields no entry and a diagnostic naming ``key`` and the
        last key visited before the cycle closed.
        """
        entry = self.store.lookup(key, self.timeout)
        current = key
        visited = {key}
        while isinstance(entry, AliasEntry):
            target = entry.alias_of
            if target in visited:
                message = f"Circular reference in biblio DB between [`{key}`] and [`{current}`]."
                logger.warning("%s", message)
                return ResolvedReference(key=key, entry=None, diagnostic=Diagnostic(message=message))
            visited.add(target)
            current = target
            entry = self.store.get(target)
        if entry is not None and not entry.id:
            entry.id = key.lower()
        return ResolvedReference(key=key, entry=entry)

    def render_section(
        self,
        keys: Sequence[str],
        title: str,
        inline_citations: Iterable[InlineCitation] = (),
    ) -> RenderedSection:
        inline = list(inline_citations)
        resolved = [self.resolve(key) for key in keys]
        diagnostics = [ref.diagnostic for ref in resolved if ref.diagnostic]
        good_refs = [ref for ref in resolved if ref.entry is not None]
        bad_refs = [ref for ref in resolved if ref.entry is None]

        # The first key used for a canonical id is the one listed.
        unique_refs: dict[str, ResolvedReference] = {}
        aliases: dict[str, list[str]] = {}
        for ref in good_refs:
            unique_refs.setdefault(ref.entry.id, ref)
            aliases.setdefault(ref.entry.id, []).append(ref.key)

        refs_to_show = sorted([*unique_refs.values(), *bad_refs], key=lambda ref: _sort_key(ref.key))
        citations = [
            Citation(
                key=ref.key,
                entry=ref.entry,
                anchor=anchor_for(ref.key),
                html=stringify_reference(ref.entry) if ref.entry else None,
                aliases=aliases[ref.entry.id] if ref.entry else [],
            )
            for ref in refs_to_show
        ]
        rewrites = [
            self._rewrite_instruction(ref, aliases[ref.entry.id], inline)
            for ref in unique_refs.values()
        ]
        diagnostics.extend(self._bad_reference_diagnostic(ref.key, inline) for ref in bad_refs)
        return RenderedSection(title=title, citations=citations, rewrites=rewrites, diagnostics=diagnostics)

    def render_references(
        self,
        normative: Sequence[str],
        informative: Sequence[str],
        inline_citations: Iterable[InlineCitation] = (),
    ) -> ReferencesReport:
        inline = list(inline_citations)
        report = ReferencesReport()
        if normative:
            report.sections.append(self.render_section(normative, NORMATIVE_TITLE, inline))
        informative = normalize_references(normative, informative)
        if informative:
            report.sections.append(self.render_section(informative, INFORMATIVE_TITLE, inline))
        return report

    def _rewrite_instruction(
        self,
        ref: ResolvedReference,
        alias_keys: list[str],
        inline: list[InlineCitation],
    ) -> RewriteInstruction:
        alias_hrefs = {f"#{anchor_for(alias)}" for alias in alias_keys}
        return RewriteInstruction(
            target_href=f"#{anchor_for(ref.key)}",
            aliases=alias_keys,
            elements=[citation for citation in inline if citation.href in alias_hrefs],
            title=ref.entry.title if ref.entry else None,
        )

    def _bad_reference_diagnostic(self, key: str, inline: list[InlineCitation]) -> Diagnostic:
        href = f"#{anchor_for(key)}"
        elements = [
            citation
            for citation in inline
            if citation.href == href and citation.text.lower() == key.lower()
        ]
        search = self.search_url.format(key=quote(key))
        logger.warning('Reference "[%s]" not found.', key)
        return Diagnostic(
            message=f'Reference "[{key}]" not found.',
            hint=f'Search for ["{key}"]({search}) on Specref to see if it exists or if it\'s misspelled.',
            elements=elements,
        )
