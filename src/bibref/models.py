"""Core data models used across bibref."""

from __future__ import annotations

from datetime import datetime
from html import escape
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

DOI_PREFIX = "doi:"
REFERENCE_NOT_FOUND = "Reference not found."


def is_doi_key(key: str) -> bool:
    return key.startswith(DOI_PREFIX)


class AliasEntry(BaseModel):
    """Pointer to another reference key, with no content of its own."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    kind: Literal["alias"] = "alias"
    alias_of: str = Field(alias="aliasOf")


class ShortFormEntry(BaseModel):
    """Compact, pre-summarized record as served by Specref."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    kind: Literal["short"] = "short"
    id: Optional[str] = None
    title: Optional[str] = None
    href: Optional[str] = None
    authors: list[str] = Field(default_factory=list)
    et_al: bool = Field(default=False, alias="etAl")
    publisher: Optional[str] = None
    date: Optional[str] = None
    status: Optional[str] = None


class LongFormAuthor(BaseModel):
    """A CSL contributor."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    given: Optional[str] = None
    family: Optional[str] = None
    literal: Optional[str] = None
    orcid: Optional[str] = Field(default=None, alias="ORCID")

    def display_name(self) -> Optional[str]:
        if self.given and self.family:
            return f"{self.given} {self.family}"
        if self.family:
            return self.family
        return self.literal


class IssuedDate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    date_parts: list[list[Union[int, str, None]]] = Field(default_factory=list, alias="date-parts")

    def as_text(self) -> Optional[str]:
        if not self.date_parts or not self.date_parts[0]:
            return None
        parts = [str(part) for part in self.date_parts[0] if part is not None]
        return "-".join(parts) or None


class LongFormEntry(BaseModel):
    """CSL-like record as served by Crossref."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    kind: Literal["long"] = "long"
    id: Optional[str] = None
    title: Optional[str] = None
    subtitle: Optional[str] = None
    url: Optional[str] = Field(default=None, alias="URL")
    author: list[LongFormAuthor] = Field(default_factory=list)
    publisher: Optional[str] = None
    container_title: Optional[str] = Field(default=None, alias="container-title")
    volume: Optional[str] = None
    issue: Optional[str] = None
    page: Optional[str] = None
    issued: Optional[IssuedDate] = None
    doi: Optional[str] = Field(default=None, alias="DOI")
    isbn: list[str] = Field(default_factory=list, alias="ISBN")
    type: Optional[str] = None

    @field_validator("title", "subtitle", "container_title", mode="before")
    @classmethod
    def first_text(cls, value: Any) -> Any:
        # Crossref wraps most text fields in single-element lists.
        if isinstance(value, list):
            return str(value[0]) if value else None
        return value

    @field_validator("volume", "issue", "page", mode="before")
    @classmethod
    def number_to_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("isbn", mode="before")
    @classmethod
    def isbn_as_list(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value


ContentEntry = Union[ShortFormEntry, LongFormEntry]
BiblioEntry = Annotated[
    Union[AliasEntry, ShortFormEntry, LongFormEntry],
    Field(discriminator="kind"),
]

_entry_adapter: TypeAdapter[Any] = TypeAdapter(BiblioEntry)


def infer_kind(key: str, raw: dict[str, Any]) -> str:
    if "aliasOf" in raw or "alias_of" in raw:
        return "alias"
    entry_id = raw.get("id")
    if is_doi_key(key) or (isinstance(entry_id, str) and is_doi_key(entry_id)):
        return "long"
    return "short"


def parse_entry(key: str, raw: Any) -> Union[AliasEntry, ShortFormEntry, LongFormEntry]:
    """Build a typed entry from raw source, cache or override data.

    Raises ``ValueError`` (pydantic's ``ValidationError`` included) when the
    data cannot be interpreted as an entry.
    """
    if isinstance(raw, (AliasEntry, ShortFormEntry, LongFormEntry)):
        return raw
    if not isinstance(raw, dict):
        raise ValueError(f"Entry for {key!r} must be an object, got {type(raw).__name__}")
    data = dict(raw)
    data.setdefault("kind", infer_kind(key, data))
    return _entry_adapter.validate_python(data)


def dump_entry(entry: Union[AliasEntry, ShortFormEntry, LongFormEntry]) -> dict[str, Any]:
    return entry.model_dump(by_alias=True, exclude_none=True, mode="json")


class CacheRecord(BaseModel):
    """A cached entry, usable only while the current time is before ``expires_at``."""

    key: str
    data: BiblioEntry
    expires_at: datetime

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


class InlineCitation(BaseModel):
    """Plain-data view of an inline citation link in the host document."""

    href: str
    text: str
    element_id: Optional[str] = None


class Diagnostic(BaseModel):
    message: str
    hint: Optional[str] = None
    elements: list[InlineCitation] = Field(default_factory=list)


class RewriteInstruction(BaseModel):
    """Points every inline link for ``aliases`` at one canonical anchor."""

    target_href: str
    aliases: list[str]
    elements: list[InlineCitation] = Field(default_factory=list)
    title: Optional[str] = None


class Citation(BaseModel):
    key: str
    entry: Optional[ContentEntry] = None
    anchor: str
    html: Optional[str] = None
    aliases: list[str] = Field(default_factory=list)

    @property
    def canonical_id(self) -> Optional[str]:
        return self.entry.id if self.entry else None


class RenderedSection(BaseModel):
    title: str
    citations: list[Citation] = Field(default_factory=list)
    rewrites: list[RewriteInstruction] = Field(default_factory=list)
    diagnostics: list[Diagnostic] = Field(default_factory=list)

    def markup_by_id(self) -> dict[str, str]:
        return {
            citation.canonical_id: citation.html
            for citation in self.citations
            if citation.canonical_id and citation.html is not None
        }

    def to_html(self) -> str:
        """The section as a `<dl class="bibliography">` fragment."""
        items = []
        for citation in self.citations:
            body = citation.html
            if body is None:
                body = f'<em class="bibref-not-found">{REFERENCE_NOT_FOUND}</em>'
            items.append(f'<dt id="{escape(citation.anchor)}">[{escape(citation.key)}]</dt><dd>{body}</dd>')
        return (
            f"<section><h3>{escape(self.title)}</h3>"
            f'<dl class="bibliography">{"".join(items)}</dl></section>'
        )


class ReferencesReport(BaseModel):
    sections: list[RenderedSection] = Field(default_factory=list)

    @property
    def diagnostics(self) -> list[Diagnostic]:
        return [diagnostic for section in self.sections for diagnostic in section.diagnostics]

    def markup_by_id(self) -> dict[str, str]:
        markup: dict[str, str] = {}
        for section in self.sections:
            markup.update(section.markup_by_id())
        return markup
