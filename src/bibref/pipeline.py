"""High-level orchestration of one references render pass."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

from bibref.config import Settings
from bibref.formatter import CitationFormatter
from bibref.models import InlineCitation, ReferencesReport
from bibref.services.cache import BiblioCache, NullCache
from bibref.services.resolver import ReferenceResolver

logger = logging.getLogger(__name__)


class PipelineError(RuntimeError):
    """Raised when the inputs of a render pass are unusable."""


def load_local_biblio(path: str | Path) -> dict[str, Any]:
    """Read a JSON override table mapping reference keys to entries."""
    local_path = Path(path)
    try:
        data = json.loads(local_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise PipelineError(f"Cannot read local bibliography at {local_path}: {exc}") from exc
    except ValueError as exc:
        raise PipelineError(f"Local bibliography at {local_path} is not valid JSON") from exc
    if not isinstance(data, dict):
        raise PipelineError(f"Local bibliography at {local_path} must be a JSON object")
    return data


def run_pipeline(
    normative: Sequence[str],
    informative: Sequence[str],
    settings: Settings,
    local_biblio: Optional[Mapping[str, Any]] = None,
    inline_citations: Iterable[InlineCitation] = (),
    use_cache: bool = True,
) -> ReferencesReport:
    """Resolve every key and render the normative and informative sections."""
    cache = BiblioCache(settings.cache_path) if use_cache else NullCache()
    resolver = ReferenceResolver(settings=settings, cache=cache)
    try:
        store, informative = resolver.run(normative, informative, local_biblio)
    finally:
        if isinstance(cache, BiblioCache):
            cache.close()

    formatter = CitationFormatter(store, search_url=settings.search_url)
    report = formatter.render_references(normative, informative, inline_citations)
    logger.info(
        "Rendered %d sections with %d diagnostics",
        len(report.sections),
        len(report.diagnostics),
    )
    return report
