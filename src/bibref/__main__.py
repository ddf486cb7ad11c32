"""Command-line entry point for bibref."""

from __future__ import annotations

import argparse
import locale
import logging
import sys

from bibref.config import load_settings
from bibref.pipeline import PipelineError, load_local_biblio, run_pipeline
from bibref.services.cache import BiblioCache


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bibref",
        description="Resolve reference keys and render a bibliography.",
    )
    parser.add_argument("normative", nargs="*", help="Normative reference keys, e.g. RFC2119")
    parser.add_argument(
        "-i",
        "--informative",
        action="append",
        default=[],
        metavar="KEY",
        help="Informative reference key (repeatable).",
    )
    parser.add_argument("--local-biblio", help="JSON file of local entries overriding fetched ones.")
    parser.add_argument("--no-cache", action="store_true", help="Skip the local cache entirely.")
    parser.add_argument(
        "--clear-cache",
        action="store_true",
        help="Empty the local cache before resolving.",
    )
    parser.add_argument("--format", choices=("html", "json"), default="html")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        locale.setlocale(locale.LC_COLLATE, "")
    except locale.Error:
        logging.getLogger(__name__).debug("Keeping the C collation locale")

    settings = load_settings()
    if args.clear_cache:
        cache = BiblioCache(settings.cache_path)
        cache.clear()
        cache.close()

    try:
        local_biblio = load_local_biblio(args.local_biblio) if args.local_biblio else None
    except PipelineError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    report = run_pipeline(
        normative=list(dict.fromkeys(args.normative)),
        informative=list(dict.fromkeys(args.informative)),
        settings=settings,
        local_biblio=local_biblio,
        use_cache=not args.no_cache,
    )

    if args.format == "json":
        print(report.model_dump_json(indent=2, by_alias=True, exclude_none=True))
    else:
        for section in report.sections:
            print(section.to_html())
    for diagnostic in report.diagnostics:
        print(f"warning: {diagnostic.message}", file=sys.stderr)
        if diagnostic.hint:
            print(f"  hint: {diagnostic.hint}", file=sys.stderr)
    return 1 if report.diagnostics else 0


if __name__ == "__main__":
    raise SystemExit(main())
