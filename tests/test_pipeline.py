import json

import pytest

from bibref import __main__ as cli
from bibref.pipeline import PipelineError, load_local_biblio, run_pipeline
from bibref.services.sources import CrossrefSource, FetchResult, SpecrefSource

SPECREF_DATA = {
    "RFC2119": {"title": "Key words for use in RFCs", "href": "https://www.rfc-editor.org/rfc/rfc2119"},
    "HTML5": {"aliasOf": "HTML"},
    "HTML": {"title": "HTML Standard", "href": "https://html.spec.whatwg.org/"},
}


def fake_specref(calls):
    def fetch(self, keys, force_update=False):
        calls.append(list(keys))
        entries = {key: SPECREF_DATA[key] for key in keys if key in SPECREF_DATA}
        # Specref also answers with the targets of the aliases it returns.
        for entry in list(entries.values()):
            if "aliasOf" in entry:
                entries[entry["aliasOf"]] = SPECREF_DATA[entry["aliasOf"]]
        return FetchResult(entries=entries)

    return fetch


def test_pipeline_renders_sections_and_caches(monkeypatch, sample_settings):
    calls = []
    monkeypatch.setattr(SpecrefSource, "fetch", fake_specref(calls))
    monkeypatch.setattr(CrossrefSource, "fetch", lambda self, keys: None)

    report = run_pipeline(["RFC2119"], ["HTML", "doi:10.9/gone"], settings=sample_settings)

    assert calls == [["HTML", "RFC2119"]]
    normative, informative = report.sections
    assert normative.citations[0].html.startswith('<a href="https://www.rfc-editor.org/rfc/rfc2119">')
    assert [citation.key for citation in informative.citations] == ["doi:10.9/gone", "HTML"]
    assert [diagnostic.message for diagnostic in report.diagnostics] == [
        'Reference "[doi:10.9/gone]" not found.'
    ]

    # Second pass is served from the local cache.
    monkeypatch.setattr(SpecrefSource, "fetch", lambda self, keys, force_update=False: None)
    again = run_pipeline(["RFC2119"], ["HTML"], settings=sample_settings)
    assert again.sections[0].citations[0].entry.title == "Key words for use in RFCs"
    assert again.sections[1].citations[0].entry.title == "HTML Standard"


def test_pipeline_without_cache_always_fetches(monkeypatch, sample_settings):
    calls = []
    monkeypatch.setattr(SpecrefSource, "fetch", fake_specref(calls))

    run_pipeline(["RFC2119"], [], settings=sample_settings, use_cache=False)
    run_pipeline(["RFC2119"], [], settings=sample_settings, use_cache=False)

    assert calls == [["RFC2119"], ["RFC2119"]]
    assert not sample_settings.cache_path.exists()


def test_pipeline_local_overrides_and_aliases(monkeypatch, sample_settings):
    calls = []
    monkeypatch.setattr(SpecrefSource, "fetch", fake_specref(calls))

    report = run_pipeline(
        ["local-html", "RFC2119"],
        [],
        settings=sample_settings,
        local_biblio={"local-html": {"aliasOf": "HTML"}, "RFC2119": {"title": "My RFC 2119"}},
    )

    assert calls == [["HTML"]]
    titles = {citation.key: citation.entry.title for citation in report.sections[0].citations}
    assert titles == {"local-html": "HTML Standard", "RFC2119": "My RFC 2119"}


def test_load_local_biblio(tmp_path):
    path = tmp_path / "local.json"
    path.write_text(json.dumps({"mine": {"title": "Mine"}}), encoding="utf-8")
    assert load_local_biblio(path) == {"mine": {"title": "Mine"}}

    with pytest.raises(PipelineError):
        load_local_biblio(tmp_path / "missing.json")

    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(PipelineError):
        load_local_biblio(path)

    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(PipelineError):
        load_local_biblio(path)


def test_cli_prints_bibliography(monkeypatch, sample_settings, capsys):
    monkeypatch.setattr(cli, "load_settings", lambda: sample_settings)
    monkeypatch.setattr(SpecrefSource, "fetch", fake_specref([]))

    exit_code = cli.main(["RFC2119", "-i", "HTML5"])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "<h3>Normative references</h3>" in out
    assert '<dt id="bib-html5">[HTML5]</dt>' in out


def test_cli_reports_missing_references(monkeypatch, sample_settings, capsys):
    monkeypatch.setattr(cli, "load_settings", lambda: sample_settings)
    monkeypatch.setattr(SpecrefSource, "fetch", lambda self, keys, force_update=False: None)

    exit_code = cli.main(["NOPE", "--format", "json", "--no-cache"])

    captured = capsys.readouterr()
    assert exit_code == 1
    assert json.loads(captured.out)["sections"][0]["citations"][0]["key"] == "NOPE"
    assert 'Reference "[NOPE]" not found.' in captured.err


def test_cli_rejects_unreadable_local_biblio(monkeypatch, sample_settings, tmp_path, capsys):
    monkeypatch.setattr(cli, "load_settings", lambda: sample_settings)

    exit_code = cli.main(["RFC2119", "--local-biblio", str(tmp_path / "missing.json")])

    assert exit_code == 2
    assert "Cannot read local bibliography" in capsys.readouterr().err


def test_cli_collapses_repeated_keys(monkeypatch, sample_settings, capsys):
    monkeypatch.setattr(cli, "load_settings", lambda: sample_settings)
    monkeypatch.setattr(SpecrefSource, "fetch", fake_specref([]))

    exit_code = cli.main(["NOPE", "NOPE", "RFC2119", "RFC2119", "--format", "json", "--no-cache"])

    report = json.loads(capsys.readouterr().out)
    citations = report["sections"][0]["citations"]
    assert exit_code == 1
    assert [citation["key"] for citation in citations] == ["NOPE", "RFC2119"]
    assert citations[1]["aliases"] == ["RFC2119"]
    assert len(report["sections"][0]["diagnostics"]) == 1
