import json
from pathlib import Path

import pytest

import html2anchors.core as core
from html2anchors.core import AnchorLinksOptions, Heading


def _write_document(tmp_path: Path, html: str, name: str = "document.html") -> Path:
    path = tmp_path / name
    path.write_text(html, encoding="utf-8")
    return path


SAMPLE_DOCUMENT = (
    "<html><head><title>Sample</title></head><body>\n"
    '<nav id="toc"><ul><li><a href="#intro">1 Intro</a></li></ul></nav>\n'
    '<h1 id="intro">1 Intro</h1>\n'
    "<p>Intro text.</p>\n"
    "<h2>Untitled</h2>\n"
    "<p>No id here.</p>\n"
    '<h2 id="usage">1.1 <em>Usage</em></h2>\n'
    "<pre><code>run()</code></pre>\n"
    '<h1 id="appendix">2 Appendix</h1>\n'
    "<p>Appendix text.</p>\n"
    "</body></html>\n"
)


def test_extract_headings_reads_existing_ids_in_order():
    headings = core.extract_headings(SAMPLE_DOCUMENT)

    assert headings == [
        Heading(level=1, text="1 Intro", id="intro", anchor="#intro"),
        Heading(level=2, text="1.1 Usage", id="usage", anchor="#usage"),
        Heading(level=1, text="2 Appendix", id="appendix", anchor="#appendix"),
    ]


def test_parse_toc_headings_uses_list_nesting_as_level(tmp_path):
    toc_path = _write_document(
        tmp_path,
        (
            "<html><body><ul>\n"
            '  <li><a href="#section-1">Section 1</a>\n'
            '    <ul><li><a href="document.html#subsection-1-1">Subsection 1.1</a></li></ul>\n'
            "  </li>\n"
            "  <li><a>No target</a></li>\n"
            '  <li><a href="#section-2">Section 2</a></li>\n'
            "</ul></body></html>\n"
        ),
        name="toc.html",
    )

    headings = core.parse_toc_headings(toc_path)

    assert [(h.level, h.text, h.anchor) for h in headings] == [
        (1, "Section 1", "#section-1"),
        (2, "Subsection 1.1", "#subsection-1-1"),
        (1, "Section 2", "#section-2"),
    ]


def test_parse_toc_headings_missing_file_raises_runtime_error(tmp_path):
    with pytest.raises(RuntimeError):
        core.parse_toc_headings(tmp_path / "missing.html")


def test_document_has_toc_detection():
    assert core.document_has_toc(SAMPLE_DOCUMENT) is True
    assert core.document_has_toc('<nav class="toc"><ul></ul></nav>') is True
    assert core.document_has_toc("<h1 id=\"top\">Top</h1>") is False


def test_embed_styles_inserts_before_head_end():
    html = "<html><head><title>T</title></head><body></body></html>"

    embedded = core.embed_styles(html, ".a { color: red; }\n")

    assert embedded == (
        "<html><head><title>T</title><style>\n.a { color: red; }\n</style>\n</head><body></body></html>"
    )


def test_embed_styles_without_head_prepends_style():
    embedded = core.embed_styles("<p>x</p>", ".a {}")

    assert embedded == "<style>\n.a {}\n</style>\n<p>x</p>"


def test_write_and_load_default_options_file(tmp_path):
    options_path = tmp_path / "conf" / "options.json"

    core.write_options_file(options_path)
    options = core.load_options_file(options_path)

    data = json.loads(options_path.read_text(encoding="utf-8"))
    assert data["anchorDepth"] == 3
    assert options.enabled is True
    assert options.anchor_depth == 3
    assert options.alignment == "right"
    assert options.css_classes == core.DEFAULT_CSS_CLASSES


def test_load_options_file_accepts_snake_case_keys(tmp_path):
    options_path = tmp_path / "options.json"
    options_path.write_text(json.dumps({"anchor_depth": "none", "link_text": "Top"}), encoding="utf-8")

    options = core.load_options_file(options_path)

    assert options.anchor_depth == "none"
    assert options.link_text == "Top"


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        json.dumps([1, 2]),
        json.dumps({"anchorDepth": 9}),
        json.dumps({"colour": "red"}),
        json.dumps({"enabled": "yes"}),
        json.dumps({"cssClasses": {"link": 3}}),
    ],
)
def test_load_options_file_rejects_invalid_content(tmp_path, payload):
    options_path = tmp_path / "options.json"
    options_path.write_text(payload, encoding="utf-8")

    with pytest.raises(ValueError):
        core.load_options_file(options_path)


def test_merge_options_dicts_merges_css_classes():
    merged = core.merge_options_dicts(
        core.default_options_dict(), {"cssClasses": {"link": "back-link"}, "anchorDepth": "2"}
    )

    assert merged["anchor_depth"] == "2"
    assert merged["css_classes"] == {
        "container": "anchor-link-container",
        "link": "back-link",
        "text": "anchor-link-text",
    }


def test_pipeline_writes_output_css_and_report(tmp_path):
    input_path = _write_document(tmp_path, SAMPLE_DOCUMENT)
    output_path = tmp_path / "out" / "document.html"
    css_path = tmp_path / "out" / "anchors.css"
    report_path = tmp_path / "out" / "report.json"

    result = core.run_anchor_links_pipeline(
        input_path=input_path,
        output_path=output_path,
        options=AnchorLinksOptions(enabled=True, anchor_depth=3),
        css_path=css_path,
        embed_css=True,
        report_path=report_path,
    )

    output = output_path.read_text(encoding="utf-8")
    assert result.links_inserted == 2
    assert 'href="#toc"' in output
    assert "<style>" in output
    assert output.index("<style>") < output.index("</head>")
    assert ".anchor-link:hover" in css_path.read_text(encoding="utf-8")
    report = json.loads(report_path.read_text(encoding="utf-8"))
    assert report["links_inserted"] == 2
    assert [s["has_anchor_link"] for s in report["processed_sections"]] == [False, True, True]


def test_pipeline_reads_headings_from_toc_and_respects_explicit_has_toc(tmp_path):
    input_path = _write_document(
        tmp_path,
        '<h1 id="section-1">Section 1</h1><p>One</p><h1 id="section-2">Section 2</h1><p>Two</p>',
    )
    toc_path = _write_document(
        tmp_path,
        '<ul><li><a href="#section-1">Section 1</a></li><li><a href="#section-2">Section 2</a></li></ul>',
        name="toc.html",
    )
    output_path = tmp_path / "result.html"

    result = core.run_anchor_links_pipeline(
        input_path=input_path,
        output_path=output_path,
        options=AnchorLinksOptions(enabled=True),
        toc_path=toc_path,
        has_toc=False,
        translator=core.CatalogTranslator("zh-TW"),
    )

    output = output_path.read_text(encoding="utf-8")
    assert result.links_inserted == 2
    assert output.count('href="#top"') == 2
    assert "↑ 返回目錄" in output
    assert "<style>" not in output


def test_pipeline_missing_input_raises_runtime_error(tmp_path):
    with pytest.raises(RuntimeError):
        core.run_anchor_links_pipeline(
            input_path=tmp_path / "missing.html",
            output_path=tmp_path / "out.html",
            options=AnchorLinksOptions(enabled=True),
        )


def test_safe_write_text_keeps_unix_line_endings(tmp_path):
    target = tmp_path / "nested" / "out.html"

    core.safe_write_text(target, "<p>a</p>\n<p>b</p>\n")

    assert target.read_bytes() == b"<p>a</p>\n<p>b</p>\n"
