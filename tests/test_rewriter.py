import json
import logging

import pytest

import texroundtrip.core as core
import texroundtrip.mathml as mathml


def _container(mathml_body: str, *, display: bool = False, attrs: str = "") -> str:
    display_attr = ' display="true"' if display else ""
    return (
        f'<mjx-container class="MathJax" jax="CHTML"{display_attr}{attrs}>'
        '<mjx-math class="MJX-TEX" aria-hidden="true"><mjx-mi class="mjx-i"><mjx-c class="mjx-c1D465"></mjx-c></mjx-mi></mjx-math>'
        '<mjx-assistive-mml unselectable="on" display="inline">'
        f'<math xmlns="http://www.w3.org/1998/Math/MathML">{mathml_body}</math>'
        "</mjx-assistive-mml></mjx-container>"
    )


def _annotated(latex: str, *, display: bool = False, attrs: str = "") -> str:
    return _container(
        f'<semantics><mrow><mi>x</mi></mrow><annotation encoding="application/x-tex">{latex}</annotation></semantics>',
        display=display,
        attrs=attrs,
    )


def _count_reconstructions(monkeypatch) -> list:
    calls = []
    original = mathml.mathml_to_latex

    def spy(math_tag, logger=None):
        calls.append(math_tag)
        return original(math_tag, logger=logger)

    monkeypatch.setattr(mathml, "mathml_to_latex", spy)
    return calls


def test_fragment_without_math_is_returned_unchanged():
    fragment = '<div class="x"><p>Plain <b>text</b><br>no math</p><script src="app.js"></script></div>'
    result = core.convert_mathjax_to_latex(fragment)
    assert result.content == fragment
    assert result.conversion_count == 0


def test_empty_fragment_is_returned_unchanged():
    result = core.convert_mathjax_to_latex("")
    assert result.content == ""
    assert result.conversion_count == 0


def test_display_annotation_scenario(monkeypatch):
    calls = _count_reconstructions(monkeypatch)
    fragment = f"<p>Energy:</p>{_annotated('E=mc^2', display=True)}<p>done</p>"

    result = core.convert_mathjax_to_latex(fragment)

    assert result.conversion_count == 1
    assert result.content.count("\\[E=mc^2\\]") == 1
    assert "mjx-container" not in result.content
    assert "<p>Energy:</p>" in result.content
    assert calls == []


def test_inline_annotation_uses_inline_delimiters():
    result = core.convert_mathjax_to_latex(f"<p>Let {_annotated('a+b')} be.</p>")
    assert result.content == "<p>Let \\(a+b\\) be.</p>"
    assert result.conversion_count == 1


def test_undefined_annotation_falls_back_to_reconstruction(monkeypatch):
    calls = _count_reconstructions(monkeypatch)
    fragment = _container(
        "<semantics><mrow><msup><mi>x</mi><mn>2</mn></msup></mrow>"
        '<annotation encoding="application/x-tex">undefined</annotation></semantics>',
        display=True,
    )

    result = core.convert_mathjax_to_latex(fragment)

    assert len(calls) == 1
    assert result.content == "\\[x^{2}\\]"
    assert result.conversion_count == 1


def test_reconstruction_path_keeps_display_mode():
    inline = core.convert_mathjax_to_latex(_container("<mfrac><mn>1</mn><mn>2</mn></mfrac>"))
    display = core.convert_mathjax_to_latex(_container("<mfrac><mn>1</mn><mn>2</mn></mfrac>", display=True))
    assert inline.content == "\\(\\frac{1}{2}\\)"
    assert display.content == "\\[\\frac{1}{2}\\]"


def test_failed_container_is_left_untouched_and_others_still_convert():
    broken = '<mjx-container class="MathJax" jax="CHTML"><mjx-math></mjx-math></mjx-container>'
    empty = _container("<mo>&#x2062;</mo>")
    fragment = f"<p>{broken}</p><p>{_annotated('y')}</p><p>{empty}</p>"

    result = core.convert_mathjax_to_latex(fragment)

    assert result.conversion_count == 1
    assert result.failed_count == 2
    assert result.content.count("<mjx-container") == 2
    assert "\\(y\\)" in result.content


def test_html_special_characters_are_escaped():
    result = core.convert_mathjax_to_latex(_annotated("a &lt; b &amp; c"))
    assert result.content == "\\(a &lt; b &amp; c\\)"


def test_legacy_wrapper_keeps_span_and_replaces_inner_content():
    legacy = (
        '<span class="math display">'
        '<mjx-container class="MathJax" jax="CHTML">'
        "<mjx-math></mjx-math>"
        '<math><semantics><mrow><mi>z</mi></mrow><annotation encoding="TeX">z_1</annotation></semantics></math>'
        "</mjx-container></span>"
    )

    result = core.convert_mathjax_to_latex(f"<p>{legacy}</p>")

    assert result.content == '<p><span class="math display">\\[z_1\\]</span></p>'
    assert result.conversion_count == 1
    assert result.failed_count == 0


def test_modern_container_inside_legacy_wrapper_converts_once():
    fragment = f'<span class="math inline">{_annotated("k")}</span>'
    result = core.convert_mathjax_to_latex(fragment)
    assert result.content == '<span class="math inline">\\(k\\)</span>'
    assert result.conversion_count == 1


def test_failed_container_inside_legacy_wrapper_is_attempted_once(monkeypatch, caplog):
    calls = _count_reconstructions(monkeypatch)
    fragment = f'<span class="math inline">{_container("<mo>&#x2062;</mo>")}</span>'
    log = logging.getLogger("tests.rewriter")

    with caplog.at_level(logging.WARNING, logger="tests.rewriter"):
        result = core.convert_mathjax_to_latex(fragment, logger=log)

    assert len(calls) == 1
    assert result.content == fragment
    assert result.conversion_count == 0
    assert result.failed_count == 1
    messages = [record.getMessage() for record in caplog.records]
    assert any("container 0" in message for message in messages)
    assert not any("legacy wrapper" in message for message in messages)


def test_engine_scripts_and_styles_removed_but_unrelated_blocks_kept():
    fragment = (
        '<script id="MathJax-script" src="https://cdn.example/mathjax/tex-chtml.js"></script>'
        '<style id="mathjax-styles">mjx-container{}</style>'
        '<script src="app.js">run()</script>'
        "<style>p{color:red}</style>"
        "<p>text</p>"
    )

    result = core.convert_mathjax_to_latex(fragment)

    assert "tex-chtml" not in result.content
    assert "mathjax-styles" not in result.content
    assert '<script src="app.js">run()</script>' in result.content
    assert "<style>p{color:red}</style>" in result.content
    assert result.scripts_removed == 2
    assert result.conversion_count == 0


def test_custom_engine_token_is_honoured():
    fragment = '<script src="katex.js"></script><script src="mathjax.js"></script>'
    result = core.convert_mathjax_to_latex(fragment, config=core.RewriterConfig(engine_token="katex"))
    assert result.content == '<script src="mathjax.js"></script>'


def test_tikz_placeholders_are_skipped():
    fragment = (
        f'<div data-skip-latex-export="true">{_annotated("t")}</div>'
        f'{_annotated("u", attrs=" data-tikz-math")}'
    )
    result = core.convert_mathjax_to_latex(fragment)
    assert result.content == fragment
    assert result.skipped_count == 2
    assert result.conversion_count == 0


def test_restore_environments_uses_stored_environment_and_heuristics():
    cfg = core.RewriterConfig(restore_environments=True)
    stored = f'<div data-math-env="align">{_annotated("a &amp;= b", display=True)}</div>'
    heuristic = _annotated("a &amp;= b \\\\ c &amp;= d", display=True)

    stored_result = core.convert_mathjax_to_latex(stored, config=cfg)
    heuristic_result = core.convert_mathjax_to_latex(heuristic, config=cfg)
    plain_result = core.convert_mathjax_to_latex(_annotated("q", display=True), config=cfg)

    assert "\\begin{align}\na &amp;= b\n\\end{align}" in stored_result.content
    assert heuristic_result.content.startswith("\\begin{align*}")
    assert plain_result.content == "\\[q\\]"


def test_invalid_equation_nesting_is_cleaned():
    latex = "\\begin{equation}\\begin{align}x\\end{align}\\end{equation}"
    result = core.convert_mathjax_to_latex(_annotated(latex, display=True))
    assert result.content == "\\[\\begin{align}x\\end{align}\\]"

    kept = core.convert_mathjax_to_latex(
        _annotated(latex, display=True), config=core.RewriterConfig(clean_invalid_nesting=False)
    )
    assert "\\begin{equation}" in kept.content


def test_content_over_limit_is_returned_unchanged():
    fragment = _annotated("x")
    result = core.convert_mathjax_to_latex(fragment, config=core.RewriterConfig(max_content_chars=10))
    assert result.content == fragment
    assert result.conversion_count == 0


def test_beautifulsoup_loader_supplies_parser_and_string_type():
    BeautifulSoup, NavigableString = core._load_beautifulsoup()
    soup = BeautifulSoup("<p>x</p>", "html.parser")
    soup.p.string.replace_with(NavigableString("a < b"))
    assert str(soup) == "<p>a &lt; b</p>"


def test_whole_fragment_failure_returns_original(monkeypatch):
    def boom():
        raise RuntimeError("beautifulsoup4 not available: test")

    monkeypatch.setattr(core, "_load_beautifulsoup", boom)
    fragment = _annotated("x")
    result = core.convert_mathjax_to_latex(fragment)
    assert result.content == fragment
    assert result.conversion_count == 0


def test_injected_logger_receives_diagnostics(caplog):
    logger = logging.getLogger("tests.rewriter")
    broken = '<mjx-container class="MathJax"><mjx-math></mjx-math></mjx-container>'

    with caplog.at_level(logging.DEBUG, logger="tests.rewriter"):
        core.convert_mathjax_to_latex(broken, logger=logger)

    names = {record.name for record in caplog.records}
    assert "tests.rewriter" in names
    assert any("leaving as-is" in record.getMessage() for record in caplog.records)


def test_config_file_round_trip(tmp_path):
    path = tmp_path / "cfg" / "texroundtrip.json"
    core.write_config_file(path)
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["rewriter"]["engine_token"] == "mathjax"
    assert data["metadata"]["title_selectors"][0] == "h1.title"

    data["rewriter"]["annotation_encodings"] = ["TeX"]
    data["rewriter"]["restore_environments"] = True
    data["metadata"]["author_selectors"] = [".byline"]
    path.write_text(json.dumps(data), encoding="utf-8")

    rewriter_cfg, metadata_cfg = core.load_config_file(path)
    assert rewriter_cfg.annotation_encodings == ("TeX",)
    assert rewriter_cfg.restore_environments is True
    assert metadata_cfg.author_selectors == (".byline",)


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        "[]",
        '{"rewriter": {"annotation_encodings": "TeX"}}',
        '{"rewriter": {"max_content_chars": -1}}',
        '{"metadata": {"default_title": 3}}',
    ],
)
def test_load_config_file_rejects_malformed_payloads(tmp_path, payload):
    path = tmp_path / "bad.json"
    path.write_text(payload, encoding="utf-8")
    with pytest.raises(ValueError):
        core.load_config_file(path)


def test_setup_logging_configures_project_logger():
    core.setup_logging(verbose=True, debug=False)
    assert core.LOG.level == logging.INFO
    assert core.LOG.propagate is False
    core.setup_logging(verbose=False, debug=True)
    assert core.LOG.level == logging.DEBUG
    assert all(handler.level == logging.DEBUG for handler in core.LOG.handlers)
