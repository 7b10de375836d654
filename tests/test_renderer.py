"""Tests for HTML-to-markdown rendering and summaries."""

from local_feed.renderer import ELLIPSIS, SUMMARY_LIMIT, Renderer, compact_text


def test_renders_common_markup():
    renderer = Renderer()
    html = (
        "<h2>Title</h2><p>Some <strong>bold</strong> and <em>soft</em> text "
        'with a <a href="https://example.com">link</a>.</p>'
        "<ul><li>one</li><li>two</li></ul>"
    )

    md = renderer.html_to_markdown(html)

    assert "## Title" in md
    assert "**bold**" in md
    assert "_soft_" in md
    assert "[link](https://example.com)" in md
    assert "- one\n- two" in md


def test_ordered_list_and_code():
    md = Renderer().html_to_markdown(
        "<ol><li>first</li><li>second</li></ol><pre>x = 1\ny = 2</pre>"
    )

    assert "1. first\n2. second" in md
    assert "```\nx = 1\ny = 2\n```" in md


def test_blockquote_and_image():
    md = Renderer().html_to_markdown(
        '<blockquote><p>quoted</p></blockquote><img src="https://example.com/a.png" alt="pic">'
    )

    assert "> quoted" in md
    assert "![pic](https://example.com/a.png)" in md


def test_empty_input():
    assert Renderer().html_to_markdown("") == ""
    assert Renderer().html_to_markdown(None) == ""


def test_collapses_blank_lines():
    md = Renderer().html_to_markdown("<p>a</p><p></p><p></p><p>b</p>")

    assert md == "a\n\nb"


def test_summarize_clips_with_ellipsis():
    summary = Renderer().summarize("<p>" + "word " * 200 + "</p>")

    assert len(summary) <= SUMMARY_LIMIT
    assert summary.endswith(ELLIPSIS)


def test_summarize_sanitizes_first():
    summary = Renderer().summarize("<p>Hello</p><script>alert(1)</script>")

    assert summary == "Hello"


def test_compact_text():
    assert compact_text("  a \n\t b  ", 10) == "a b"
    assert compact_text("abcdefghij", 5) == "abcd" + ELLIPSIS
    assert compact_text("abc", 0) == "abc"
