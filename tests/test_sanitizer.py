"""Tests for HTML sanitization."""

import pytest

from local_feed.sanitizer import is_safe_url, sanitize_html


def test_strips_script_and_event_handlers():
    out = sanitize_html('<p onclick="steal()">Hello</p><script>alert(1)</script>')

    assert "<script" not in out.lower()
    assert "alert(1)" not in out
    assert "onclick" not in out
    assert "<p>Hello</p>" in out


def test_drops_denylisted_tags_with_content():
    raw = (
        "<div>keep</div><iframe src='https://evil.example'></iframe>"
        "<style>p{}</style><form><input name='q'></form><noscript>n</noscript>"
        "<object data='x.swf'></object><textarea>t</textarea>"
    )

    out = sanitize_html(raw)

    assert out == "<div>keep</div>"


def test_drops_style_and_srcdoc_attributes():
    out = sanitize_html('<p style="color:red" srcdoc="x" class="lead">Hi</p>')

    assert out == '<p class="lead">Hi</p>'


def test_strips_javascript_href_but_keeps_link_text():
    out = sanitize_html('<a href="javascript:alert(2)">click</a>')

    assert out == "<a>click</a>"


def test_strips_obfuscated_javascript_scheme():
    out = sanitize_html('<a href=" JaVa\tScRiPt:alert(1)">x</a>')

    assert "href" not in out


def test_keeps_data_image_on_img_src():
    src = "data:image/png;base64,iVBORw0KGgo="
    out = sanitize_html(f'<img src="{src}" alt="dot">')

    assert src in out


def test_rejects_data_uri_elsewhere():
    out = sanitize_html('<a href="data:text/html;base64,PHNjcmlwdD4=">x</a>')

    assert "data:" not in out


def test_drops_comments():
    out = sanitize_html("<p>a<!-- secret --></p>")

    assert out == "<p>a</p>"


def test_keeps_safe_links_and_nested_structure():
    raw = '<ul><li><a href="https://example.com/x" title="t">x</a></li></ul>'

    assert sanitize_html(raw) == raw


@pytest.mark.parametrize("raw", ["", "   ", None])
def test_blank_input(raw):
    assert sanitize_html(raw) == ""


def test_plain_text_is_preserved():
    assert sanitize_html("  just text  ") == "just text"


def test_is_deterministic():
    raw = '<p onmouseover="x()">a <b>b</b></p><script>y()</script>'

    assert sanitize_html(raw) == sanitize_html(raw)


@pytest.mark.parametrize(
    "value, tag, attr, expected",
    [
        ("https://example.com", "a", "href", True),
        ("/relative/path", "a", "href", True),
        ("", "a", "href", True),
        ("vbscript:msgbox", "a", "href", False),
        ("data:image/gif;base64,R0lG", "img", "src", True),
        ("data:image/gif;base64,R0lG", "video", "poster", False),
        ("data:text/plain,hi", "img", "src", False),
    ],
)
def test_is_safe_url(value, tag, attr, expected):
    assert is_safe_url(value, tag, attr) is expected
