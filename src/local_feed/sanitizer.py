"""Strip dangerous markup from feed-supplied HTML."""

import logging
import re

from bs4 import BeautifulSoup, Comment, Tag

logger = logging.getLogger(__name__)

BLOCKED_TAGS = frozenset({
    "base",
    "embed",
    "form",
    "iframe",
    "input",
    "link",
    "meta",
    "noscript",
    "object",
    "script",
    "style",
    "textarea",
})

URL_ATTRS = frozenset({"href", "src", "poster", "cite", "action", "formaction", "data"})

# Browsers ignore control characters and whitespace inside a scheme ("java\tscript:").
_SCHEME_NOISE = re.compile(r"[\x00-\x20\x7f]+")


def sanitize_html(raw: str | None) -> str:
    """Return ``raw`` with scripts, event handlers and unsafe URLs removed.

    Comments are dropped; all other structure and text is kept. The function
    never raises: if the markup cannot be processed, the trimmed input is
    returned unchanged.
    """
    raw = (raw or "").strip()
    if not raw:
        return ""

    try:
        soup = BeautifulSoup(f"<body>{raw}</body>", "lxml")
        body = soup.body
        if body is None:
            return raw
        _sanitize_tree(body)
        return "".join(str(node) for node in body.contents).strip()
    except Exception as e:
        logger.debug("Sanitizer fell back to raw input: %s", e)
        return raw


def _sanitize_tree(root: Tag) -> None:
    """Filter ``root`` in place, walking with an explicit stack."""
    stack = [root]
    while stack:
        node = stack.pop()
        for child in list(node.children):
            if isinstance(child, Comment):
                child.extract()
            elif isinstance(child, Tag):
                tag = (child.name or "").strip().lower()
                if tag in BLOCKED_TAGS:
                    child.decompose()
                    continue
                _sanitize_attrs(child, tag)
                stack.append(child)


def _sanitize_attrs(node: Tag, tag: str) -> None:
    for name, value in list(node.attrs.items()):
        key = name.strip().lower()
        if not key or key.startswith("on") or key in ("style", "srcdoc"):
            del node.attrs[name]
        elif key in URL_ATTRS and not is_safe_url(value, tag, key):
            del node.attrs[name]


def is_safe_url(value, tag: str, attr: str) -> bool:
    """Check a URL-bearing attribute value against the scheme policy."""
    if isinstance(value, (list, tuple)):
        value = " ".join(value)
    url = _SCHEME_NOISE.sub("", str(value)).lower()
    if not url:
        return True
    if url.startswith(("javascript:", "vbscript:")):
        return False
    if url.startswith("data:"):
        return tag == "img" and attr == "src" and url.startswith("data:image/")
    return True
