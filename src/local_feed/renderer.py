"""Render sanitized HTML as markdown-flavoured text."""

import logging
import re

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from local_feed.sanitizer import sanitize_html

logger = logging.getLogger(__name__)

SUMMARY_LIMIT = 280
FALLBACK_LIMIT = 4000
ELLIPSIS = "…"

_WHITESPACE = re.compile(r"\s+")
_BLANK_LINES = re.compile(r"\n{3,}")

_BLOCK_TAGS = frozenset({
    "address", "article", "aside", "dd", "details", "div", "dl", "dt",
    "figcaption", "figure", "footer", "header", "main", "nav", "p",
    "section", "summary", "table", "tbody", "thead", "tfoot",
})
_SKIP_TAGS = frozenset({"script", "style", "head", "title", "template"})


def compact_text(value: str | None, limit: int) -> str:
    """Collapse whitespace and clip to ``limit`` characters with an ellipsis."""
    value = _WHITESPACE.sub(" ", value or "").strip()
    if limit <= 0 or len(value) <= limit:
        return value
    return value[: limit - 1].rstrip() + ELLIPSIS


class Renderer:
    """Converts HTML fragments into markdown-like plain text."""

    def html_to_markdown(self, html: str | None) -> str:
        html = (html or "").strip()
        if not html:
            return ""
        try:
            soup = BeautifulSoup(html, "lxml")
            root = soup.body or soup
            text = self._render_children(root)
        except Exception as e:
            logger.debug("Markdown conversion failed, using compact text: %s", e)
            return compact_text(html, FALLBACK_LIMIT)
        return _tidy(text)

    def summarize(self, raw: str | None) -> str:
        """Sanitize, render and clip ``raw`` to a short summary."""
        raw = (raw or "").strip()
        if not raw:
            return ""
        return compact_text(self.html_to_markdown(sanitize_html(raw)), SUMMARY_LIMIT)

    def _render_children(self, node: Tag) -> str:
        return "".join(self._render(child) for child in node.children)

    def _render(self, node) -> str:
        if isinstance(node, Comment):
            return ""
        if isinstance(node, NavigableString):
            return _WHITESPACE.sub(" ", str(node))
        if not isinstance(node, Tag):
            return ""

        name = (node.name or "").lower()
        if name in _SKIP_TAGS:
            return ""
        if name == "br":
            return "\n"
        if name == "hr":
            return "\n\n---\n\n"
        if name == "pre":
            return "\n\n```\n" + node.get_text().strip("\n") + "\n```\n\n"
        if name == "img":
            src = node.get("src") or ""
            if not src:
                return ""
            return f"![{node.get('alt') or ''}]({src})"

        inner = self._render_children(node)
        if len(name) == 2 and name[0] == "h" and name[1] in "123456":
            return f"\n\n{'#' * int(name[1])} {inner.strip()}\n\n"
        if name in ("strong", "b"):
            return f"**{inner.strip()}**" if inner.strip() else inner
        if name in ("em", "i"):
            return f"_{inner.strip()}_" if inner.strip() else inner
        if name == "code":
            return f"`{inner.strip()}`" if inner.strip() else ""
        if name == "a":
            href = node.get("href") or ""
            text = inner.strip()
            if not href:
                return inner
            return f"[{text or href}]({href})"
        if name in ("ul", "ol"):
            return "\n\n" + self._render_list(node, ordered=name == "ol") + "\n\n"
        if name == "li":
            return f"\n- {inner.strip()}\n"
        if name == "blockquote":
            lines = _tidy(inner).splitlines()
            return "\n\n" + "\n".join(f"> {line}".rstrip() for line in lines) + "\n\n"
        if name == "tr":
            cells = [
                self._render_children(cell).strip()
                for cell in node.find_all(["td", "th"], recursive=False)
            ]
            return "\n| " + " | ".join(cells) + " |"
        if name in _BLOCK_TAGS:
            return f"\n\n{inner.strip()}\n\n"
        return inner

    def _render_list(self, node: Tag, ordered: bool) -> str:
        lines = []
        index = 1
        for child in node.children:
            if not isinstance(child, Tag) or child.name != "li":
                continue
            marker = f"{index}." if ordered else "-"
            body = _tidy(self._render_children(child))
            first, *rest = body.splitlines() or [""]
            lines.append(f"{marker} {first}")
            lines.extend(rest)
            index += 1
        return "\n".join(lines)


def _tidy(text: str) -> str:
    """Trim lines outside code fences and squeeze runs of blank lines."""
    lines = []
    in_fence = False
    for line in text.splitlines():
        if line.strip() == "```":
            in_fence = not in_fence
            lines.append("```")
        elif in_fence:
            lines.append(line.rstrip())
        else:
            lines.append(line.strip())
    return _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()
