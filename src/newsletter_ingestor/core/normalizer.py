"""HTML to markdown-flavoured text via a BeautifulSoup tree walk."""

from __future__ import annotations

import logging
import re

from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup
from bs4.element import NavigableString, PreformattedString, Tag

from newsletter_ingestor.core.models import Message

logger = logging.getLogger(__name__)

_HEADINGS = {f"h{level}": level for level in range(1, 7)}
_BOLD = {"b", "strong"}
_ITALIC = {"i", "em"}
_BLOCK_ENDS = {"div", "tr", "table"}

_BLANK_RUN_RE = re.compile(r"\n{3,}")

# Plain bodies only: the HTML parser already decodes entities.
# &amp; goes last so "&amp;lt;" decodes to "&lt;" rather than "<"
_ENTITIES = (
    ("&nbsp;", " "),
    ("&#160;", " "),
    ("\xa0", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&apos;", "'"),
    ("&amp;", "&"),
)


class TextNormalizer:
    """Convert newsletter HTML into readable markdown.

    Headings, paragraphs, line breaks, rules, lists, emphasis and links map to
    their markdown forms; every other tag contributes only its text. Broken
    markup produces imperfect text, never an exception.
    """

    def normalize(self, html: str | None) -> str:
        """Convert an HTML fragment or document to markdown-flavoured text.

        Args:
            html: Raw HTML (plain text passes through, modulo whitespace trimming).

        Returns:
            Normalized text with trimmed lines and at most one consecutive blank line.
        """
        if not html:
            return ""

        try:
            soup = BeautifulSoup(html, "html.parser")
        except ParserRejectedMarkup as e:
            logger.warning("HTML parser rejected markup, treating it as plain text: %s", e)
            return self.normalize_plain(html)

        for element in soup(["script", "style"]):
            element.decompose()

        text = self._render_children(soup).replace("\xa0", " ")
        return self._tidy_whitespace(text)

    def normalize_plain(self, text: str | None) -> str:
        """Tidy a plain-text body without touching angle brackets.

        Autolinks such as ``<https://example.com>`` survive for link shortening.
        """
        if not text:
            return ""
        return self._tidy_whitespace(self._decode_entities(text))

    def normalize_message(self, message: Message) -> str:
        """Normalize the HTML body of a message, falling back to its plain body."""
        if message.html_body:
            normalized = self.normalize(message.html_body)
            if normalized:
                return normalized
            logger.debug("HTML body of %s normalized to nothing, using plain body", message.message_id)
        return self.normalize_plain(message.plain_body)

    def _render_children(self, node: Tag) -> str:
        return "".join(self._render(child) for child in node.children)

    def _render(self, node: object) -> str:
        # Comments, doctypes, CDATA and processing instructions
        if isinstance(node, PreformattedString):
            return ""
        if isinstance(node, NavigableString):
            return str(node)
        if not isinstance(node, Tag):
            return ""

        name = node.name
        if name in _HEADINGS:
            return f"\n\n{'#' * _HEADINGS[name]} {self._render_children(node).strip()}\n\n"
        if name == "hr":
            return "\n---\n"
        if name == "br":
            return "\n"
        if name == "p":
            return f"\n{self._render_children(node)}\n\n"
        if name == "ul":
            lines = [f"- {item}" for item in self._list_items(node)]
            return "\n" + "\n".join(lines) + "\n\n"
        if name == "ol":
            # Numbering restarts for every list
            lines = [
                f"{number}. {item}"
                for number, item in enumerate(self._list_items(node), start=1)
            ]
            return "\n" + "\n".join(lines) + "\n\n"
        if name in _BOLD:
            return f"**{self._render_children(node)}**"
        if name in _ITALIC:
            return f"*{self._render_children(node)}*"
        if name == "a":
            inner = self._render_children(node)
            href = node.get("href")
            if isinstance(href, str) and href.strip():
                return f"[{inner}]({href.strip()})"
            return inner
        if name in _BLOCK_ENDS:
            return self._render_children(node) + "\n"
        return self._render_children(node)

    def _list_items(self, list_tag: Tag) -> list[str]:
        """Item texts in document order.

        An ``<li>`` left unclosed swallows the next one as a child; both count as
        items of the same list.
        """
        items: list[str] = []
        self._collect_items(list_tag, items)
        return items

    def _collect_items(self, parent: Tag, items: list[str]) -> None:
        for child in parent.children:
            if not (isinstance(child, Tag) and child.name == "li"):
                continue
            text = "".join(
                self._render(grandchild)
                for grandchild in child.children
                if not (isinstance(grandchild, Tag) and grandchild.name == "li")
            )
            items.append(" ".join(text.split()))
            self._collect_items(child, items)

    @staticmethod
    def _decode_entities(text: str) -> str:
        for entity, replacement in _ENTITIES:
            text = text.replace(entity, replacement)
        return text

    @staticmethod
    def _tidy_whitespace(text: str) -> str:
        lines = [line.strip() for line in text.splitlines()]
        return _BLANK_RUN_RE.sub("\n\n", "\n".join(lines)).strip()


def normalize(html: str | None) -> str:
    """Module-level shortcut for ``TextNormalizer().normalize``."""
    return TextNormalizer().normalize(html)
