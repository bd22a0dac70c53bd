"""Reversible replacement of URLs with short sequential tokens."""

from __future__ import annotations

import dataclasses
import json
import logging
import re
from typing import Any

from newsletter_ingestor.core.models import LinkMap, NewsItem

logger = logging.getLogger(__name__)

DEFAULT_LINK_PREFIX = "LINK_"

# Scheme followed by anything except whitespace, quotes, angle or square brackets
_URL_RE = re.compile(r"""https?://[^\s"'<>\[\]]+""")

# Sentence punctuation that tends to stick to the end of a URL
_TRAILING_PUNCTUATION = ".,;:!?)\"'"


class LinkCodec:
    """Shorten URLs in text to ``{prefix}{NNN}`` tokens and restore them on news items."""

    def __init__(self, prefix: str = DEFAULT_LINK_PREFIX) -> None:
        self._prefix = prefix

    @property
    def prefix(self) -> str:
        return self._prefix

    def shorten(self, text: str) -> tuple[str, LinkMap]:
        """Replace every URL in ``text`` with the next sequential token.

        Tokens are numbered from 001 in order of appearance. A URL seen twice gets
        two tokens; trailing punctuation stays in the text, outside the token.

        Returns:
            Tuple of (shortened text, token -> URL mapping).
        """
        link_map: LinkMap = {}

        def _replace(match: re.Match[str]) -> str:
            raw = match.group(0)
            url = raw.rstrip(_TRAILING_PUNCTUATION)
            if not url:
                return raw
            token = f"{self._prefix}{len(link_map) + 1:03d}"
            link_map[token] = url
            return token + raw[len(url):]

        shortened = _URL_RE.sub(_replace, text or "")
        logger.debug("Shortened %d links", len(link_map))
        return shortened, link_map

    @staticmethod
    def restore_links(items: Any, link_map: LinkMap) -> list[NewsItem]:
        """Rewrite token links on news items back to their original URLs.

        Items whose link is not a known token (the model echoed a literal URL or
        made one up) pass through unchanged.

        Args:
            items: List of NewsItem with possibly tokenized links.
            link_map: Mapping produced by ``shorten`` for the same message.

        Returns:
            New list of NewsItem; empty if ``items`` is not a list.
        """
        if not isinstance(items, list):
            logger.error(
                "Cannot restore links: expected a list of news items, got %s",
                type(items).__name__,
            )
            return []

        restored: list[NewsItem] = []
        for item in items:
            url = link_map.get(item.link)
            restored.append(dataclasses.replace(item, link=url) if url else item)
        return restored

    @staticmethod
    def serialize(link_map: LinkMap) -> str:
        """Serialize a link map for the audit column, preserving token order."""
        return json.dumps(link_map, ensure_ascii=False)
