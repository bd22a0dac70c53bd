"""News item extraction through a generative model with bounded, fixed-delay retry."""

from __future__ import annotations

import dataclasses
import json
import logging
import re
import time
from collections.abc import Mapping
from typing import Any, Protocol

import requests

from newsletter_ingestor.core.budget import MAX_CELL_LENGTH, truncate
from newsletter_ingestor.core.exceptions import ModelError, ResponseParseError
from newsletter_ingestor.core.models import (
    STATUS_FAILURE,
    STATUS_SUCCESS,
    ExtractionResult,
    NewsItem,
)

logger = logging.getLogger(__name__)

DEFAULT_GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta"

# Greedy: first "[" through last "]" of the response
_JSON_ARRAY_RE = re.compile(r"\[[\s\S]*\]")

EXTRACTION_PROMPT = """You are a news editor. Read the newsletter below and extract every distinct news item it contains.

Return ONLY a JSON array. Each element must be an object with exactly these keys:
- "title": short headline of the news item
- "description": one or two sentence summary
- "link": the link token of the item's source, copied exactly as it appears in the text (for example LINK_001)
- "category": a single broad category such as Tech, Business, Science, Politics, Culture

Skip advertisements, sponsor blocks, unsubscribe footers and social media links.
Never invent links. If the newsletter has no news, return [].

Newsletter:
---
{content}
---"""


class GenerativeModel(Protocol):
    """Anything that turns a prompt into free text."""

    def generate(self, prompt: str) -> str: ...


class GeminiModel:
    """Minimal HTTP client for the Gemini ``generateContent`` endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-1.5-flash",
        *,
        endpoint: str = DEFAULT_GEMINI_ENDPOINT,
        temperature: float = 0.2,
        top_p: float = 0.95,
        top_k: int = 40,
        max_output_tokens: int = 8192,
        timeout_seconds: float | None = 120.0,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._endpoint = endpoint.rstrip("/")
        self._generation_config = {
            "temperature": temperature,
            "topP": top_p,
            "topK": top_k,
            "maxOutputTokens": max_output_tokens,
        }
        self._timeout = timeout_seconds

    @property
    def url(self) -> str:
        return f"{self._endpoint}/models/{self._model}:generateContent"

    def build_payload(self, prompt: str) -> dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": dict(self._generation_config),
        }

    def generate(self, prompt: str) -> str:
        """Send one prompt and return the candidate text.

        Raises:
            ModelError: On network failure, non-200 status or an unexpected body.
        """
        try:
            resp = requests.post(
                self.url,
                params={"key": self._api_key},
                json=self.build_payload(prompt),
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise ModelError(f"Request to {self._model} failed: {e}") from e

        if resp.status_code != 200:
            raise ModelError(
                f"{self._model} returned HTTP {resp.status_code}: {resp.text[:500]}"
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise ModelError(f"{self._model} returned a non-JSON body: {e}") from e

        try:
            parts = body["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ModelError(f"Unexpected response shape from {self._model}: {e}") from e

        if not text:
            raise ModelError(f"{self._model} returned an empty candidate")
        return text


def parse_news_array(raw_response: str) -> list[dict[str, Any]]:
    """Locate and decode the JSON array of news objects in a free-text response.

    Raises:
        ResponseParseError: If no array is found, it is not valid JSON, or it holds
            anything other than objects.
    """
    match = _JSON_ARRAY_RE.search(raw_response or "")
    if not match:
        raise ResponseParseError("No JSON array found in model response")

    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"Invalid JSON array in model response: {e}") from e

    if not isinstance(data, list):
        raise ResponseParseError(f"Expected a JSON array, got {type(data).__name__}")
    if not all(isinstance(item, dict) for item in data):
        raise ResponseParseError("JSON array contains non-object elements")
    return data


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class ExtractionClient:
    """Turn shortened newsletter text into news items via an unreliable model.

    The model response is never trusted to be well-formed: the first JSON array is
    isolated and parsed, and any failure is retried after a fixed delay until the
    attempt budget runs out.
    """

    def __init__(
        self,
        model: GenerativeModel,
        *,
        max_retries: int = 3,
        retry_delay_seconds: float = 2.0,
        max_content_length: int = MAX_CELL_LENGTH,
        prompt_template: str = EXTRACTION_PROMPT,
    ) -> None:
        if max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")
        self._model = model
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._max_content_length = max_content_length
        self._prompt_template = prompt_template

    def build_prompt(self, shortened_content: str) -> str:
        return self._prompt_template.format(
            content=truncate(shortened_content, self._max_content_length)
        )

    def extract(
        self,
        content: str,
        shortened_content: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> ExtractionResult:
        """Extract raw news item dicts from one message.

        Args:
            content: Normalized content before link shortening (used for logging).
            shortened_content: Content with URLs replaced by tokens; sent to the model.
            metadata: Message details for log context (``message_id``, ``subject``).

        Returns:
            ExtractionResult with status success and the decoded items, or status
            failure with no raw response once every attempt has failed.
        """
        metadata = metadata or {}
        label = metadata.get("message_id") or metadata.get("subject") or "?"

        if not shortened_content.strip():
            logger.info("Message %s has no content, skipping extraction", label)
            return ExtractionResult(status=STATUS_SUCCESS)

        prompt = self.build_prompt(shortened_content)
        logger.debug(
            "Extracting from %s (%d chars, %d shortened)",
            label, len(content), len(shortened_content),
        )

        for attempt in range(1, self._max_retries + 1):
            try:
                raw_response = self._model.generate(prompt)
                items = parse_news_array(raw_response)
            except (ModelError, ResponseParseError) as e:
                logger.warning(
                    "Extraction attempt %d/%d for %s failed: %s",
                    attempt, self._max_retries, label, e,
                )
            except Exception as e:
                logger.warning(
                    "Extraction attempt %d/%d for %s raised %s: %s",
                    attempt, self._max_retries, label, type(e).__name__, e,
                )
            else:
                logger.info(
                    "Extracted %d news items from %s (attempt %d)", len(items), label, attempt
                )
                return ExtractionResult(
                    status=STATUS_SUCCESS,
                    news_count=len(items),
                    raw_response=raw_response,
                    items=tuple(items),
                    attempts=attempt,
                )

            if attempt < self._max_retries:
                time.sleep(self._retry_delay)

        logger.error("Extraction failed for %s after %d attempts", label, self._max_retries)
        return ExtractionResult(
            status=STATUS_FAILURE,
            news_count=0,
            raw_response=None,
            attempts=self._max_retries,
        )

    @staticmethod
    def validate(items: Any) -> list[NewsItem]:
        """Drop items without a link and backfill the optional fields.

        Args:
            items: Decoded item dicts (or NewsItem instances) in model order.

        Returns:
            NewsItem list in the same order, each with a non-empty link.
        """
        if not isinstance(items, (list, tuple)):
            logger.error(
                "Cannot validate news items: expected a list, got %s", type(items).__name__
            )
            return []

        valid: list[NewsItem] = []
        for index, item in enumerate(items):
            if isinstance(item, NewsItem):
                item = dataclasses.asdict(item)
            if not isinstance(item, Mapping):
                logger.warning("Dropping news item %d: not an object (%r)", index, item)
                continue

            link = _clean(item.get("link"))
            if not link:
                logger.warning(
                    "Dropping news item %d without link: %r", index, item.get("title", "")
                )
                continue

            valid.append(
                NewsItem(
                    link=link,
                    title=_clean(item.get("title")),
                    description=_clean(item.get("description")),
                    category=_clean(item.get("category")),
                )
            )

        if len(valid) < len(items):
            logger.info("Validated %d of %d news items", len(valid), len(items))
        return valid
