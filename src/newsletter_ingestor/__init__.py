"""Newsletter Ingestor - Extract structured news items from newsletter emails."""

from newsletter_ingestor.core.extraction import ExtractionClient, GeminiModel
from newsletter_ingestor.core.link_codec import LinkCodec
from newsletter_ingestor.core.models import (
    ExtractionResult,
    Message,
    NewsItem,
    ProcessedEmailRecord,
    RunProgress,
    Thread,
)
from newsletter_ingestor.core.normalizer import TextNormalizer
from newsletter_ingestor.pipeline.orchestrator import NewsletterPipeline

__all__ = [
    "ExtractionClient",
    "ExtractionResult",
    "GeminiModel",
    "LinkCodec",
    "Message",
    "NewsItem",
    "NewsletterPipeline",
    "ProcessedEmailRecord",
    "RunProgress",
    "TextNormalizer",
    "Thread",
]
