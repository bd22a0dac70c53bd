"""Custom exceptions for the Newsletter Ingestor."""


class NewsletterIngestorError(Exception):
    """Base exception for all Newsletter Ingestor errors."""


class AuthenticationError(NewsletterIngestorError):
    """Failed to authenticate with Google APIs."""


class ConfigurationError(NewsletterIngestorError):
    """A required setting or collaborator is missing; the run cannot start."""


class RateLimitError(NewsletterIngestorError):
    """Gmail API rate limit exceeded."""


class ParseError(NewsletterIngestorError):
    """Failed to parse email MIME content."""


class ModelError(NewsletterIngestorError):
    """The generative model call failed or returned an unusable payload."""


class ResponseParseError(NewsletterIngestorError):
    """No JSON array of news items could be decoded from a model response."""


class StorageError(NewsletterIngestorError):
    """Failed to read from or write to the spreadsheet store."""
