"""Error taxonomy for ingestion and query handling.

Every error carries the HTTP status it maps to and a short message that is
safe to show to the user.
"""
from typing import Optional


class FundingIQError(Exception):
    """Base class for errors raised by the knowledge service."""

    status_code = 500
    default_message = "An error occurred processing your request. Please try again."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigurationError(FundingIQError):
    """Gateway credentials are missing."""

    default_message = "AI service not configured"


class DocumentNotFoundError(FundingIQError):
    status_code = 404
    default_message = "Document not found"


class DocumentStateError(FundingIQError):
    """Document is not in a status that allows the requested transition."""

    status_code = 409
    default_message = "Document has already been processed"


class FetchError(FundingIQError):
    """Stored object for a document is missing or unreadable."""

    status_code = 404
    default_message = "Failed to download file"


class ExtractionError(FundingIQError):
    """Extracted text is below the minimum viable length."""

    status_code = 400
    default_message = "Could not extract enough text from the document"


class DocumentParseError(ExtractionError):
    """Structured document (JSON) is syntactically invalid."""

    default_message = "Document could not be parsed"


class UpstreamError(FundingIQError):
    """Generation service returned a non-success response."""


class UpstreamRateLimited(UpstreamError):
    status_code = 429
    default_message = "Rate limit exceeded. Please try again in a moment."


class UpstreamQuotaExhausted(UpstreamError):
    status_code = 402
    default_message = "AI credits exhausted. Please add credits to continue."


class UpstreamGenerationFailure(UpstreamError):
    default_message = "Failed to generate response"


class StreamTruncatedError(UpstreamError):
    """Streamed completion ended before the [DONE] sentinel."""

    default_message = "Response stream ended unexpectedly"
