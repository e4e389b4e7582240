"""Plain-text extraction from uploaded documents.

Handles:
- Text, markdown and CSV passthrough
- JSON re-serialization with stable indentation
- Best-effort PDF text scraping

The PDF scraper is a heuristic, not a parser: it reads literal strings shown
inside BT/ET text objects and printable runs in raw streams. Compressed
content streams, CID fonts and hex strings are not decoded, so many PDFs
yield little or garbled text.
"""
import json
import re
from typing import List, Optional

import structlog

from fundingiq.errors import DocumentParseError, ExtractionError
from fundingiq.models import resolve_kind

logger = structlog.get_logger()

# Below this many characters a document is considered unreadable
MIN_EXTRACTED_CHARS = 10


class TextExtractor:
    """Extracts plain text from document bytes based on the declared type."""

    # Text objects: BT ... ET
    TEXT_OBJECT_PATTERN = re.compile(r"\bBT\b(.*?)\bET\b", re.DOTALL)

    # (string) Tj  or  [(str) -250 (ing)] TJ
    SHOW_TEXT_PATTERN = re.compile(
        r"\(((?:\\.|[^\\()])*)\)\s*Tj"
        r"|\[((?:\((?:\\.|[^\\()])*\)|[^\]()])*)\]\s*TJ",
        re.DOTALL,
    )
    LITERAL_STRING_PATTERN = re.compile(r"\(((?:\\.|[^\\()])*)\)", re.DOTALL)
    ESCAPE_PATTERN = re.compile(r"\\([()\\nrt])")
    ESCAPES = {"(": "(", ")": ")", "\\": "\\", "n": "\n", "r": "\r", "t": "\t"}

    STREAM_PATTERN = re.compile(rb"(?<!end)stream\r?\n(.*?)\r?\n?endstream", re.DOTALL)
    STREAM_RUN_PATTERN = re.compile(rb"[\x20-\x7e]{10,}")
    FALLBACK_RUN_PATTERN = re.compile(rb"[\x20-\x7e]{20,}")

    # Primary PDF scan results shorter than this trigger the whole-file scan
    PDF_FALLBACK_THRESHOLD = 100

    def extract(
        self,
        data: bytes,
        declared_type: Optional[str],
        file_name: Optional[str] = None,
    ) -> str:
        """Extract plain text from document bytes.

        Args:
            data: Raw file bytes
            declared_type: MIME type or extension declared at upload
            file_name: Original file name, used when the type is generic

        Returns:
            Extracted text

        Raises:
            DocumentParseError: If a JSON document is invalid
            ExtractionError: If fewer than MIN_EXTRACTED_CHARS characters
                were extracted
        """
        kind = resolve_kind(declared_type, file_name)

        if kind == "json":
            text = self._extract_json(data)
        elif kind == "pdf":
            text = self._extract_pdf(data)
        else:
            text = self._decode(data)

        extracted_length = len(text.strip())
        logger.info(
            "text_extracted",
            kind=kind,
            declared_type=declared_type,
            byte_size=len(data),
            extracted_length=extracted_length,
        )

        if extracted_length < MIN_EXTRACTED_CHARS:
            raise ExtractionError(
                f"Could not extract enough text from the document "
                f"({extracted_length} characters)"
            )

        return text

    def _decode(self, data: bytes) -> str:
        return data.decode("utf-8-sig", errors="replace")

    def _extract_json(self, data: bytes) -> str:
        try:
            value = json.loads(self._decode(data))
        except json.JSONDecodeError as e:
            logger.error("json_parse_failed", error=str(e))
            raise DocumentParseError(f"Invalid JSON document: {e.msg} (line {e.lineno})") from e
        return json.dumps(value, indent=2, ensure_ascii=False)

    def _unescape(self, literal: str) -> str:
        return self.ESCAPE_PATTERN.sub(lambda m: self.ESCAPES[m.group(1)], literal)

    def _text_object_strings(self, content: str) -> List[str]:
        """Literal strings shown by Tj/TJ inside BT/ET text objects."""
        fragments = []
        for block in self.TEXT_OBJECT_PATTERN.finditer(content):
            for show in self.SHOW_TEXT_PATTERN.finditer(block.group(1)):
                if show.group(1) is not None:
                    fragments.append(self._unescape(show.group(1)))
                else:
                    parts = self.LITERAL_STRING_PATTERN.findall(show.group(2))
                    fragments.append("".join(self._unescape(p) for p in parts))
        return fragments

    def _stream_runs(self, data: bytes) -> List[str]:
        """Printable ASCII runs found inside raw stream blocks."""
        runs = []
        for stream in self.STREAM_PATTERN.finditer(data):
            for run in self.STREAM_RUN_PATTERN.findall(stream.group(1)):
                runs.append(run.decode("ascii"))
        return runs

    def _extract_pdf(self, data: bytes) -> str:
        content = data.decode("latin-1")

        fragments = self._text_object_strings(content) + self._stream_runs(data)
        text = " ".join(f.strip() for f in fragments if f.strip())

        if len(text) < self.PDF_FALLBACK_THRESHOLD:
            fallback = " ".join(
                run.decode("ascii").strip()
                for run in self.FALLBACK_RUN_PATTERN.findall(data)
            )
            logger.debug(
                "pdf_fallback_scan",
                primary_length=len(text),
                fallback_length=len(fallback),
            )
            if len(fallback) > len(text):
                text = fallback

        return text


# Singleton instance for convenience
_extractor_instance = None


def get_extractor() -> TextExtractor:
    """Get a singleton text extractor instance."""
    global _extractor_instance
    if _extractor_instance is None:
        _extractor_instance = TextExtractor()
    return _extractor_instance


def extract_text(data: bytes, declared_type: Optional[str], file_name: Optional[str] = None) -> str:
    """Extract text using the default extractor (convenience function)."""
    return get_extractor().extract(data, declared_type, file_name)
