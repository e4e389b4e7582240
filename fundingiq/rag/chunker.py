"""Text chunking with overlap for the RAG pipeline.

Implements character-based chunking over whitespace-normalized text.
"""
import re
from dataclasses import dataclass
from typing import List, Optional

import structlog

from fundingiq import config

logger = structlog.get_logger()

_WHITESPACE_RUN = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    """Collapse whitespace runs to a single space and trim the ends."""
    return _WHITESPACE_RUN.sub(" ", text).strip()


@dataclass
class TextChunk:
    """Represents a chunk of text with position information.

    Positions refer to the normalized text.
    """

    content: str
    char_start: int
    char_end: int
    chunk_index: int


class TextChunker:
    """Character-based text chunker with overlap support."""

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        min_chunk_length: Optional[int] = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each chunk in characters (default from config)
            chunk_overlap: Overlap between chunks in characters (default from config)
            min_chunk_length: Chunks whose trimmed length doesn't exceed this
                are dropped (default from config)

        Raises:
            ValueError: If overlap is negative or not smaller than chunk size
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        self.min_chunk_length = (
            config.MIN_CHUNK_LENGTH if min_chunk_length is None else min_chunk_length
        )

        # The window must advance on every step
        if self.chunk_overlap < 0:
            raise ValueError(f"Overlap ({self.chunk_overlap}) must not be negative")
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            min_chunk_length=self.min_chunk_length,
        )

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into overlapping chunks.

        The text is whitespace-normalized first. A window of `chunk_size`
        characters slides forward by `chunk_size - chunk_overlap` until it
        passes the end of the text; windows too short after trimming are
        skipped and do not consume a chunk index.

        Args:
            text: Text to chunk

        Returns:
            List of TextChunk objects
        """
        normalized = normalize_whitespace(text or "")
        text_length = len(normalized)
        step = self.chunk_size - self.chunk_overlap

        chunks = []
        start = 0

        while start < text_length:
            end = min(start + self.chunk_size, text_length)
            window = normalized[start:end]

            if len(window.strip()) > self.min_chunk_length:
                chunks.append(
                    TextChunk(
                        content=window,
                        char_start=start,
                        char_end=end,
                        chunk_index=len(chunks),
                    )
                )

            start += step

        logger.info(
            "text_chunked",
            text_length=text_length,
            chunk_count=len(chunks),
        )

        return chunks

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of TextChunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
            }

        chunk_sizes = [len(c.content) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }


def chunk_text(
    text: str,
    chunk_size: Optional[int] = None,
    chunk_overlap: Optional[int] = None,
    min_chunk_length: Optional[int] = None,
) -> List[str]:
    """Chunk text and return just the chunk strings (convenience function)."""
    chunker = TextChunker(chunk_size, chunk_overlap, min_chunk_length)
    return [chunk.content for chunk in chunker.chunk_text(text)]
