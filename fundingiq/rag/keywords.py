"""Keyword synthesis via the AI gateway.

Stands in for an embedding step: a chunk or query is reduced to a short list
of salient keyword phrases, later compared by substring overlap. The result
has no geometry; it is only a bag of terms.
"""
import asyncio
import re
from typing import List, Optional, Sequence

import structlog

from fundingiq import config
from fundingiq.llm_client import GatewayClient, gateway_client

logger = structlog.get_logger()

KEYWORD_INSTRUCTION = (
    "Extract the 5-10 most important keywords or key phrases from the following text. "
    "Return only the keywords as a comma-separated list, nothing else."
)

_SEPARATORS = re.compile(r"[,\n]")


def parse_keywords(reply: str) -> List[str]:
    """Split a comma-separated reply into lowercased, non-empty phrases."""
    keywords = []
    for part in _SEPARATORS.split(reply or ""):
        keyword = part.strip().strip("-*.\"'").strip().lower()
        if keyword:
            keywords.append(keyword)
    return keywords


class KeywordSynthesizer:
    """Reduces text to keyword phrases; never raises."""

    def __init__(
        self,
        client: Optional[GatewayClient] = None,
        model: str = None,
        input_chars: int = None,
        concurrency: int = None,
    ):
        """Initialize the synthesizer.

        Args:
            client: Gateway client (defaults to the global client)
            model: Model used for extraction (default from config)
            input_chars: Characters of input sent to the model (default from config)
            concurrency: Maximum parallel requests in synthesize_many
        """
        self.client = client or gateway_client
        self.model = model or config.KEYWORD_MODEL
        self.input_chars = config.KEYWORD_INPUT_CHARS if input_chars is None else input_chars
        self.concurrency = config.KEYWORD_CONCURRENCY if concurrency is None else concurrency

        if self.input_chars < 1:
            raise ValueError(f"input_chars must be positive, got {self.input_chars}")
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {self.concurrency}")

    async def synthesize(self, text: str) -> List[str]:
        """Extract keyword phrases from text.

        Args:
            text: Chunk or query text

        Returns:
            Lowercased keyword phrases in the model's order; an empty list
            when the gateway is unavailable or fails
        """
        if not text or not text.strip():
            return []

        messages = [
            {"role": "system", "content": KEYWORD_INSTRUCTION},
            {"role": "user", "content": text[: self.input_chars]},
        ]

        try:
            reply = await self.client.complete(messages, model=self.model, temperature=0.0)
        except Exception as e:
            # Degrade to lexical-only scoring
            logger.warning(
                "keyword_synthesis_failed",
                error=str(e),
                error_type=type(e).__name__,
                text_preview=text[:100],
            )
            return []

        keywords = parse_keywords(reply)
        logger.debug("keywords_synthesized", count=len(keywords))
        return keywords

    async def synthesize_many(self, texts: Sequence[str]) -> List[List[str]]:
        """Synthesize keywords for several texts with bounded parallelism.

        Results are returned in input order.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(text: str) -> List[str]:
            async with semaphore:
                return await self.synthesize(text)

        return list(await asyncio.gather(*(_one(text) for text in texts)))
