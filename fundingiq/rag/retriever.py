"""Retriever for keyword-overlap search over ingested chunks.

Handles:
- Query keyword synthesis
- Candidate chunk loading (a bounded linear scan, not an index)
- Additive lexical/keyword scoring and top-K selection
- Provenance lookup and context formatting
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import structlog

from fundingiq import config, db
from fundingiq.models import ChunkRecord, Document, SourceRef
from fundingiq.rag.keywords import KeywordSynthesizer

logger = structlog.get_logger()

# Query words must be longer than this to count
MIN_QUERY_WORD_LENGTH = 3

WORD_MATCH_WEIGHT = 1.0
KEYWORD_PAIR_WEIGHT = 3.0
KEYWORD_TEXT_WEIGHT = 1.0
LENGTH_BONUS = 0.5
LENGTH_BONUS_MIN_CHARS = 200


def query_words(query: str) -> List[str]:
    """Distinct lowercased whitespace-separated words longer than 3 characters."""
    words = [w for w in query.lower().split() if len(w) > MIN_QUERY_WORD_LENGTH]
    return list(dict.fromkeys(words))


def score_chunk(
    query: str,
    query_keywords: Sequence[str],
    chunk_text: str,
    chunk_keywords: Optional[Sequence[str]] = None,
) -> float:
    """Score a chunk against a query.

    - +1 per query word found in the chunk text
    - +3 per (query keyword, chunk keyword) pair where either contains the other
    - +1 per query keyword found in the chunk text
    - +0.5 if the chunk is longer than 200 characters and already scored

    All comparisons are case-insensitive substring tests.
    """
    text = chunk_text.lower()
    q_keywords = [k.lower() for k in query_keywords if k]
    c_keywords = [k.lower() for k in (chunk_keywords or []) if k]

    score = 0.0

    for word in query_words(query):
        if word in text:
            score += WORD_MATCH_WEIGHT

    for q_kw in q_keywords:
        for c_kw in c_keywords:
            if q_kw in c_kw or c_kw in q_kw:
                score += KEYWORD_PAIR_WEIGHT

    for q_kw in q_keywords:
        if q_kw in text:
            score += KEYWORD_TEXT_WEIGHT

    if score > 0 and len(chunk_text) > LENGTH_BONUS_MIN_CHARS:
        score += LENGTH_BONUS

    return score


@dataclass
class ScoredChunk:
    """A candidate chunk with its relevance score."""

    chunk: ChunkRecord
    score: float


def rank_chunks(
    query: str,
    query_keywords: Sequence[str],
    chunks: Sequence[ChunkRecord],
    top_k: int = 5,
) -> List[ScoredChunk]:
    """Score chunks and return the best `top_k` with a positive score.

    Sorting is stable, so equally scored chunks keep their input order.
    Zero-score chunks are never returned.
    """
    scored = []
    for chunk in chunks:
        score = score_chunk(query, query_keywords, chunk.content, chunk.keywords)
        if score > 0:
            scored.append(ScoredChunk(chunk=chunk, score=score))

    scored.sort(key=lambda s: s.score, reverse=True)
    return scored[:top_k]


@dataclass
class RetrievalResult:
    """Ranked chunks for one query plus the documents they came from."""

    query: str
    keywords: List[str]
    chunks: List[ScoredChunk] = field(default_factory=list)
    documents: List[Document] = field(default_factory=list)

    @property
    def sources(self) -> List[SourceRef]:
        return [SourceRef(name=d.file_name, category=d.category) for d in self.documents]


class Retriever:
    """Keyword-overlap retriever for the RAG pipeline."""

    def __init__(
        self,
        synthesizer: Optional[KeywordSynthesizer] = None,
        candidate_limit: int = None,
        top_k: int = None,
    ):
        """Initialize the retriever.

        Args:
            synthesizer: Keyword synthesizer for queries
            candidate_limit: Maximum chunks scanned per query (default from config)
            top_k: Number of results to keep (default from config)
        """
        self.synthesizer = synthesizer or KeywordSynthesizer()
        self.candidate_limit = config.CANDIDATE_LIMIT if candidate_limit is None else candidate_limit
        self.top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k

    async def retrieve(self, query: str, top_k: Optional[int] = None) -> RetrievalResult:
        """Retrieve the most relevant chunks for a query.

        Args:
            query: User query text
            top_k: Number of results to return (overrides default)

        Returns:
            RetrievalResult, possibly empty
        """
        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return RetrievalResult(query=query or "", keywords=[])

        top_k = self.top_k if top_k is None else top_k

        keywords = await self.synthesizer.synthesize(query)
        candidates = db.get_candidate_chunks(self.candidate_limit)

        if self.candidate_limit and len(candidates) >= self.candidate_limit:
            logger.warning("candidate_limit_reached", candidate_limit=self.candidate_limit)

        ranked = rank_chunks(query, keywords, candidates, top_k=top_k)

        # Distinct owning documents, in rank order
        document_ids = list(dict.fromkeys(s.chunk.document_id for s in ranked))
        documents = db.get_documents_by_ids(document_ids)

        logger.info(
            "retrieval_completed",
            query_length=len(query),
            keyword_count=len(keywords),
            candidates=len(candidates),
            results_returned=len(ranked),
            top_score=ranked[0].score if ranked else None,
        )

        return RetrievalResult(query=query, keywords=keywords, chunks=ranked, documents=documents)


def format_context(result: RetrievalResult) -> str:
    """Join retrieved chunk texts into one grounding block with ordinal tags."""
    parts = [
        f"[Document {i}]\n{scored.chunk.content.strip()}"
        for i, scored in enumerate(result.chunks, 1)
    ]
    return "\n\n".join(parts)
