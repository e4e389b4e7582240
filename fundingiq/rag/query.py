"""Query pipeline: retrieval, prompt assembly and streamed generation."""
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

import structlog

from fundingiq import config
from fundingiq.languages import LANGUAGES, Language, resolve_language
from fundingiq.llm_client import ChatStream, GatewayClient, gateway_client
from fundingiq.models import SourceRef
from fundingiq.rag.retriever import RetrievalResult, Retriever, format_context
from fundingiq.schemas import QueryRequest

logger = structlog.get_logger()

PERSONA_PROMPT = """You are FundingIQ, an expert AI assistant specializing in Indian startup funding intelligence. Your role is to provide accurate, grounded insights about:

1. **Startup Funding**: Investment rounds, valuations, funding trends, deal sizes
2. **Investors**: VCs, angel investors, PE firms, their portfolios and investment patterns
3. **Government Schemes**: Startup India schemes, tax benefits, grants, subsidies
4. **Sector Trends**: Sector-wise analysis, emerging opportunities, market dynamics

Guidelines:
- Always provide specific, actionable information
- When discussing funding amounts, use appropriate units (₹Cr, $M, etc.)
- Be transparent about limitations of your knowledge and mention if data might be outdated
- For scheme and policy questions, mention eligibility criteria and deadlines when known"""

CONTEXT_INSTRUCTIONS = """
Document context:
- The knowledge base documents above were retrieved for this question
- Prioritize information from these documents over general knowledge
- Cite the document you used, e.g. [Document 1]
- If the documents don't answer the question, say so before answering from general knowledge"""


def build_system_prompt(language: Language, context: str = "") -> str:
    """Assemble the system message.

    The grounding block, when present, comes first, followed by the persona,
    the context instructions and the response-language directive.
    """
    sections = []
    if context:
        sections.append(f"KNOWLEDGE BASE CONTEXT:\n{context}")
    sections.append(PERSONA_PROMPT)
    if context:
        sections.append(CONTEXT_INSTRUCTIONS.strip())
    sections.append(language.prompt)
    return "\n\n".join(sections)


@dataclass
class PreparedQuery:
    """Everything needed to call the gateway for one query."""

    messages: List[Dict[str, str]]
    language: Language
    retrieval: Optional[RetrievalResult] = None
    sources: List[SourceRef] = field(default_factory=list)


class QueryPipeline:
    """Stateless query orchestrator; each call stands alone."""

    def __init__(
        self,
        client: Optional[GatewayClient] = None,
        retriever: Optional[Retriever] = None,
        history_limit: Optional[int] = None,
        languages: Optional[Mapping[str, Language]] = None,
    ):
        self.client = client or gateway_client
        self.retriever = retriever or Retriever()
        self.history_limit = config.HISTORY_LIMIT if history_limit is None else history_limit
        self.languages = languages if languages is not None else LANGUAGES

    async def prepare(self, request: QueryRequest) -> PreparedQuery:
        """Retrieve context and build the message list.

        Raises:
            ConfigurationError: If the gateway has no API key, before any
                other work is done
        """
        self.client.ensure_configured()

        language = resolve_language(request.language, self.languages)
        retrieval = None
        context = ""

        if request.use_knowledge_base:
            try:
                retrieval = await self.retriever.retrieve(request.query)
                context = format_context(retrieval)
            except Exception as e:
                # Answer without documents rather than fail the query
                logger.error(
                    "rag_retrieval_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )

        history = request.conversation_history
        history = history[-self.history_limit:] if self.history_limit > 0 else []

        messages = [{"role": "system", "content": build_system_prompt(language, context)}]
        messages += [{"role": turn.role, "content": turn.content} for turn in history]
        messages.append({"role": "user", "content": request.query})

        sources = retrieval.sources if retrieval else []

        logger.info(
            "query_prepared",
            language=language.code,
            history_length=len(history),
            context_length=len(context),
            num_sources=len(sources),
            query_preview=request.query[:100],
        )

        return PreparedQuery(messages=messages, language=language, retrieval=retrieval, sources=sources)

    async def stream(self, request: QueryRequest) -> Tuple[ChatStream, PreparedQuery]:
        """Prepare the query and open a streamed completion.

        The caller owns the returned stream and must close it.
        """
        prepared = await self.prepare(request)
        stream = await self.client.stream_chat(
            prepared.messages,
            temperature=config.CHAT_TEMPERATURE,
            max_tokens=config.CHAT_MAX_TOKENS,
        )
        return stream, prepared

    async def answer(self, request: QueryRequest) -> Tuple[str, PreparedQuery]:
        """Run a query to completion and return the full answer text."""
        stream, prepared = await self.stream(request)
        async with stream:
            parts = [delta async for delta in stream.iter_text()]
        return "".join(parts), prepared
