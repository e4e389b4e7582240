"""Tests for query preparation and streamed answers."""
import pytest

from fundingiq.errors import ConfigurationError, UpstreamRateLimited
from fundingiq.languages import LANGUAGES, resolve_language
from fundingiq.rag.keywords import KeywordSynthesizer
from fundingiq.rag.query import PERSONA_PROMPT, QueryPipeline, build_system_prompt
from fundingiq.rag.retriever import Retriever
from fundingiq.schemas import QueryRequest

from conftest import FakeGateway


SCHEME_TEXT = "The Startup India Seed Fund Scheme provides up to 50 lakh to early founders."


def make_pipeline(gateway, **kwargs):
    client = gateway.client(**kwargs)
    retriever = Retriever(synthesizer=KeywordSynthesizer(client=client))
    return QueryPipeline(client=client, retriever=retriever)


def seed_store(database):
    database.create_document("doc-a", "sisfs.pdf", "application/pdf", 10, "doc-a/sisfs.pdf")
    database.create_document("doc-b", "schemes.json", "application/json", 10, "doc-b/schemes.json")
    database.insert_chunk("doc-a", "run-a", 0, SCHEME_TEXT, None)
    database.insert_chunk("doc-b", "run-b", 0, "Seed Fund Scheme applications are reviewed by incubators.", None)
    database.insert_chunk("doc-a", "run-a", 1, "The seed fund also covers prototype development.", None)


def test_unknown_language_falls_back_to_english():
    assert resolve_language("xx").name == "English"
    assert resolve_language(None).code == "en"
    assert resolve_language("HI").name == "Hindi"


def test_language_table_is_read_only():
    with pytest.raises(TypeError):
        LANGUAGES["xx"] = LANGUAGES["en"]


def test_system_prompt_puts_context_first():
    prompt = build_system_prompt(LANGUAGES["ta"], "[Document 1]\nSISFS")

    assert prompt.startswith("KNOWLEDGE BASE CONTEXT:\n[Document 1]\nSISFS")
    assert prompt.index("[Document 1]") < prompt.index(PERSONA_PROMPT)
    assert prompt.endswith(LANGUAGES["ta"].prompt)
    assert "Prioritize information from these documents" in prompt


def test_system_prompt_without_context():
    prompt = build_system_prompt(LANGUAGES["en"])

    assert prompt.startswith(PERSONA_PROMPT)
    assert "KNOWLEDGE BASE CONTEXT" not in prompt
    assert "Prioritize" not in prompt


def test_query_request_accepts_camel_case():
    request = QueryRequest.model_validate({
        "query": "  Seed fund?  ",
        "conversationHistory": [{"role": "user", "content": "hi"}],
        "useKnowledgeBase": False,
    })
    assert request.query == "Seed fund?"
    assert request.language == "en"
    assert len(request.conversation_history) == 1
    assert request.use_knowledge_base is False


async def test_prepare_builds_grounded_messages(database, gateway):
    seed_store(database)
    history = [
        {"role": "user" if i % 2 == 0 else "assistant", "content": f"turn {i}"}
        for i in range(12)
    ]
    request = QueryRequest.model_validate({
        "query": "What is the Startup India Seed Fund Scheme deadline?",
        "language": "hi",
        "conversationHistory": history,
    })

    prepared = await make_pipeline(gateway).prepare(request)

    messages = prepared.messages
    assert messages[0]["role"] == "system"
    assert messages[0]["content"].startswith("KNOWLEDGE BASE CONTEXT:\n[Document 1]\n" + SCHEME_TEXT)
    assert LANGUAGES["hi"].prompt in messages[0]["content"]
    assert [m["content"] for m in messages[1:-1]] == [f"turn {i}" for i in range(2, 12)]
    assert messages[-1] == {"role": "user", "content": request.query}
    assert [s.to_dict() for s in prepared.sources] == [
        {"name": "sisfs.pdf", "category": "PDF"},
        {"name": "schemes.json", "category": "DATA"},
    ]


async def test_prepare_without_knowledge_base(database, gateway):
    seed_store(database)
    request = QueryRequest(query="Seed fund scheme?", use_knowledge_base=False)

    prepared = await make_pipeline(gateway).prepare(request)

    assert prepared.sources == []
    assert prepared.retrieval is None
    assert "KNOWLEDGE BASE CONTEXT" not in prepared.messages[0]["content"]
    assert gateway.requests == []


async def test_prepare_with_no_matching_chunks(database, gateway):
    seed_store(database)
    gateway.keywords = "zzz"
    request = QueryRequest(query="Qwerty uiop asdf?")

    prepared = await make_pipeline(gateway).prepare(request)

    assert prepared.sources == []
    assert prepared.retrieval.chunks == []
    assert "KNOWLEDGE BASE CONTEXT" not in prepared.messages[0]["content"]


async def test_missing_credentials_fail_before_any_work(database, gateway):
    seed_store(database)
    request = QueryRequest(query="Seed fund scheme?")

    with pytest.raises(ConfigurationError):
        await make_pipeline(gateway, api_key="").prepare(request)

    assert gateway.requests == []


async def test_answer_collects_streamed_text(database):
    seed_store(database)
    gateway = FakeGateway(deltas=("SISFS ", "closes ", "in 2025."))

    answer, prepared = await make_pipeline(gateway).answer(QueryRequest(query="Seed fund scheme?"))

    assert answer == "SISFS closes in 2025."
    chat = gateway.chat_requests[0]
    assert chat["messages"] == prepared.messages
    assert chat["max_tokens"] == 2048


async def test_rate_limit_surfaces_from_stream(database):
    gateway = FakeGateway(status=429)

    with pytest.raises(UpstreamRateLimited):
        await make_pipeline(gateway).stream(QueryRequest(query="Seed fund scheme?", use_knowledge_base=False))
