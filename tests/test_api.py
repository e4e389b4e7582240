"""Tests for the HTTP API."""
import asyncio
import io
import json

import pytest
from werkzeug.datastructures import FileStorage

from fundingiq import main
from fundingiq.errors import StreamTruncatedError
from fundingiq.llm_client import ChatStream
from fundingiq.rag.chunker import TextChunker
from fundingiq.rag.ingest import IngestPipeline
from fundingiq.rag.keywords import KeywordSynthesizer
from fundingiq.rag.query import QueryPipeline
from fundingiq.rag.retriever import Retriever

from conftest import FakeGateway


@pytest.fixture
def api(database, storage, gateway, monkeypatch):
    """Quart test client with pipelines wired to the test fixtures."""
    client = gateway.client()
    synthesizer = KeywordSynthesizer(client=client)
    monkeypatch.setattr(
        main,
        "ingest_pipeline",
        IngestPipeline(storage=storage, chunker=TextChunker(800, 150, 50), synthesizer=synthesizer),
    )
    monkeypatch.setattr(
        main,
        "query_pipeline",
        QueryPipeline(client=client, retriever=Retriever(synthesizer=synthesizer)),
    )
    return main.app.test_client()


async def upload(api, name, mime, data):
    response = await api.post(
        "/api/documents",
        files={"file": FileStorage(io.BytesIO(data), filename=name, content_type=mime)},
    )
    return response.status_code, await response.get_json()


async def test_upload_and_process_document(api, funding_text):
    status, document = await upload(api, "ecosystem.md", "text/markdown", funding_text.encode())

    assert status == 201
    assert document["status"] == "pending"
    assert document["category"] == "TEXT"

    response = await api.post(
        "/api/process-document",
        json={"documentId": document["id"], "filePath": document["file_path"]},
    )
    body = await response.get_json()

    assert response.status_code == 200
    assert body["success"] is True
    assert body["documentId"] == document["id"]
    assert body["chunksCreated"] > 1

    response = await api.get(f"/api/documents/{document['id']}")
    assert (await response.get_json())["status"] == "ready"

    response = await api.get(f"/api/documents/{document['id']}/chunks")
    chunks = (await response.get_json())["chunks"]
    assert len(chunks) == body["chunksCreated"]
    assert chunks[0]["keywords"] == ["seed fund", "startup india"]


async def test_upload_requires_file(api):
    response = await api.post("/api/documents", form={"name": "x"})
    assert response.status_code == 400


async def test_process_document_requires_fields(api):
    response = await api.post("/api/process-document", json={"documentId": "abc"})

    assert response.status_code == 400
    assert (await response.get_json())["error"] == "documentId and filePath are required"


async def test_process_short_document_returns_400(api):
    _, document = await upload(api, "tiny.txt", "text/plain", b"tiny")

    response = await api.post(
        "/api/process-document",
        json={"documentId": document["id"], "filePath": document["file_path"]},
    )

    assert response.status_code == 400
    listing = await (await api.get("/api/documents")).get_json()
    assert listing["documents"][0]["status"] == "error"


async def test_process_unknown_document_returns_404(api):
    response = await api.post(
        "/api/process-document",
        json={"documentId": "missing", "filePath": "missing/file.txt"},
    )
    assert response.status_code == 404


async def test_rag_query_streams_with_sources(api, funding_text):
    _, document = await upload(api, "ecosystem.md", "text/markdown", funding_text.encode())
    await api.post(
        "/api/process-document",
        json={"documentId": document["id"], "filePath": document["file_path"]},
    )

    response = await api.post(
        "/api/rag-query",
        json={"query": "What is the Startup India Seed Fund Scheme?", "language": "bn"},
    )
    body = (await response.get_data()).decode("utf-8")

    assert response.status_code == 200
    assert response.mimetype == "text/event-stream"
    assert json.loads(response.headers["X-Sources"]) == [{"name": "ecosystem.md", "category": "TEXT"}]
    assert response.headers["X-Language"] == "Bengali"
    assert '"content": "Hello"' in body
    assert body.endswith("data: [DONE]\n\n")


@pytest.fixture
def closed_streams(monkeypatch):
    """Upstream streams whose aclose() ran, in call order."""
    closed = []
    original = ChatStream.aclose

    async def aclose(self):
        closed.append(self)
        await original(self)

    monkeypatch.setattr(ChatStream, "aclose", aclose)
    return closed


async def open_rag_stream(payload):
    """Call the rag-query view directly so the body can be driven frame by frame."""
    async with main.app.test_request_context("/api/rag-query", method="POST", json=payload):
        return await main.rag_query()


async def test_rag_query_truncated_stream_fails(database, monkeypatch, closed_streams):
    client = FakeGateway(deltas=("partial",), done=False).client()
    monkeypatch.setattr(main, "query_pipeline", QueryPipeline(client=client))

    response = await open_rag_stream({"query": "Seed fund?", "useKnowledgeBase": False})
    assert response.status_code == 200

    frames = []
    with pytest.raises(StreamTruncatedError):
        async with response.response as body:
            async for frame in body:
                frames.append(frame)

    relayed = b"".join(frames)
    assert b"partial" in relayed
    assert b"[DONE]" not in relayed
    assert len(closed_streams) == 1
    assert closed_streams[0].completed is False


async def test_rag_query_client_disconnect_closes_upstream(database, monkeypatch, closed_streams):
    client = FakeGateway(deltas=("Seed", " fund", " scheme")).client()
    monkeypatch.setattr(main, "query_pipeline", QueryPipeline(client=client))

    response = await open_rag_stream({"query": "Seed fund?", "useKnowledgeBase": False})

    async with response.response as body:
        frames = aiter(body)
        first = await anext(frames)
        assert b'"content": "Seed"' in first
        assert closed_streams == []

        with pytest.raises(asyncio.CancelledError):
            await frames.athrow(asyncio.CancelledError())

    assert len(closed_streams) == 1
    assert closed_streams[0].completed is False
    assert closed_streams[0]._response.is_closed


async def test_process_document_twice_returns_409(api, funding_text):
    _, document = await upload(api, "ecosystem.md", "text/markdown", funding_text.encode())
    payload = {"documentId": document["id"], "filePath": document["file_path"]}
    first = await (await api.post("/api/process-document", json=payload)).get_json()

    response = await api.post("/api/process-document", json=payload)

    assert response.status_code == 409
    assert (await response.get_json())["documentId"] == document["id"]
    chunks = (await (await api.get(f"/api/documents/{document['id']}/chunks")).get_json())["chunks"]
    assert len(chunks) == first["chunksCreated"]
    assert [c["chunk_index"] for c in chunks] == list(range(len(chunks)))


async def test_rag_query_requires_query(api):
    response = await api.post("/api/rag-query", json={"query": "   "})

    assert response.status_code == 400
    assert "Query is required" in (await response.get_json())["error"]


@pytest.mark.parametrize(
    "status, message",
    [
        (429, "Rate limit exceeded. Please try again in a moment."),
        (402, "AI credits exhausted. Please add credits to continue."),
        (500, "Failed to generate response"),
    ],
)
async def test_rag_query_maps_upstream_errors(api, monkeypatch, status, message):
    client = FakeGateway(status=status).client()
    monkeypatch.setattr(main, "query_pipeline", QueryPipeline(client=client))

    response = await api.post("/api/rag-query", json={"query": "Seed fund?", "useKnowledgeBase": False})

    assert response.status_code == status
    assert (await response.get_json())["error"] == message


async def test_rag_query_without_credentials_returns_500(api, monkeypatch):
    client = FakeGateway().client(api_key="")
    monkeypatch.setattr(main, "query_pipeline", QueryPipeline(client=client))

    response = await api.post("/api/rag-query", json={"query": "Seed fund?"})

    assert response.status_code == 500
    assert (await response.get_json())["error"] == "AI service not configured"


async def test_delete_document(api, storage, funding_text):
    _, document = await upload(api, "ecosystem.md", "text/markdown", funding_text.encode())

    response = await api.delete(f"/api/documents/{document['id']}")
    assert response.status_code == 204

    response = await api.delete(f"/api/documents/{document['id']}")
    assert response.status_code == 404
    assert not (storage.root / document["file_path"]).exists()


async def test_languages_endpoint(api):
    body = await (await api.get("/api/languages")).get_json()

    assert body["default"] == "en"
    assert {"code": "ta", "name": "Tamil"} in body["languages"]


async def test_health_endpoints(api):
    live = await api.get("/health/live")
    ready = await api.get("/health/ready")

    assert live.status_code == 200
    assert ready.status_code == 200
    assert (await ready.get_json())["database"] is True
