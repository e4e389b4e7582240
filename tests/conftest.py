"""Pytest configuration and fixtures."""
import json
import os
import tempfile

# Keep test runs away from the real data directory and the real gateway
os.environ["DATA_DIR"] = tempfile.mkdtemp(prefix="fundingiq-test-")
os.environ["GATEWAY_API_KEY"] = ""

import httpx
import pytest

from fundingiq import db
from fundingiq.llm_client import GatewayClient
from fundingiq.rag.chunker import TextChunker
from fundingiq.rag.ingest import IngestPipeline
from fundingiq.rag.keywords import KeywordSynthesizer
from fundingiq.storage import ObjectStorage


GATEWAY_URL = "http://gateway.test/v1"


def completion_body(content: str) -> dict:
    """A non-streamed chat completion response."""
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def sse_body(deltas, done: bool = True) -> bytes:
    """A streamed chat completion response."""
    frames = [
        "data: " + json.dumps({"choices": [{"delta": {"content": delta}}]}) + "\n\n"
        for delta in deltas
    ]
    if done:
        frames.append("data: [DONE]\n\n")
    return "".join(frames).encode("utf-8")


class FakeGateway:
    """Records requests and answers them like the AI gateway."""

    def __init__(self, keywords="seed fund, startup india", deltas=("Hello", " world"), status=200, done=True):
        self.keywords = keywords
        self.deltas = deltas
        self.done = done
        self.status = status
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append(payload)

        if self.status != 200:
            return httpx.Response(self.status, json={"error": "upstream"})
        if payload.get("stream"):
            return httpx.Response(
                200,
                content=sse_body(self.deltas, done=self.done),
                headers={"Content-Type": "text/event-stream"},
            )
        return httpx.Response(200, json=completion_body(self.keywords))

    def client(self, api_key: str = "test-key") -> GatewayClient:
        return GatewayClient(
            base_url=GATEWAY_URL,
            api_key=api_key,
            transport=httpx.MockTransport(self.handler),
        )

    @property
    def keyword_requests(self):
        return [r for r in self.requests if not r.get("stream")]

    @property
    def chat_requests(self):
        return [r for r in self.requests if r.get("stream")]


def failing_client() -> GatewayClient:
    """A gateway client whose every request fails at the transport level."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return GatewayClient(
        base_url=GATEWAY_URL,
        api_key="test-key",
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def database(tmp_path, monkeypatch):
    """A fresh SQLite database for each test."""
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "test.sqlite")
    db.init_database()
    return db


@pytest.fixture
def storage(tmp_path):
    return ObjectStorage(root=tmp_path / "bucket", timeout=5.0)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def pipeline(database, storage, gateway):
    """Ingest pipeline wired to the test database, storage and gateway."""
    return IngestPipeline(
        storage=storage,
        chunker=TextChunker(chunk_size=800, chunk_overlap=150, min_chunk_length=50),
        synthesizer=KeywordSynthesizer(client=gateway.client()),
        keyword_chunk_limit=20,
    )


@pytest.fixture
def funding_text():
    """About 2700 characters of funding prose."""
    sentences = [
        "The Startup India Seed Fund Scheme supports early stage founders with grants.",
        "Sequoia Capital and Accel led several Series A rounds in Bengaluru fintech.",
        "DPIIT recognition unlocks tax holidays and faster patent examination.",
        "The Credit Guarantee Scheme lets SIDBI back collateral free loans to startups.",
    ]
    return " ".join(sentences * 9)
