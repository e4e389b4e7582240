"""Tests for keyword synthesis and its graceful degradation."""
import pytest

from fundingiq.rag.keywords import KeywordSynthesizer, parse_keywords

from conftest import FakeGateway, failing_client


def test_parse_keywords_lowercases_and_drops_empties():
    reply = "Seed Fund, Startup India,  , DPIIT\n- Credit Guarantee."
    assert parse_keywords(reply) == ["seed fund", "startup india", "dpiit", "credit guarantee"]


def test_parse_keywords_empty_reply():
    assert parse_keywords("") == []


async def test_synthesize_uses_gateway_reply(gateway):
    synthesizer = KeywordSynthesizer(client=gateway.client(), model="keyword-model")

    keywords = await synthesizer.synthesize("The Startup India Seed Fund Scheme ...")

    assert keywords == ["seed fund", "startup india"]
    request = gateway.requests[0]
    assert request["model"] == "keyword-model"
    assert request["stream"] is False
    assert "comma-separated" in request["messages"][0]["content"]


async def test_synthesize_truncates_input(gateway):
    synthesizer = KeywordSynthesizer(client=gateway.client(), input_chars=1500)

    await synthesizer.synthesize("a" * 5000)

    assert len(gateway.requests[0]["messages"][1]["content"]) == 1500


async def test_synthesize_returns_empty_on_transport_error():
    synthesizer = KeywordSynthesizer(client=failing_client())
    assert await synthesizer.synthesize("Seed funding for startups") == []


async def test_synthesize_returns_empty_on_upstream_error():
    gateway = FakeGateway(status=429)
    synthesizer = KeywordSynthesizer(client=gateway.client())
    assert await synthesizer.synthesize("Seed funding for startups") == []


async def test_synthesize_returns_empty_without_credentials(gateway):
    synthesizer = KeywordSynthesizer(client=gateway.client(api_key=""))

    assert await synthesizer.synthesize("Seed funding for startups") == []
    assert gateway.requests == []


async def test_synthesize_many_preserves_order():
    replies = iter(["first", "second", "third"])

    class OrderedGateway(FakeGateway):
        def handler(self, request):
            self.keywords = next(replies)
            return super().handler(request)

    gateway = OrderedGateway()
    synthesizer = KeywordSynthesizer(client=gateway.client(), concurrency=1)

    results = await synthesizer.synthesize_many(["one", "two", "three"])

    assert results == [["first"], ["second"], ["third"]]


def test_explicit_zero_settings_are_rejected():
    with pytest.raises(ValueError):
        KeywordSynthesizer(client=failing_client(), concurrency=0)
    with pytest.raises(ValueError):
        KeywordSynthesizer(client=failing_client(), input_chars=0)
