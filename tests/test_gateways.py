"""Tests for the Ollama client and gateway bindings against a stubbed server."""
import asyncio
import json

import httpx
import pytest

from ragdemo.errors import EmbeddingUnavailable, LLMUnavailable
from ragdemo.gateways import OllamaChatModel, OllamaEmbedder
from ragdemo.llm_client import OllamaClient, OllamaResponseError
from ragdemo.rag.pipeline import RagPipeline


def _client(handler, requests):
    def record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    return OllamaClient(
        base_url="http://ollama.test/",
        timeout=5.0,
        transport=httpx.MockTransport(record),
    )


def test_embedder_posts_prompt_and_returns_vector(settings):
    requests = []
    client = _client(lambda r: httpx.Response(200, json={"embedding": [0.1, 0.2, 0.3]}), requests)
    embedder = OllamaEmbedder(settings, client=client)

    vector = asyncio.run(embedder.embed("some text"))

    assert vector == [0.1, 0.2, 0.3]
    assert str(requests[0].url) == "http://ollama.test/api/embeddings"
    assert json.loads(requests[0].content) == {
        "model": settings.embedding_model,
        "prompt": "some text",
    }


@pytest.mark.parametrize("response", [
    httpx.Response(500, text="model crashed"),
    httpx.Response(200, json={"embedding": []}),
    httpx.Response(200, json={"error": "model not found"}),
    httpx.Response(200, text="not json"),
    httpx.Response(200, json=[0.1, 0.2]),
    httpx.Response(200, json={"embedding": None}),
])
def test_embedder_failures(settings, response):
    embedder = OllamaEmbedder(settings, client=_client(lambda r: response, []))

    with pytest.raises(EmbeddingUnavailable):
        asyncio.run(embedder.embed("text"))


def test_chat_model_sends_messages_and_temperature(settings):
    requests = []
    reply = {"message": {"role": "assistant", "content": "It is a document."}, "done": True}
    model = OllamaChatModel(settings, client=_client(lambda r: httpx.Response(200, json=reply), requests))
    messages = [{"role": "user", "content": "What is it?"}]

    answer = asyncio.run(model.complete(messages, temperature=0.8))

    assert answer == "It is a document."
    assert str(requests[0].url) == "http://ollama.test/api/chat"
    assert json.loads(requests[0].content) == {
        "model": settings.chat_model,
        "messages": messages,
        "stream": False,
        "options": {"temperature": 0.8},
    }


def test_chat_model_passes_empty_completion_through(settings):
    reply = {"message": {"role": "assistant", "content": ""}, "done": True}
    model = OllamaChatModel(settings, client=_client(lambda r: httpx.Response(200, json=reply), []))

    assert asyncio.run(model.complete([], temperature=0.5)) == ""


def test_chat_model_connection_error(settings):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    model = OllamaChatModel(settings, client=_client(refuse, []))

    with pytest.raises(LLMUnavailable) as excinfo:
        asyncio.run(model.complete([], temperature=0.5))

    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


@pytest.mark.parametrize("response", [
    httpx.Response(503, text="busy"),
    httpx.Response(200, json={"error": "model not found"}),
    httpx.Response(200, json={"message": None, "done": True}),
    httpx.Response(200, json={"message": {"role": "assistant", "content": None}}),
    httpx.Response(200, json=[{"message": {"content": "hi"}}]),
    httpx.Response(200, text="not json"),
])
def test_chat_model_failures(settings, response):
    model = OllamaChatModel(settings, client=_client(lambda r: response, []))

    with pytest.raises(LLMUnavailable):
        asyncio.run(model.complete([], temperature=0.5))


def test_chat_model_override():
    model = OllamaChatModel(model="llama2-chinese:13b", client=OllamaClient(base_url="http://x"))

    assert model.model == "llama2-chinese:13b"


def test_malformed_chat_body_keeps_the_cause(settings):
    model = OllamaChatModel(settings, client=_client(lambda r: httpx.Response(200, json={"message": None}), []))

    with pytest.raises(LLMUnavailable) as excinfo:
        asyncio.run(model.complete([], temperature=0.5))

    assert isinstance(excinfo.value.__cause__, OllamaResponseError)


def test_client_reuses_one_connection_pool(settings):
    requests = []
    client = _client(lambda r: httpx.Response(200, json={"embedding": [1.0]}), requests)
    embedder = OllamaEmbedder(settings, client=client)

    async def scenario():
        async with client:
            first = client.http
            await asyncio.gather(*(embedder.embed(f"chunk {i}") for i in range(4)))
            assert client.http is first
            return first

    http = asyncio.run(scenario())

    assert len(requests) == 4
    assert http.is_closed


def test_pipeline_closes_its_client(settings):
    async def scenario():
        async with RagPipeline.from_settings(settings) as pipeline:
            http = pipeline.client.http
            assert not http.is_closed
        return http

    assert asyncio.run(scenario()).is_closed
