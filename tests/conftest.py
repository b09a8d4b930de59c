"""Pytest configuration and in-memory gateways shared by the test suite."""
import asyncio
import hashlib
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from ragdemo.config import Settings
from ragdemo.errors import EmbeddingUnavailable, LLMUnavailable, StoreUnavailable
from ragdemo.rag.retriever import RetrievalResult


TOPICS = ("cat", "dog", "fish")


class FakeEmbedder:
    """Deterministic embedder; counts topic words, or hashes unknown text."""

    def __init__(self, fail: bool = False, delay: float = 0.0, by_topic: bool = False):
        self.fail = fail
        self.delay = delay
        self.by_topic = by_topic
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail:
                raise EmbeddingUnavailable("embedding service down")
        finally:
            self.in_flight -= 1

        if self.by_topic:
            lowered = text.lower()
            return [float(lowered.count(topic)) for topic in TOPICS] + [0.1]
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [byte / 255.0 + 0.01 for byte in digest[:4]]


class FakeStore:
    """List-backed store answering every query with preset (text, score) pairs."""

    def __init__(
        self,
        scored: Sequence[Tuple[str, float]] = (),
        fail: bool = False,
        honour_limit: bool = True,
    ):
        self.scored = list(scored)
        self.fail = fail
        self.honour_limit = honour_limit
        self.records: List[Dict] = []
        self.queries: List[Tuple[List[float], int]] = []

    async def insert(self, records):
        if self.fail:
            raise StoreUnavailable("store down")
        start = len(self.records)
        self.records.extend(records)
        return [f"rec-{i}" for i in range(start, len(self.records))]

    async def query(self, vector, limit):
        self.queries.append((vector, limit))
        if self.fail:
            raise StoreUnavailable("store down")
        results = [RetrievalResult(text=text, score=score) for text, score in self.scored]
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit] if self.honour_limit else results


class FakeLLM:
    """Scripted language model recording every request."""

    def __init__(self, responses: Optional[List[str]] = None, error: Exception = None, delay: float = 0.0):
        self.responses = list(responses or ["an answer"])
        self.error = error
        self.delay = delay
        self.calls: List[Tuple[List[Dict[str, str]], float]] = []
        self.was_cancelled = False
        self.on_call = None

    async def complete(self, messages, temperature):
        self.calls.append((messages, temperature))
        if self.on_call is not None:
            self.on_call()
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.was_cancelled = True
                raise
        if self.error is not None:
            raise self.error
        return self.responses[min(len(self.calls), len(self.responses)) - 1]


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        data_dir=tmp_path,
        chunk_size=25,
        chunk_overlap=0,
        top_k=5,
        score_threshold=0.8,
        temperature=0.8,
        prompt_strategy="conversational",
        embed_concurrency=2,
    )


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def failing_llm() -> FakeLLM:
    return FakeLLM(error=LLMUnavailable("connection refused"))


@pytest.fixture
def sample_document() -> str:
    return "Cats purr and cats nap.\n\nDogs bark at cars.\n\nFish swim."
