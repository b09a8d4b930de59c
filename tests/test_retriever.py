"""Tests for thresholded top-k retrieval."""
import asyncio

import pytest

from ragdemo.cancellation import CancellationToken
from ragdemo.errors import (
    Cancelled,
    EmbeddingUnavailable,
    InvalidConfig,
    RetrievalUnavailable,
    StoreUnavailable,
)
from ragdemo.rag.retriever import RetrievalResult, Retriever
from tests.conftest import FakeEmbedder, FakeStore


TEN_SCORES = [0.95, 0.90, 0.85, 0.70, 0.65, 0.60, 0.50, 0.40, 0.30, 0.10]


def _store_with_scores(scores, **kwargs):
    return FakeStore([(f"chunk {i}", s) for i, s in enumerate(scores)], **kwargs)


def test_threshold_and_top_k_example(embedder):
    retriever = Retriever(embedder, _store_with_scores(TEN_SCORES))

    results = asyncio.run(retriever.retrieve("query", top_k=2, score_threshold=0.80))

    assert [r.score for r in results] == [0.95, 0.90]
    assert [r.text for r in results] == ["chunk 0", "chunk 1"]


@pytest.mark.parametrize("top_k", [1, 3, 10, 20])
@pytest.mark.parametrize("threshold", [0.0, 0.5, 0.8, 0.95, 1.0])
def test_results_respect_threshold_and_cap(embedder, top_k, threshold):
    # The store ignores the limit, so the retriever must truncate itself
    store = _store_with_scores(TEN_SCORES, honour_limit=False)
    retriever = Retriever(embedder, store)

    results = asyncio.run(retriever.retrieve("query", top_k=top_k, score_threshold=threshold))

    assert len(results) <= top_k
    assert all(r.score >= threshold for r in results)
    assert [r.score for r in results] == sorted((r.score for r in results), reverse=True)


def test_requests_at_least_top_k_candidates(embedder):
    store = _store_with_scores(TEN_SCORES)
    retriever = Retriever(embedder, store)

    asyncio.run(retriever.retrieve("query", top_k=4, score_threshold=0.0))

    assert store.queries[0][1] >= 4


def test_nothing_above_threshold_is_empty(embedder):
    retriever = Retriever(embedder, _store_with_scores([0.5, 0.4]))

    assert asyncio.run(retriever.retrieve("query", top_k=5, score_threshold=0.8)) == []


def test_equal_scores_keep_store_order(embedder):
    store = FakeStore([("first", 0.9), ("second", 0.9), ("third", 0.9), ("best", 0.99)])
    retriever = Retriever(embedder, store)

    results = asyncio.run(retriever.retrieve("query", top_k=4, score_threshold=0.5))

    assert [r.text for r in results] == ["best", "first", "second", "third"]


def test_defaults_come_from_constructor(embedder):
    retriever = Retriever(embedder, _store_with_scores(TEN_SCORES), top_k=3, score_threshold=0.6)

    results = asyncio.run(retriever.retrieve("query"))

    assert [r.score for r in results] == [0.95, 0.90, 0.85]


def test_blank_query_skips_gateways(embedder):
    store = _store_with_scores(TEN_SCORES)
    retriever = Retriever(embedder, store)

    assert asyncio.run(retriever.retrieve("   ")) == []
    assert embedder.calls == []
    assert store.queries == []


def test_embedding_failure_is_retrieval_unavailable():
    embedder = FakeEmbedder(fail=True)
    store = _store_with_scores(TEN_SCORES)
    retriever = Retriever(embedder, store)

    with pytest.raises(RetrievalUnavailable) as excinfo:
        asyncio.run(retriever.retrieve("query"))

    assert isinstance(excinfo.value.__cause__, EmbeddingUnavailable)
    assert len(embedder.calls) == 1
    assert store.queries == []


def test_store_failure_is_retrieval_unavailable(embedder):
    store = _store_with_scores(TEN_SCORES, fail=True)
    retriever = Retriever(embedder, store)

    with pytest.raises(RetrievalUnavailable) as excinfo:
        asyncio.run(retriever.retrieve("query"))

    assert isinstance(excinfo.value.__cause__, StoreUnavailable)
    assert len(store.queries) == 1


@pytest.mark.parametrize("top_k,threshold", [(0, 0.5), (-2, 0.5), (3, -0.1), (3, 1.5)])
def test_invalid_parameters(embedder, top_k, threshold):
    retriever = Retriever(embedder, _store_with_scores(TEN_SCORES))

    with pytest.raises(InvalidConfig):
        asyncio.run(retriever.retrieve("query", top_k=top_k, score_threshold=threshold))

    assert embedder.calls == []


def test_invalid_defaults_rejected_at_construction(embedder):
    with pytest.raises(InvalidConfig):
        Retriever(embedder, FakeStore(), top_k=0)


def test_deadline_cancels_slow_embedding():
    retriever = Retriever(FakeEmbedder(delay=5), _store_with_scores(TEN_SCORES))

    with pytest.raises(Cancelled):
        asyncio.run(retriever.retrieve("query", timeout=0.05))


def test_token_cancels_retrieval():
    async def scenario():
        token = CancellationToken()
        retriever = Retriever(FakeEmbedder(delay=5), _store_with_scores(TEN_SCORES))
        asyncio.get_running_loop().call_later(0.05, token.cancel)
        return await retriever.retrieve("query", token=token)

    with pytest.raises(Cancelled):
        asyncio.run(scenario())


def test_result_source_label():
    result = RetrievalResult(text="t", score=0.9, metadata={"source": "doc.txt", "sequence_index": 3})

    assert result.source == "doc.txt #3"
    assert RetrievalResult(text="t", score=0.9).source == ""
