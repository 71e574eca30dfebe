"""
Unit tests for HybridRetriever using in-memory fakes.

Run with: pytest tests/test_retriever.py -v
"""

import asyncio

import pytest

from conftest import FakeLLM, FakeStore, make_match
from erp_rag.errors import RetrievalError, StoreError, UpstreamError
from erp_rag.retriever import HybridRetriever, rerank_by_doc_type


def _retriever(store, llm=None, **kw):
    return HybridRetriever(store, llm or FakeLLM(), **kw)


class TestRerank:

    def test_records_before_reference_text(self):
        ranked = rerank_by_doc_type([
            make_match("s", "schema text", doc_type="schema", distance=0.05),
            make_match("d", "dictionary text", doc_type="dictionary", distance=0.1),
            make_match("m", "Name: Copper", doc_type="material", distance=0.2),
            make_match("p", "Name: Widget", doc_type="product", distance=0.6),
        ])
        assert [m.chunk_id for m in ranked] == ["p", "m", "d", "s"]

    def test_distance_then_chunk_id_within_type(self):
        ranked = rerank_by_doc_type([
            make_match("b", "x", distance=0.3),
            make_match("a", "x", distance=0.3),
            make_match("c", "x", distance=0.1),
        ])
        assert [m.chunk_id for m in ranked] == ["c", "a", "b"]


class TestSemanticRetrieval:

    def test_vector_search_over_fetches_and_truncates(self, catalog_without_transformers):
        store = FakeStore(catalog_without_transformers)
        out = asyncio.run(_retriever(store).retrieve("oil immersed transformer", limit=2))
        assert store.vector_calls == [(("product", "material", "schema", "dictionary"), 8)]
        assert store.substring_calls == []
        # the schema chunk is nearest but ranks after material records
        assert [m.chunk_id for m in out] == ["c-copper", "c-paper"]

    def test_idempotent(self, catalog_without_transformers, transformer_match):
        store = FakeStore(catalog_without_transformers + [transformer_match])
        retriever = _retriever(store)
        first = asyncio.run(retriever.retrieve("insulation", limit=3))
        second = asyncio.run(retriever.retrieve("insulation", limit=3))
        assert [m.chunk_id for m in first] == [m.chunk_id for m in second]

    def test_zero_limit(self, catalog_without_transformers):
        store = FakeStore(catalog_without_transformers)
        assert asyncio.run(_retriever(store).retrieve("anything", limit=0)) == []


class TestIdentifierRetrieval:

    def test_lexical_match_ranks_first(self, catalog_without_transformers, transformer_match):
        store = FakeStore(catalog_without_transformers + [transformer_match])
        out = asyncio.run(_retriever(store).retrieve("PE: TX-3151-55/12", limit=5))
        assert out[0].chunk_id == "c-tx500"
        assert len({m.chunk_id for m in out}) == len(out)
        # reference text is never searched lexically
        assert all(dt == ("product", "material") for _, dt, _ in store.substring_calls)

    def test_barcode_hit_beats_closer_vector_neighbours(self, transformer_match):
        far = transformer_match.model_copy(update={"distance": 0.99})
        neighbours = [make_match(f"c-near{i:02d}", f"Name: Filler {i}", distance=0.01 * (i + 1)) for i in range(12)]
        store = FakeStore(neighbours + [far])
        retriever = _retriever(store)

        vector_only = asyncio.run(retriever.search_vector("barcode 0903812", limit=10))
        assert "c-tx500" not in [m.chunk_id for m in vector_only]

        out = asyncio.run(retriever.retrieve("barcode 0903812", limit=10))
        assert out[0].chunk_id == "c-tx500"
        assert len(out) == 10

    def test_enough_lexical_hits_skip_vector_search(self, catalog_without_transformers, transformer_match):
        llm = FakeLLM()
        store = FakeStore(catalog_without_transformers + [transformer_match])
        out = asyncio.run(_retriever(store, llm, min_lexical_hits=1).retrieve("barcode 0903812", limit=5))
        assert [m.chunk_id for m in out] == ["c-tx500"]
        assert llm.embed_calls == []
        assert store.vector_calls == []

    def test_few_lexical_hits_are_merged_with_vector_results(self, catalog_without_transformers, transformer_match):
        store = FakeStore(catalog_without_transformers + [transformer_match])
        out = asyncio.run(_retriever(store).retrieve("barcode 0903812", limit=3))
        ids = [m.chunk_id for m in out]
        assert ids[0] == "c-tx500"
        assert len(ids) == 3
        assert store.vector_calls

    def test_lexical_tokens_are_capped(self, catalog_without_transformers):
        store = FakeStore(catalog_without_transformers)
        asyncio.run(_retriever(store, max_tokens=2).retrieve("1111 2222 3333 4444", limit=5))
        assert [p for p, _, _ in store.substring_calls] == ["1111", "2222"]


class TestRetrievalFailures:

    def test_embedding_failure(self, catalog_without_transformers):
        store = FakeStore(catalog_without_transformers)
        llm = FakeLLM(embed_error=UpstreamError("ollama down"))
        with pytest.raises(RetrievalError):
            asyncio.run(_retriever(store, llm).retrieve("oil immersed transformer", limit=5))

    def test_store_failure(self):
        store = FakeStore(error=StoreError("statement timeout"))
        with pytest.raises(RetrievalError):
            asyncio.run(_retriever(store).retrieve("PE: TX-3151-55/12", limit=5))
