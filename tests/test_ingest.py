"""
Tests for the ingestion write path.

Run with: pytest tests/test_ingest.py -v
"""

import asyncio
import uuid
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from conftest import FakeLLM
from erp_rag.app import app
from erp_rag.config import settings
from erp_rag.errors import UpstreamError
from erp_rag.ingest import ingest_document
from erp_rag.models import Document


class MemoryStore:
    """Natural-key document store kept in dicts."""

    def __init__(self):
        self.docs = {}
        self.chunks = {}

    async def find_document(self, doc_type, entity_table, entity_id):
        return self.docs.get((doc_type, entity_table, entity_id))

    async def upsert_document(self, doc_type, entity_table, entity_id, title, raw_text):
        key = (doc_type, entity_table, entity_id)
        existing = self.docs.get(key)
        doc = Document(
            id=existing.id if existing else uuid.uuid4().hex,
            doc_type=doc_type, entity_table=entity_table, entity_id=entity_id,
            title=title, raw_text=raw_text, updated_at=datetime.now(timezone.utc),
        )
        self.docs[key] = doc
        return doc, True

    async def replace_chunks(self, document, texts, embeddings):
        self.chunks[document.id] = list(zip(texts, embeddings))
        return len(texts)

    async def clear(self, doc_types):
        gone = [k for k in self.docs if k[0] in doc_types]
        for key in gone:
            self.chunks.pop(self.docs.pop(key).id, None)
        return len(gone)


@pytest.fixture
def store():
    return MemoryStore()


class TestIngestDocument:

    def test_chunks_and_embeds(self, store):
        llm = FakeLLM()
        text = "Name: Widget\n" + "Description: " + "x" * 3000
        written, changed = asyncio.run(ingest_document(store, llm, "product", "products", "1", "Product: Widget", text))
        assert changed and written == 3
        assert len(llm.embed_calls) == 3

    def test_unchanged_document_is_skipped(self, store):
        llm = FakeLLM()
        args = (store, llm, "material", "materials", "7", "Material: Copper", "Name: Copper")
        asyncio.run(ingest_document(*args))
        written, changed = asyncio.run(ingest_document(*args))
        assert (written, changed) == (0, False)
        assert len(llm.embed_calls) == 1

    def test_changed_document_keeps_id(self, store):
        llm = FakeLLM()
        asyncio.run(ingest_document(store, llm, "material", "materials", "7", "Material: Copper", "Name: Copper"))
        first = store.docs[("material", "materials", "7")].id
        asyncio.run(ingest_document(store, llm, "material", "materials", "7", "Material: Copper", "Name: Copper\nUOM: kg"))
        assert store.docs[("material", "materials", "7")].id == first

    def test_embedding_failure_writes_nothing(self, store):
        llm = FakeLLM(embed_error=UpstreamError("down"))
        with pytest.raises(UpstreamError):
            asyncio.run(ingest_document(store, llm, "product", "products", "1", "Product: Widget", "Name: Widget"))
        assert store.docs == {}


class TestIngestRoutes:

    @pytest.fixture
    def client(self, store, monkeypatch):
        monkeypatch.setattr(settings, "dev_mode", True)
        app.state.store = store
        app.state.llm = FakeLLM()
        return TestClient(app)

    def test_records(self, client, store, transformer_product):
        payload = {
            "products": [transformer_product.model_dump()],
            "materials": [{"id": "7", "name": "Copper winding wire", "part_number": "CW-2.5"}],
        }
        body = client.post("/ingest/records", json=payload).json()
        assert body == {"status": "ok", "documents": 2, "chunks": 2, "unchanged": 0}
        product = store.docs[("product", "products", "42")]
        assert product.title == "Product: Distribution Transformer 500"
        assert "Code: PE: TX-3151-55/12" in product.raw_text

        again = client.post("/ingest/records", json=payload).json()
        assert again == {"status": "ok", "documents": 0, "chunks": 0, "unchanged": 2}

    def test_empty_records(self, client):
        assert client.post("/ingest/records", json={}).status_code == 400

    def test_reference_keyed_by_title(self, client, store):
        client.post("/ingest/reference", json={"doc_type": "dictionary", "title": "Cooling  Types", "text": "ONAN: oil natural air natural"})
        client.post("/ingest/reference", json={"doc_type": "dictionary", "title": "cooling types", "text": "ONAN, ONAF, OFAF"})
        assert list(store.docs) == [("dictionary", None, "cooling types")]
        assert store.docs[("dictionary", None, "cooling types")].raw_text == "ONAN, ONAF, OFAF"

    def test_reference_rejects_record_types(self, client):
        resp = client.post("/ingest/reference", json={"doc_type": "product", "title": "x", "text": "y"})
        assert resp.status_code == 422

    def test_embedding_failure_is_502(self, client):
        app.state.llm = FakeLLM(embed_error=UpstreamError("down"))
        resp = client.post("/ingest/reference", json={"doc_type": "schema", "title": "products", "text": "name, code"})
        assert resp.status_code == 502

    def test_rebuild_drops_records_missing_from_payload(self, client, store):
        old = {"materials": [{"id": "1", "name": "Old gasket"}, {"id": "2", "name": "Copper"}]}
        client.post("/ingest/records", json=old)
        client.post("/ingest/reference", json={"doc_type": "schema", "title": "materials", "text": "name, part_number"})

        body = client.post("/ingest/records", json={"materials": [{"id": "2", "name": "Copper"}], "rebuild": True}).json()

        assert body == {"status": "ok", "documents": 1, "chunks": 1, "unchanged": 0}
        assert sorted(store.docs) == [("material", "materials", "2"), ("schema", None, "materials")]

    def test_without_rebuild_old_records_stay(self, client, store):
        client.post("/ingest/records", json={"materials": [{"id": "1", "name": "Old gasket"}]})
        client.post("/ingest/records", json={"materials": [{"id": "2", "name": "Copper"}]})
        assert ("material", "materials", "1") in store.docs

    @pytest.mark.parametrize("path, payload", [
        ("/ingest/records", {"materials": [{"id": "2", "name": "Copper"}]}),
        ("/ingest/reference", {"doc_type": "schema", "title": "products", "text": "name, code"}),
    ])
    def test_disabled_outside_dev_mode(self, client, store, monkeypatch, path, payload):
        monkeypatch.setattr(settings, "dev_mode", False)
        assert client.post(path, json=payload).status_code == 503
        assert store.docs == {}
