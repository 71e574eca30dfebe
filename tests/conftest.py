"""
Shared fakes for the pipeline tests.

``FakeLLM`` stands in for ``OllamaClient`` and ``FakeStore`` for
``DocumentStore``; both record their calls so tests can assert on them.
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

import pytest

from erp_rag.errors import CompletionError
from erp_rag.models import AttributeValue, CandidateMatch, ComponentLine, MaterialRecord, ProductRecord
from erp_rag.prompts import PERMISSIVE_ANSWER_PROMPT, STRICT_ANSWER_PROMPT
from erp_rag.records import render_material, render_product


class FakeLLM:
    """
    Scripted completions keyed by output schema name.  A response may be a
    dict (validated into the schema), an exception instance (raised), a list
    of either (consumed in order) or a callable ``(template, inputs)`` that
    returns one of those.
    """

    def __init__(self, responses: Optional[Dict[str, object]] = None, embed_error: Optional[Exception] = None, dim: int = 8):
        self.responses = dict(responses or {})
        self.embed_error = embed_error
        self.dim = dim
        self.calls: List[tuple] = []
        self.embed_calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.embed_calls.append(text)
        if self.embed_error is not None:
            raise self.embed_error
        return [0.1] * self.dim

    async def complete(self, template, inputs, schema, temperature=0.0):
        self.calls.append((schema.__name__, template, dict(inputs), temperature))
        resp = self.responses.get(schema.__name__)
        if isinstance(resp, list):
            if not resp:
                raise CompletionError(f"no scripted response left for {schema.__name__}")
            resp = resp.pop(0)
        elif callable(resp):
            resp = resp(template, inputs)
        if isinstance(resp, BaseException):
            raise resp
        if resp is None:
            raise CompletionError(f"no scripted response for {schema.__name__}")
        return schema.model_validate(resp)

    def schema_calls(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]


def by_policy(strict, permissive) -> Callable:
    """Route ``CandidateAnswer`` completions by which answer prompt was used."""
    def route(template, inputs):
        if template == STRICT_ANSWER_PROMPT:
            return strict
        if template == PERMISSIVE_ANSWER_PROMPT:
            return permissive
        raise AssertionError("unexpected answer template")
    return route


class FakeStore:
    """In-memory ``search_substring`` / ``search_vector`` over fixed matches."""

    def __init__(self, matches=(), error: Optional[Exception] = None):
        self.matches = list(matches)
        self.error = error
        self.substring_calls: List[tuple] = []
        self.vector_calls: List[tuple] = []

    async def search_substring(self, pattern, doc_types, limit):
        self.substring_calls.append((pattern, tuple(doc_types), limit))
        if self.error is not None:
            raise self.error
        needle = pattern.lower()
        hits = [m for m in self.matches if m.doc_type in doc_types and needle in m.chunk_text.lower()]
        return hits[:limit]

    async def search_vector(self, vector, doc_types, limit):
        self.vector_calls.append((tuple(doc_types), limit))
        if self.error is not None:
            raise self.error
        hits = [m for m in self.matches if m.doc_type in doc_types and m.distance is not None]
        hits.sort(key=lambda m: (m.distance, m.chunk_id))
        return hits[:limit]


def make_match(chunk_id: str, text: str, doc_type: str = "product", title: Optional[str] = None, distance: Optional[float] = 0.5) -> CandidateMatch:
    return CandidateMatch(
        chunk_id=chunk_id,
        doc_type=doc_type,
        entity_table={"product": "products", "material": "materials"}.get(doc_type),
        entity_id=chunk_id,
        title=title or f"{doc_type.title()}: {chunk_id}",
        chunk_text=text,
        distance=distance,
    )


# ====================== Catalog fixtures ======================

@pytest.fixture
def transformer_product() -> ProductRecord:
    return ProductRecord(
        id="42",
        name="Distribution Transformer 500",
        code="PE: TX-3151-55/12",
        barcode="0903812",
        product_type="Transformer",
        description="Oil immersed distribution transformer",
        master_material_name="Core steel",
        master_material_part_number="CS-100",
        attributes=[
            AttributeValue(name="Rated Power", uom="kVA", value="500"),
            AttributeValue(name="Cooling Type", value="ONAN"),
            AttributeValue(name="Cooling Type", value="ONAN"),
        ],
        components=[ComponentLine(name="Radiator", part_number="RD-9", quantity=4, notes="Hyundai")],
    )


@pytest.fixture
def transformer_match(transformer_product) -> CandidateMatch:
    return make_match("c-tx500", render_product(transformer_product), title="Product: Distribution Transformer 500", distance=0.42)


@pytest.fixture
def catalog_without_transformers() -> List[CandidateMatch]:
    copper = MaterialRecord(
        id="7",
        name="Copper winding wire",
        material_code="CU-2",
        part_number="CW-2.5",
        type_name="Raw material",
        category_name="Conductor",
        uom="kg",
        description="Enamelled copper wire used for transformer windings",
        attributes=[AttributeValue(name="Diameter", uom="mm", value="2.5")],
    )
    paper = MaterialRecord(
        id="8",
        name="Aramid paper",
        part_number="AP-1",
        category_name="Insulation",
        description="High temperature insulation paper",
    )
    return [
        make_match("c-copper", render_material(copper), doc_type="material", title="Material: Copper winding wire", distance=0.2),
        make_match("c-paper", render_material(paper), doc_type="material", title="Material: Aramid paper", distance=0.3),
        make_match(
            "c-schema", "Table products: name, code, barcode, product_type. A transformer is a product type.",
            doc_type="schema", title="products schema", distance=0.05,
        ),
    ]
