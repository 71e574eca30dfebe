"""Pydantic models for API payloads, stored rows and completion outputs.

These models define the schemas used throughout the service.  They are
plain Pydantic ``BaseModel`` subclasses with type hints and validation.
``Document`` and ``Chunk`` mirror the rows held by the document store,
``CandidateMatch`` is the per-request retrieval result, and ``Answer`` is
what ``ask`` returns.  The ``*Output`` models are the schemas structured
completions must conform to.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from erp_rag.intents import AnswerIntent

DocType = Literal["product", "material", "schema", "dictionary"]
DOC_TYPES: tuple = ("product", "material", "schema", "dictionary")
RECORD_DOC_TYPES: tuple = ("product", "material")
# Retrieval prefers actual records over reference text.
DOC_TYPE_PRIORITY = {"product": 1, "material": 2, "dictionary": 3, "schema": 4}


class Document(BaseModel):
    """One source entity (or synthetic reference doc)."""
    id: str
    doc_type: DocType
    entity_table: Optional[str] = None
    entity_id: Optional[str] = None
    title: str
    raw_text: str
    updated_at: datetime


class Chunk(BaseModel):
    """An ordered span of a document's text with its embedding."""
    id: str
    document_id: str
    chunk_index: int
    chunk_text: str
    embedding: List[float] = Field(default_factory=list)


class CandidateMatch(BaseModel):
    chunk_id: str
    doc_type: str
    entity_table: Optional[str] = None
    entity_id: Optional[str] = None
    title: str
    chunk_text: str
    distance: Optional[float] = None


class Citation(BaseModel):
    chunk_id: str
    title: Optional[str] = None


class Answer(BaseModel):
    answer_text: str
    matches: List[CandidateMatch] = Field(default_factory=list)
    citations: List[Citation] = Field(default_factory=list)
    grounded: bool = False
    confidence: float = Field(0.3, ge=0.0, le=1.0)
    missing_data: List[str] = Field(default_factory=list)
    next_questions: List[str] = Field(default_factory=list)


# ---------- Completion output schemas ----------

class RagQueryOutput(BaseModel):
    rag_query: str = Field(..., min_length=1)


class FilterOutput(BaseModel):
    keep_chunk_ids: List[str] = Field(default_factory=list)


class CandidateAnswer(BaseModel):
    """What a single answer policy proposes before arbitration."""
    intent: AnswerIntent = AnswerIntent.DETAIL
    answer: str
    citations: List[Citation] = Field(default_factory=list)
    grounded: bool = False
    confidence: float = Field(0.3, ge=0.0, le=1.0)
    missing_data: List[str] = Field(default_factory=list)
    next_questions: List[str] = Field(default_factory=list)


# ---------- Ingestion payloads ----------

class AttributeValue(BaseModel):
    name: str
    value: Optional[str] = None
    uom: Optional[str] = None


class ComponentLine(BaseModel):
    name: str
    part_number: Optional[str] = None
    quantity: Optional[float] = None
    notes: Optional[str] = None


class ProductRecord(BaseModel):
    id: str
    name: Optional[str] = None
    code: Optional[str] = None
    barcode: Optional[str] = None
    product_type: Optional[str] = None
    description: Optional[str] = None
    master_material_name: Optional[str] = None
    master_material_part_number: Optional[str] = None
    attributes: List[AttributeValue] = Field(default_factory=list)
    components: List[ComponentLine] = Field(default_factory=list)


class MaterialRecord(BaseModel):
    id: str
    name: Optional[str] = None
    material_code: Optional[str] = None
    part_number: Optional[str] = None
    type_name: Optional[str] = None
    category_name: Optional[str] = None
    uom: Optional[str] = None
    description: Optional[str] = None
    attributes: List[AttributeValue] = Field(default_factory=list)


class IngestRecordsPayload(BaseModel):
    products: List[ProductRecord] = Field(default_factory=list)
    materials: List[MaterialRecord] = Field(default_factory=list)
    # drop every stored product and material before loading
    rebuild: bool = False


class IngestReferencePayload(BaseModel):
    doc_type: Literal["schema", "dictionary"]
    title: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)


class IngestResponse(BaseModel):
    status: str
    documents: int
    chunks: int
    unchanged: int = 0


# ---------- API payloads ----------

class AskPayload(BaseModel):
    question: str = Field(..., min_length=1)


class DocumentSummary(BaseModel):
    id: str
    doc_type: str
    entity_table: Optional[str] = None
    entity_id: Optional[str] = None
    title: str
    updated_at: datetime


class DocumentsResponse(BaseModel):
    documents: List[DocumentSummary]


class DocumentWithChunksResponse(BaseModel):
    document: Document
    chunks: List[Chunk]


class EvalResult(BaseModel):
    question: str
    grounded: bool
    confidence: float
    missing_data: List[str]
    answer: str


class EvalResponse(BaseModel):
    total: int
    grounded_true: int
    low_confidence: int
    results: List[EvalResult]
