"""Prompt templates for the completion calls.

Templates are rendered with ``str.format``; every one of them receives
``format_instructions`` (the JSON schema of the expected output) from
``OllamaClient.complete``.  Literal braces must therefore not appear in the
template text itself.
"""

from __future__ import annotations

from typing import Iterable

from erp_rag.models import CandidateMatch

REWRITE_PROMPT = """
You are rewriting a user question into a compact search query for hybrid retrieval over ERP catalog records (products and materials).

The index stores every record as labelled lines:
- Name
- Code / Material Code / Part Number
- Barcode
- Product Type / Type / Category
- Description
- Attributes (attribute name + unit + value), e.g. "- Primary Voltage (kV): 11"

Rewrite rules:
- Output a short keyword/spec query, not a sentence.
- Keep every name, code and barcode from the question exactly as written.
- Include key entity/type words (e.g. transformer, insulation material).
- If a numeric/unit value appears, include common spelling variants:
  - 11kV -> 11kV, 11 kV, 11 kilovolt, 11000 V
  - 200 Hz -> 200 Hz, 200Hz, 200 Hertz
- If the user implies an attribute, add the likely attribute label words:
  - "11kV transformer" -> also Primary Voltage, Voltage
  - "frequency 200" -> also Frequency
- A question about whether we have "built" or "made" something asks whether a matching record exists.
  Rewrite it as a record search over name, code, type and attributes, never as a manufacturing-history query.

{format_instructions}

User question:
<<<{question}>>>
"""

FILTER_PROMPT = """
You are filtering retrieval results for an ERP catalog assistant.

Goal:
Select ONLY the chunks that directly support answering the user question.
Question class (decided upstream): {evidence_class}

Admission rules by question class:
- use_case (suitability / "what can I use for ..."): keep a chunk only if its Description is non-empty and mentions a key concept of the question, OR an attribute line matches a key concept, OR the record's type/category clearly matches the implied need.
  Reject chunks whose Description is empty AND whose Attributes are empty or "(none)", unless the name or code matches the question exactly.
- identifier (a specific name, code or barcode): keep only chunks whose Name, Code, Material Code, Part Number or Barcode line matches it (case-insensitive).
- category ("do we have <category>"): keep only chunks whose Name or Type/Category line contains the category term.
- constrained (lists, counts, filters): keep only chunks that contain the constraint keyword or phrase, or an evident formatting variant of it, in Name, Code, Barcode, Type/Category, Description or an attribute line.
  A chunk missing the constraint in all of those fields must be rejected no matter how similar it looks.

Rules:
- Keep at most {max_keep} chunk ids, copied exactly from the "chunk_id=" headers.
- Keep an empty list if nothing qualifies. Do not guess.

User question:
<<<{question}>>>

Candidate sources:
<<<{sources}>>>

{format_instructions}
"""

_ANSWER_INTENTS = """
First classify the question into exactly one intent and put it in "intent":
- detail: asks for specific facts about a record (specs, attributes, components).
- lookup: asks to look up / show / find a record. Answer with a short record summary (name, code, type, key attributes).
  Do NOT start with Yes or No.
- existence: asks whether one specific item (by name, code or spec) exists. Start the answer with "Yes," or "No,".
- category: asks whether we have anything of a broad category. Start the answer with "Yes," or "No," and name the matching records when there are any.

The question looks like: {intent_hint}
"""

STRICT_ANSWER_PROMPT = """
You are an ERP catalog assistant. You are careful and conservative.

Use ONLY the information in SOURCES.
- Every fact you state must appear in SOURCES; cite the chunk_id of each source you used in "citations".
- If SOURCES do not answer the question, say you don't know, set grounded to false and list what is missing in missing_data.
- Set grounded to true only when every claim is directly supported by a cited source.
- confidence is a number between 0 and 1 reflecting how completely SOURCES answer the question.
""" + _ANSWER_INTENTS + """
User question:
<<<{question}>>>

SOURCES:
<<<{sources}>>>

{format_instructions}
"""

PERMISSIVE_ANSWER_PROMPT = """
You are an ERP catalog assistant. Answer as helpfully as the evidence allows.

Use the information in SOURCES.
- If a source's Name, Code or Barcode matches what the user asked about, treat that record as found and answer from it.
  Do not answer "No" or "couldn't find" when such a match is present.
- Partial information is still useful: answer with what SOURCES contain and list the rest in missing_data.
- Cite the chunk_id of each source you used in "citations"; never cite a chunk_id that is not in SOURCES.
- Set grounded to true when your answer is supported by the cited sources.
- confidence is a number between 0 and 1.
""" + _ANSWER_INTENTS + """
User question:
<<<{question}>>>

SOURCES:
<<<{sources}>>>

{format_instructions}
"""


def build_sources_text(matches: Iterable[CandidateMatch]) -> str:
    blocks = []
    for i, m in enumerate(matches, start=1):
        header = f"# Source {i} (chunk_id={m.chunk_id}, type={m.doc_type}, title={m.title})"
        blocks.append(f"{header}\n{m.chunk_text or ''}")
    return "\n\n".join(blocks)
