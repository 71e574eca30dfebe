"""Text layout of catalog records.

Products and materials are flattened into labelled lines before they are
chunked and embedded::

    Entity: Product
    ProductId: 42
    Name: Distribution Transformer 500
    Code: PE: TX-3151-55/12
    Barcode: 0903812
    Product Type: Transformer
    Description: Oil immersed distribution transformer

    Master Material:
    - Name: Core steel
    - Part Number: CS-100

    Attributes:
    - Rated Power (kVA): 500
    - Cooling Type: ONAN

    Components (Materials used):
    - Radiator (Part#: RD-9) | Qty: 4 | Notes: Hyundai

``render_product`` and ``render_material`` produce this layout at ingestion
time and ``parse_record`` reads the labelled fields back out of a chunk so
the evidence filter can check where a term occurs.  Chunks are windows over
the full text, so any field may be missing from a given chunk.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from erp_rag.models import MaterialRecord, ProductRecord

NAME_LABELS = {"name"}
CODE_LABELS = {"code", "barcode", "material code", "part number"}
CATEGORY_LABELS = {"product type", "type", "category"}
DESCRIPTION_LABELS = {"description"}

_LABELLED = re.compile(r"^([A-Za-z][A-Za-z #]*?):\s*(.*)$")
_SECTION = re.compile(r"^(Attributes|Components \(Materials used\)|Master Material):\s*$")
_NONE_LINE = re.compile(r"^-\s*\(none\)\s*$", re.IGNORECASE)


@dataclass
class RecordFields:
    """Labelled fields recovered from one chunk of record text."""

    names: List[str] = field(default_factory=list)
    codes: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    description: str = ""
    attributes: List[str] = field(default_factory=list)

    @property
    def identifier_lines(self) -> List[str]:
        return self.names + self.codes

    @property
    def searchable_lines(self) -> List[str]:
        """Fields a constraint keyword has to appear in to count as evidence."""
        lines = self.names + self.codes + self.categories + self.attributes
        if self.description:
            lines.append(self.description)
        return lines

    @property
    def is_bare(self) -> bool:
        """No description and no attribute values."""
        return not self.description.strip() and not self.attributes


def parse_record(chunk_text: str) -> RecordFields:
    fields = RecordFields()
    section: Optional[str] = None
    for raw in (chunk_text or "").splitlines():
        line = raw.strip()
        if not line:
            continue
        sec = _SECTION.match(line)
        if sec:
            section = sec.group(1).split()[0].lower()
            continue
        if line.startswith("-"):
            if _NONE_LINE.match(line):
                continue
            if section == "attributes":
                fields.attributes.append(line.lstrip("- ").strip())
            # master material and component lines describe other records
            continue
        m = _LABELLED.match(line)
        if not m:
            if section is None and fields.description:
                # description continues on the following line
                fields.description = f"{fields.description} {line}"
            continue
        section = None
        label, value = m.group(1).strip().lower(), m.group(2).strip()
        if not value:
            continue
        if label in NAME_LABELS:
            fields.names.append(value)
        elif label in CODE_LABELS:
            fields.codes.append(value)
        elif label in CATEGORY_LABELS:
            fields.categories.append(value)
        elif label in DESCRIPTION_LABELS:
            fields.description = value
    return fields


def _s(value) -> str:
    return "" if value is None else str(value)


def _distinct_non_empty(lines: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for line in lines:
        s = (line or "").strip()
        if not s or s in seen:
            continue
        seen.add(s)
        out.append(s)
    return out


def _attribute_lines(record) -> List[str]:
    return _distinct_non_empty(
        f"- {_s(a.name)}{f' ({a.uom})' if a.uom else ''}: {_s(a.value)}"
        for a in record.attributes
    )


def render_product(p: ProductRecord) -> str:
    attrs = _attribute_lines(p)
    comps = _distinct_non_empty(
        f"- {_s(c.name)}"
        + (f" (Part#: {c.part_number})" if c.part_number else "")
        + (f" | Qty: {c.quantity}" if c.quantity is not None else "")
        + (f" | Notes: {c.notes}" if c.notes else "")
        for c in p.components
    )
    return "\n".join([
        "Entity: Product",
        f"ProductId: {p.id}",
        f"Name: {_s(p.name)}",
        f"Code: {_s(p.code)}",
        f"Barcode: {_s(p.barcode)}",
        f"Product Type: {_s(p.product_type)}",
        f"Description: {_s(p.description)}",
        "",
        "Master Material:",
        f"- Name: {_s(p.master_material_name)}",
        f"- Part Number: {_s(p.master_material_part_number)}",
        "",
        "Attributes:",
        "\n".join(attrs) if attrs else "- (none)",
        "",
        "Components (Materials used):",
        "\n".join(comps) if comps else "- (none)",
    ])


def render_material(m: MaterialRecord) -> str:
    attrs = _attribute_lines(m)
    return "\n".join([
        "Entity: Material",
        f"MaterialId: {m.id}",
        f"Name: {_s(m.name)}",
        f"Material Code: {_s(m.material_code)}",
        f"Part Number: {_s(m.part_number)}",
        f"Type: {_s(m.type_name)}",
        f"Category: {_s(m.category_name)}",
        f"UOM: {_s(m.uom)}",
        f"Description: {_s(m.description)}",
        "",
        "Attributes:",
        "\n".join(attrs) if attrs else "- (none)",
    ])


def product_title(p: ProductRecord) -> str:
    return f"Product: {p.name or p.code or p.id}"


def material_title(m: MaterialRecord) -> str:
    return f"Material: {m.name or m.part_number or m.id}"
