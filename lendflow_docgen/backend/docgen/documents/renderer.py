# backend/docgen/documents/renderer.py
from __future__ import annotations

import re
from io import BytesIO
from typing import Any, Mapping

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt, RGBColor

from ..domain.catalog import doc_type_label
from ..domain.findings import Finding
from ..domain.project_context import DocumentInput
from .templates import TemplateSpec

DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def section_heading(key: str) -> str:
    """camelCase prose key -> "Title Case" heading."""
    words = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", " ", key).split()
    return " ".join(w if w.isupper() else w.capitalize() for w in words)


def _title(doc: Document, text: str) -> None:
    p = doc.add_paragraph()
    p.alignment = WD_ALIGN_PARAGRAPH.CENTER
    run = p.add_run(text)
    run.bold = True
    run.font.size = Pt(16)


def _field_table(doc: Document, rows: list[tuple[str, str]]) -> None:
    table = doc.add_table(rows=0, cols=2)
    table.style = "Table Grid"
    for label, value in rows:
        cells = table.add_row().cells
        cells[0].text = label
        cells[1].text = value
        cells[0].paragraphs[0].runs[0].bold = True


def _data_table(doc: Document, headers: tuple[str, ...], rows: list[tuple[str, ...]]) -> None:
    table = doc.add_table(rows=1, cols=len(headers))
    table.style = "Table Grid"
    for i, h in enumerate(headers):
        cell = table.rows[0].cells[i]
        cell.text = h
        cell.paragraphs[0].runs[0].bold = True
    for row in rows:
        cells = table.add_row().cells
        for i, v in enumerate(row):
            cells[i].text = v


def _prose(doc: Document, value: Any) -> None:
    if isinstance(value, (list, tuple)):
        for item in value:
            doc.add_paragraph(str(item), style="List Bullet")
    elif value:
        for para in str(value).split("\n\n"):
            if para.strip():
                doc.add_paragraph(para.strip())


def _to_bytes(doc: Document) -> bytes:
    buf = BytesIO()
    doc.save(buf)
    return buf.getvalue()


def render_document(template: TemplateSpec, inp: DocumentInput, prose: Mapping[str, Any]) -> bytes:
    doc = Document()
    _title(doc, template.title)
    _field_table(doc, template.field_rows(inp))

    if template.boilerplate:
        doc.add_paragraph()
        doc.add_paragraph(template.boilerplate)

    if template.table is not None:
        headers, rows = template.table(inp)
        if rows:
            doc.add_paragraph()
            _data_table(doc, headers, rows)

    for n, key in enumerate(template.prose_sections, start=1):
        doc.add_heading(f"{n}. {section_heading(key)}", level=2)
        _prose(doc, prose.get(key))

    # sections the model returned beyond the required set are kept, after the required ones
    extra = [k for k in prose if k not in template.prose_sections]
    for key in extra:
        doc.add_heading(section_heading(key), level=2)
        _prose(doc, prose.get(key))

    doc.add_paragraph()
    sig = doc.add_paragraph(f"{inp.counterparty_name}\n\nBy: ______________________________\nName:\nTitle:")
    sig.paragraph_format.space_before = Pt(24)
    return _to_bytes(doc)


def render_placeholder(doc_type: str, inp: DocumentInput, finding: Finding) -> bytes:
    """Minimal notice stored in place of a document whose generation failed."""
    doc = Document()
    _title(doc, f"{doc_type_label(doc_type).upper()}: GENERATION FAILED")

    p = doc.add_paragraph()
    run = p.add_run("This document could not be generated and requires manual follow-up before closing.")
    run.bold = True
    run.font.color.rgb = RGBColor(0xC0, 0x39, 0x2B)

    _field_table(
        doc,
        [
            ("Project", inp.project_name),
            ("Counterparty", inp.counterparty_name),
            ("Document Type", doc_type),
            ("Error", finding.description),
        ],
    )
    if finding.recommendation:
        doc.add_paragraph(finding.recommendation)
    return _to_bytes(doc)
