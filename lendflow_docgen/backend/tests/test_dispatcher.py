# backend/tests/test_dispatcher.py
from __future__ import annotations

from io import BytesIO

import pytest
from docx import Document

from docgen.documents.dispatcher import generate_document
from docgen.documents.renderer import render_placeholder, section_heading
from docgen.domain.findings import Finding
from docgen.domain.project_context import DealTerms, DocumentInput, Fee


def _inp(module="lending", transaction_type=None, **terms) -> DocumentInput:
    t = dict(
        approved_amount=500000.0,
        interest_rate=0.0725,
        term_months=360,
        fees=(Fee("Origination Fee", 5000.0),),
    )
    t.update(terms)
    return DocumentInput(
        project_id=7,
        org_id=1,
        module=module,
        project_name="Riverside refinance",
        counterparty_name="Riverside Holdings LLC",
        terms=DealTerms(**t),
        state_abbr="AZ",
        transaction_type=transaction_type,
    )


def _paragraphs(buffer: bytes) -> list[str]:
    return [p.text for p in Document(BytesIO(buffer)).paragraphs]


def test_section_heading():
    assert section_heading("defaultProvisions") == "Default Provisions"
    assert section_heading("governingLaw") == "Governing Law"


def test_promissory_note_renders_numbered_prose_sections(prose, rate_cache):
    out = generate_document(_inp(), "promissory_note", prose, rate_cache=rate_cache)

    assert out.buffer[:2] == b"PK"
    assert out.resolved_doc_type == "promissory_note"
    assert prose.calls == [("promissory_note", None)]

    text = _paragraphs(out.buffer)
    assert text[0] == "PROMISSORY NOTE"
    assert "1. Default Provisions" in text
    assert "2. Acceleration Clause" in text
    assert out.verification.passed is True
    assert len(out.compliance_checks) == 6


def test_deterministic_document_skips_prose(prose, rate_cache):
    out = generate_document(_inp(), "amortization_schedule", prose, rate_cache=rate_cache)

    assert prose.calls == []
    assert out.prose == {}
    assert out.verification.passed is True
    # fixed amortization table: header row plus one row per month
    tables = Document(BytesIO(out.buffer)).tables
    assert len(tables[-1].rows) == 361


def test_feedback_is_passed_to_prose(prose, rate_cache):
    generate_document(_inp(), "loan_agreement", prose, rate_cache=rate_cache, feedback="Tighten default language")
    assert prose.calls == [("loan_agreement", "Tighten default language")]


def test_purchase_agreement_resolves_by_transaction_type(prose):
    inp = _inp(module="ma", transaction_type="asset_purchase")
    out = generate_document(inp, "purchase_agreement", prose)

    assert out.resolved_doc_type == "asset_purchase_agreement"
    assert _paragraphs(out.buffer)[0] == "ASSET PURCHASE AGREEMENT"
    # prose is requested for the generic type
    assert prose.calls == [("purchase_agreement", None)]


def test_unknown_transaction_type_keeps_generic_agreement(prose):
    out = generate_document(_inp(module="ma", transaction_type="joint_venture"), "purchase_agreement", prose)
    assert out.resolved_doc_type == "purchase_agreement"


def test_lending_without_rate_cache_is_rejected(prose):
    with pytest.raises(ValueError):
        generate_document(_inp(), "promissory_note", prose)


def test_placeholder_carries_failure_notice():
    finding = Finding("critical", "generation", "Document generation failed: model refused guaranty")
    buffer = render_placeholder("guaranty", _inp(), finding)

    assert buffer[:2] == b"PK"
    text = _paragraphs(buffer)
    assert text[0] == "GUARANTY AGREEMENT: GENERATION FAILED"
    cells = [c.text for row in Document(BytesIO(buffer)).tables[0].rows for c in row.cells]
    assert "Document generation failed: model refused guaranty" in cells
