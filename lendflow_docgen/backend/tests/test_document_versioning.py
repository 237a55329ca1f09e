# backend/tests/test_document_versioning.py
from __future__ import annotations

import pytest
from sqlalchemy import select

from docgen.errors import PipelineConflict, VersionConflict
from docgen.models import AuditEvent, GeneratedDocument, Project
from docgen.services import pipeline_orchestrator as orch
from docgen.services.document_versions import insert_document, next_version

from conftest import make_project


def _completed_project(db, deps) -> Project:
    p = make_project(db)
    out = orch.trigger(db, p.id, "t-1", deps)
    assert out.status == "complete"
    return p


def test_regenerating_n_times_yields_versions_one_to_n(db, deps, prose, storage):
    p = _completed_project(db, deps)

    for i in range(3):
        row = orch.regenerate_document(db, p.id, "promissory_note", deps, feedback=f"round {i}", actor="r@acme.test")
        assert row.version == i + 2

    versions = [d.version for d in orch.get_documents(db, p.id) if d.doc_type == "promissory_note"]
    assert versions == [1, 2, 3, 4]

    current = [d for d in orch.get_documents(db, p.id, current_only=True) if d.doc_type == "promissory_note"]
    assert len(current) == 1
    assert current[0].version == 4
    assert current[0].feedback == "round 2"

    assert ("promissory_note", "round 2") in prose.calls
    for v in range(1, 5):
        assert f"lending/{p.id}/promissory_note-v{v}.docx" in storage.objects


def test_previous_version_keeps_its_status_after_regeneration(db, deps):
    p = _completed_project(db, deps)
    v1 = next(d for d in orch.get_documents(db, p.id) if d.doc_type == "loan_agreement")
    orch.mark_reviewed(db, v1.id, actor="r@acme.test")

    orch.regenerate_document(db, p.id, "loan_agreement", deps)

    old = db.get(GeneratedDocument, v1.id, populate_existing=True)
    assert old.status == "reviewed"
    proj = db.get(Project, p.id, populate_existing=True)
    assert proj.status == "COMPLETE"
    assert proj.active_run_key is None

    actions = db.scalars(select(AuditEvent.action).where(AuditEvent.entity_type == "GeneratedDocument")).all()
    assert "document.reviewed" in actions
    assert "document.regenerated" in actions


def test_current_only_returns_one_row_per_doc_type(db, deps):
    p = _completed_project(db, deps)
    orch.regenerate_document(db, p.id, "commitment_letter", deps)

    all_docs = orch.get_documents(db, p.id)
    current = orch.get_documents(db, p.id, current_only=True)

    assert len(all_docs) == len(current) + 1
    assert len({d.doc_type for d in current}) == len(current)
    assert [d.doc_type for d in current] == sorted(d.doc_type for d in current)


def test_regenerate_refused_while_a_run_is_in_progress(db, deps):
    p = make_project(db)  # GENERATING_DOCS, no documents yet

    with pytest.raises(PipelineConflict):
        orch.regenerate_document(db, p.id, "promissory_note", deps)


def test_regenerate_rejects_doc_type_outside_module(db, deps):
    p = _completed_project(db, deps)
    with pytest.raises(ValueError):
        orch.regenerate_document(db, p.id, "ppm", deps)


def test_duplicate_version_is_a_version_conflict(db, deps):
    p = _completed_project(db, deps)
    existing = next(d for d in orch.get_documents(db, p.id) if d.doc_type == "promissory_note")

    with pytest.raises(VersionConflict):
        insert_document(
            db,
            project_id=p.id,
            doc_type="promissory_note",
            version=existing.version,
            storage_key="lending/dup.docx",
            status="draft",
            compliance_status="passed",
            compliance_issues=[],
            verification_status="passed",
            verification_issues=[],
        )
    assert next_version(db, p.id, "promissory_note") == 2


def test_only_current_version_can_be_reviewed(db, deps):
    p = _completed_project(db, deps)
    v1 = next(d for d in orch.get_documents(db, p.id) if d.doc_type == "opinion_letter")
    v2 = orch.regenerate_document(db, p.id, "opinion_letter", deps)

    with pytest.raises(PipelineConflict):
        orch.mark_reviewed(db, v1.id)

    reviewed = orch.mark_reviewed(db, v2.id, actor="r@acme.test")
    assert reviewed.status == "reviewed"
    assert reviewed.reviewed_by == "r@acme.test"

    with pytest.raises(PipelineConflict):
        orch.mark_reviewed(db, v2.id)
