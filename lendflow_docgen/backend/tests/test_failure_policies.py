# backend/tests/test_failure_policies.py
from __future__ import annotations

import time

from docgen.errors import ProseGenerationError
from docgen.models import PipelineRun, Project
from docgen.services import pipeline_orchestrator as orch
from docgen.services.document_versions import compliance_issues, verification_issues
from docgen.services.pipeline_orchestrator import PipelineDeps
from docgen.services.storage import InMemoryArtifactStorage

from conftest import FakeProseClient, make_project

OFFERING_TERMS = {"approvedAmount": 5000000, "exemptionType": "REG_D_506B"}


def test_lending_failure_stores_flagged_placeholder_and_continues(db, deps, prose, storage):
    prose.fail_on.add("loan_agreement")
    p = make_project(db)

    out = orch.trigger(db, p.id, "t-1", deps)

    assert out.status == "needs_review"
    docs = {d.doc_type: d for d in orch.get_documents(db, p.id)}
    assert "opinion_letter" in docs  # later documents still generated

    ph = docs["loan_agreement"]
    assert ph.status == "flagged"
    assert ph.compliance_status == "flagged"
    assert ph.verification_status == "failed"
    issue = compliance_issues(ph)[0]
    assert issue["severity"] == "critical"
    assert issue["section"] == "generation"
    assert issue["description"] == "Document generation failed: model refused loan_agreement"
    assert issue["recommendation"]
    assert verification_issues(ph)[0]["severity"] == "critical"
    assert ph.storage_key in storage.objects

    proj = db.get(Project, p.id, populate_existing=True)
    assert proj.status == "NEEDS_REVIEW"
    assert proj.error_message is None
    assert proj.active_run_key is None


def test_syndication_failure_stops_run_and_keeps_earlier_documents(db, deps, prose):
    prose.fail_on.add("subscription_agreement")
    p = make_project(db, module="syndication", terms=OFFERING_TERMS)

    out = orch.trigger(db, p.id, "t-1", deps)

    assert out.status == "error"
    assert out.error_step == "subscription_agreement"
    assert [d.doc_type for d in orch.get_documents(db, p.id)] == ["operating_agreement", "ppm"]

    proj = db.get(Project, p.id, populate_existing=True)
    assert proj.status == "ERROR"
    assert proj.error_step == "subscription_agreement"
    assert "model refused subscription_agreement" in proj.error_message
    assert proj.active_run_key is None

    run = db.get(PipelineRun, out.run_id, populate_existing=True)
    assert run.status == "error"
    assert run.docs_generated == 2


def test_syndication_happy_path_completes(db, deps):
    p = make_project(db, module="syndication", terms=OFFERING_TERMS)
    out = orch.trigger(db, p.id, "t-1", deps)
    assert out.status == "complete"
    assert out.docs_generated == 5


def test_error_text_is_truncated(db, storage, rate_cache):
    class Verbose(FakeProseClient):
        def generate_prose(self, doc_type, project_data, feedback=None):
            raise ProseGenerationError("x" * 5000)

    deps = PipelineDeps(prose_client=Verbose(), storage=storage, rate_cache=rate_cache)

    cap = make_project(db, module="capital", terms=OFFERING_TERMS)
    orch.trigger(db, cap.id, "t-1", deps)
    proj = db.get(Project, cap.id, populate_existing=True)
    assert len(proj.error_message) == 500

    lend = make_project(db)
    orch.trigger(db, lend.id, "t-1", deps)
    ph = next(d for d in orch.get_documents(db, lend.id) if d.doc_type == "commitment_letter")
    desc = compliance_issues(ph)[0]["description"]
    assert desc == "Document generation failed: " + "x" * 200


def test_slow_document_times_out_and_never_writes_late(db, storage, rate_cache):
    slow = FakeProseClient(delay={"ppm": 1.0})
    deps = PipelineDeps(
        prose_client=slow,
        storage=storage,
        rate_cache=rate_cache,
        ai_timeout_seconds=0.2,
        deterministic_timeout_seconds=5.0,
    )
    p = make_project(db, module="capital", terms=OFFERING_TERMS)

    out = orch.trigger(db, p.id, "t-1", deps)

    assert out.status == "error"
    assert out.error_step == "ppm"
    assert "Timeout: ppm exceeded 0.2s limit" in out.error_message

    time.sleep(1.3)  # let the abandoned call finish
    assert not any("/ppm-" in k for k in storage.objects)
    assert orch.get_documents(db, p.id) == []


class SlowPutStorage(InMemoryArtifactStorage):
    def __init__(self, slow_suffix: str, seconds: float):
        super().__init__()
        self.slow_suffix = slow_suffix
        self.seconds = seconds

    def put(self, key, data, content_type):
        if key.endswith(self.slow_suffix):
            time.sleep(self.seconds)
        super().put(key, data, content_type)


def test_slow_storage_write_cannot_overwrite_placeholder(db, rate_cache):
    storage = SlowPutStorage("/loan_agreement-v1.docx", 0.6)
    deps = PipelineDeps(
        prose_client=FakeProseClient(),
        storage=storage,
        rate_cache=rate_cache,
        ai_timeout_seconds=0.3,
        deterministic_timeout_seconds=5.0,
    )
    p = make_project(db)

    out = orch.trigger(db, p.id, "t-1", deps)
    assert out.status == "needs_review"

    time.sleep(0.8)  # let the abandoned put land
    ph = {d.doc_type: d for d in orch.get_documents(db, p.id)}["loan_agreement"]
    assert ph.status == "flagged"
    assert ph.storage_key == f"lending/{p.id}/loan_agreement-v1-failed.docx"
    assert ph.storage_key in storage.objects
    assert f"lending/{p.id}/loan_agreement-v1.docx" not in storage.objects
    assert "Timeout" in compliance_issues(ph)[0]["description"]


def test_compliance_module_stops_at_first_failure(db, deps, prose):
    prose.fail_on.add("lp_quarterly_report")
    p = make_project(db, module="compliance", terms={"reportingPeriod": "Q3 2026"})

    out = orch.trigger(db, p.id, "t-1", deps)

    assert out.status == "error"
    assert out.error_step == "lp_quarterly_report"
    assert orch.get_documents(db, p.id) == []
