# backend/tests/test_projects_api.py
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import LENDING_TERMS
from docgen.main import create_app
from docgen.models import Project

H = {"X-Org-Slug": "acme", "X-User-Email": "Analyst@Acme.test"}
OTHER = {"X-Org-Slug": "globex", "X-User-Email": "analyst@globex.test"}


@pytest.fixture()
def client(deps):
    with TestClient(create_app(deps)) as c:
        yield c


def _create(client, *, module="lending", terms=None, counterparty="Riverside Holdings LLC") -> dict:
    r = client.post(
        "/api/projects",
        json={
            "module": module,
            "name": "Riverside refinance",
            "counterparty_name": counterparty,
            "terms": LENDING_TERMS if terms is None else terms,
        },
        headers=H,
    )
    assert r.status_code == 200, r.text
    return r.json()


def _generate(client, project_id: int) -> dict:
    r = client.post(f"/api/projects/{project_id}/generate", headers=H)
    assert r.status_code == 200, r.text
    return r.json()


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.headers.get("X-Request-ID")


def test_requires_dev_headers(client):
    assert client.post("/api/projects", json={"module": "lending", "name": "x"}).status_code == 401
    r = client.get("/api/projects/1", headers={"X-Org-Slug": "acme"})
    assert r.status_code == 401


def test_unknown_module_rejected(client):
    r = client.post("/api/projects", json={"module": "insurance", "name": "x"}, headers=H)
    assert r.status_code == 422


def test_generate_runs_pipeline_to_completion(client, prose):
    proj = _create(client)
    assert proj["status"] == "CREATED"
    assert proj["terms"]["approvedAmount"] == 500000

    out = _generate(client, proj["id"])
    assert out["execution"] == "inline"
    assert out["triggered_at"]

    # TestClient runs background tasks before returning
    status = client.get(f"/api/projects/{proj['id']}/status", headers=H).json()
    assert status["status"] == "COMPLETE"

    docs = client.get(f"/api/projects/{proj['id']}/documents", headers=H).json()
    assert len(docs) == 13
    assert all(d["version"] == 1 for d in docs)
    assert all(d["compliance_issues"] for d in docs)
    assert len(prose.calls) == 8


def test_download_returns_docx(client):
    proj = _create(client)
    _generate(client, proj["id"])
    doc = client.get(f"/api/projects/{proj['id']}/documents", headers=H).json()[0]

    r = client.get(f"/api/documents/{doc['id']}/download", headers=H)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("application/vnd.openxmlformats")
    assert r.content[:2] == b"PK"


def test_regenerate_then_review(client, prose):
    proj = _create(client)
    _generate(client, proj["id"])
    docs = client.get(f"/api/projects/{proj['id']}/documents", headers=H).json()
    note = next(d for d in docs if d["doc_type"] == "promissory_note")

    r = client.post(f"/api/documents/{note['id']}/regenerate", json={"feedback": "Add a cure period"}, headers=H)
    assert r.status_code == 200, r.text
    v2 = r.json()
    assert v2["version"] == 2
    assert v2["feedback"] == "Add a cure period"
    assert prose.calls[-1] == ("promissory_note", "Add a cure period")

    current = client.get(f"/api/projects/{proj['id']}/documents?current_only=true", headers=H).json()
    assert len(current) == 13
    assert {d["id"] for d in current if d["doc_type"] == "promissory_note"} == {v2["id"]}

    # only the current version can be reviewed
    assert client.post(f"/api/documents/{note['id']}/review", headers=H).status_code == 409

    r = client.post(f"/api/documents/{v2['id']}/review", headers=H)
    assert r.status_code == 200
    assert r.json()["status"] == "reviewed"
    assert r.json()["reviewed_by"] == "analyst@acme.test"


def test_generate_with_missing_fields_is_422(client):
    proj = _create(client, terms={"approvedAmount": 250000, "termMonths": 120})
    r = client.post(f"/api/projects/{proj['id']}/generate", headers=H)
    assert r.status_code == 422
    assert r.json()["missing"] == ["interest_rate"]

    status = client.get(f"/api/projects/{proj['id']}/status", headers=H).json()
    assert status["status"] == "CREATED"


def test_generate_while_running_conflicts(client, db):
    proj = _create(client)
    row = db.get(Project, proj["id"])
    row.status = "GENERATING_DOCS"
    db.commit()

    r = client.post(f"/api/projects/{proj['id']}/generate", headers=H)
    assert r.status_code == 409
    assert r.json()["error"] == "PipelineConflict"


def test_retry_only_from_error(client):
    proj = _create(client)
    _generate(client, proj["id"])
    r = client.post(f"/api/projects/{proj['id']}/retry", headers=H)
    assert r.status_code == 409


def test_retry_after_failure_reruns(client, prose):
    terms = {"approvedAmount": 5000000, "exemptionType": "REG_D_506B"}
    proj = _create(client, module="syndication", terms=terms)

    prose.fail_on.add("subscription_agreement")
    _generate(client, proj["id"])
    status = client.get(f"/api/projects/{proj['id']}/status", headers=H).json()
    assert status["status"] == "ERROR"
    assert status["error_step"] == "subscription_agreement"

    prose.fail_on.clear()
    r = client.post(f"/api/projects/{proj['id']}/retry", headers=H)
    assert r.status_code == 200, r.text
    assert r.json()["cleanup"]["documents_deleted"] == 2

    status = client.get(f"/api/projects/{proj['id']}/status", headers=H).json()
    assert status["status"] == "COMPLETE"
    assert len(client.get(f"/api/projects/{proj['id']}/documents", headers=H).json()) == 5


def test_other_org_sees_404(client):
    proj = _create(client)
    assert client.get(f"/api/projects/{proj['id']}", headers=OTHER).status_code == 404
    assert client.post(f"/api/projects/{proj['id']}/generate", headers=OTHER).status_code == 404


def test_extraction_kind_validated(client):
    proj = _create(client)
    r = client.post(f"/api/projects/{proj['id']}/extractions", json={"kind": "tax_return", "data": {}}, headers=H)
    assert r.status_code == 400


def test_dscr_analysis_uses_extractions(client):
    proj = _create(client)
    r = client.post(
        f"/api/projects/{proj['id']}/extractions",
        json={"kind": "income", "data": {"qualifyingIncome": 60000}},
        headers=H,
    )
    assert r.status_code == 200
    assert r.json()["kind"] == "income"

    r = client.post(
        f"/api/projects/{proj['id']}/analysis/dscr",
        json={"proposed_loan_payment": 4000},
        headers=H,
    )
    assert r.status_code == 200
    body = r.json()
    assert body["noi"] == 60000
    assert body["proposed_debt_service"] == 48000
    assert body["global_dscr"] == 1.25
    assert body["rating"] == "adequate"


def test_history_lists_project_events_in_order(client):
    proj = _create(client)
    _generate(client, proj["id"])

    events = client.get(f"/api/projects/{proj['id']}/history", headers=H).json()
    assert [e["action"] for e in events] == ["project.created", "project.generation_requested"]
    assert events[0]["actor"] == "analyst@acme.test"
    assert events[0]["after"] == {"module": "lending", "name": "Riverside refinance"}
    assert events[1]["after"]["triggered_at"]
