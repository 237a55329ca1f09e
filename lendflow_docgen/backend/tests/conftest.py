# backend/tests/conftest.py
from __future__ import annotations

import json
import os
import tempfile
import time

_TMP = tempfile.mkdtemp(prefix="docgen-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'docgen_test.db')}"
os.environ["ARTIFACT_ROOT"] = os.path.join(_TMP, "artifacts")
os.environ["FRED_API_KEY"] = ""
os.environ["PIPELINE_EXECUTION"] = "inline"

import pytest  # noqa: E402

from docgen.clients.fred import FredClient  # noqa: E402
from docgen.db import Base, SessionLocal, engine  # noqa: E402
from docgen.domain.catalog import ARRAY_PROSE_KEYS, required_prose_keys  # noqa: E402
from docgen.domain.formatting import format_currency, format_percent, number_str  # noqa: E402
from docgen.errors import ProseGenerationError  # noqa: E402
from docgen.integrations.prose_client import ProseClient, ProseResult  # noqa: E402
from docgen.models import Organization, Project  # noqa: E402
from docgen.services.market_rates import MarketRateCache  # noqa: E402
from docgen.services.pipeline_orchestrator import PipelineDeps  # noqa: E402
from docgen.services.storage import InMemoryArtifactStorage  # noqa: E402


class FakeProseClient(ProseClient):
    """
    Echoes the deal terms into every required section so verification passes.
    fail_on / omit / delay let tests break individual doc types.
    """

    def __init__(self, *, fail_on=(), omit=None, delay=None):
        self.fail_on = set(fail_on)
        self.omit = dict(omit or {})
        self.delay = dict(delay or {})
        self.calls: list[tuple[str, str | None]] = []

    def generate_prose(self, doc_type, project_data, feedback=None):
        self.calls.append((doc_type, feedback))
        if doc_type in self.delay:
            time.sleep(self.delay[doc_type])
        if doc_type in self.fail_on:
            raise ProseGenerationError(f"model refused {doc_type}")

        facts = [f"{project_data.get('counterpartyName')} is party to this agreement."]
        if project_data.get("approvedAmount") is not None:
            facts.append(f"Principal amount of {format_currency(project_data['approvedAmount'])}.")
        if project_data.get("interestRate") is not None:
            facts.append(f"Interest accrues at {format_percent(project_data['interestRate'])} per annum.")
        if project_data.get("termMonths"):
            facts.append(f"The term is {project_data['termMonths']} months.")
        for fee in project_data.get("fees") or []:
            facts.append(f"{fee['name']} of {format_currency(fee['amount'])}.")
        for cov in project_data.get("covenants") or []:
            if cov.get("threshold") is not None:
                facts.append(f"{cov['name']} of at least {number_str(cov['threshold'])}x.")
        facts.append("These securities have not been registered under the Securities Act of 1933.")
        facts.append("All provisions are non-binding except confidentiality, which survives for two years.")
        facts.append("This agreement is governed by the laws of the State of Delaware.")
        body = " ".join(facts)

        sections = {}
        for key in required_prose_keys(str(project_data.get("module")), doc_type):
            if key in self.omit.get(doc_type, ()):
                continue
            sections[key] = [body, f"Additional {key} clause."] if key in ARRAY_PROSE_KEYS else body
        return ProseResult(sections=sections, model="fake")


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def prose():
    return FakeProseClient()


@pytest.fixture()
def storage():
    return InMemoryArtifactStorage()


@pytest.fixture()
def rate_cache():
    return MarketRateCache(FredClient(api_key=""))


@pytest.fixture()
def deps(prose, storage, rate_cache):
    return PipelineDeps(
        prose_client=prose,
        storage=storage,
        rate_cache=rate_cache,
        ai_timeout_seconds=30.0,
        deterministic_timeout_seconds=30.0,
    )


LENDING_TERMS = {
    "approvedAmount": 500000,
    "interestRate": 0.0725,
    "termMonths": 360,
    "stateAbbr": "AZ",
    "fees": [{"name": "Origination Fee", "amount": 5000}],
}


def make_org(db, slug: str = "acme") -> Organization:
    org = Organization(slug=slug, name=slug)
    db.add(org)
    db.commit()
    db.refresh(org)
    return org


def make_project(
    db,
    *,
    module: str = "lending",
    terms: dict | None = None,
    counterparty: str = "Riverside Holdings LLC",
    status: str = "GENERATING_DOCS",
    org: Organization | None = None,
) -> Project:
    org = org or make_org(db, slug=f"org-{module}-{time.monotonic_ns()}")
    p = Project(
        org_id=org.id,
        module=module,
        name=f"{module} deal",
        counterparty_name=counterparty,
        status=status,
        terms_json=json.dumps(LENDING_TERMS if terms is None else terms),
    )
    db.add(p)
    db.commit()
    db.refresh(p)
    return p
