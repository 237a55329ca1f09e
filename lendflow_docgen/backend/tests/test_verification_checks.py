# backend/tests/test_verification_checks.py
from __future__ import annotations

from docgen.domain.catalog import required_prose_keys
from docgen.domain.project_context import Covenant, DealTerms, DocumentInput, Fee
from docgen.domain.verification import amount_candidates, rate_candidates, term_candidates, verify_document


def _inp(module="lending", **terms) -> DocumentInput:
    t = dict(approved_amount=500000.0, interest_rate=0.0725, term_months=360)
    t.update(terms)
    return DocumentInput(
        project_id=1,
        org_id=1,
        module=module,
        project_name="Test deal",
        counterparty_name="Riverside Holdings LLC",
        terms=DealTerms(**t),
    )


def _full_prose(module: str, doc_type: str, text: str = "Standard clause.") -> dict:
    return {k: text for k in required_prose_keys(module, doc_type)}


def test_promissory_note_missing_default_provisions():
    prose = _full_prose("lending", "promissory_note")
    del prose["defaultProvisions"]

    out = verify_document("promissory_note", _inp(), prose)

    assert out.passed is False
    crit = [i for i in out.issues if i.severity == "critical"]
    assert [i.field for i in crit] == ["prose:defaultProvisions"]
    assert crit[0].found == "missing"
    # required keys + amount + rate + term + counterparty; numeric checks skipped as passed
    assert out.checks_run == 5
    assert out.checks_passed == 4


def test_template_doc_with_complete_prose_passes_without_figures():
    out = verify_document("promissory_note", _inp(), _full_prose("lending", "promissory_note"))
    assert out.passed is True
    assert out.issues == ()
    assert out.checks_run == out.checks_passed


def test_empty_section_values_are_reported_by_kind():
    prose = _full_prose("lending", "commitment_letter")
    prose["conditionsPrecedent"] = []
    prose["governingLaw"] = "   "

    out = verify_document("commitment_letter", _inp(), prose)

    found = {i.field: i.found for i in out.issues}
    assert found["prose:conditionsPrecedent"] == "empty array"
    assert found["prose:governingLaw"] == "empty"
    assert out.passed is False


def test_amount_check_is_independent_of_rate_and_term():
    inp = _inp(module="capital")
    prose = _full_prose("capital", "side_letter", "Riverside Holdings LLC commits $500,000 to the fund.")

    out = verify_document("side_letter", inp, prose)

    fields = {i.field: i.severity for i in out.issues}
    assert "approvedAmount" not in fields
    assert fields["interestRate"] == "critical"
    assert fields["termMonths"] == "warning"
    assert out.passed is False


def test_non_template_doc_with_all_figures_passes():
    text = "Riverside Holdings LLC: $500,000 at 7.25% over 30 years (360 months)."
    out = verify_document("side_letter", _inp(module="capital"), _full_prose("capital", "side_letter", text))
    assert out.passed is True
    assert out.checks_passed == out.checks_run


def test_missing_counterparty_is_only_a_warning():
    text = "$500,000 at 7.250% for 360 months."
    out = verify_document("side_letter", _inp(module="capital"), _full_prose("capital", "side_letter", text))
    assert out.passed is True
    assert [(i.field, i.severity) for i in out.issues] == [("counterpartyName", "warning")]


def test_fee_and_covenant_figures_are_checked():
    inp = _inp(
        module="capital",
        fees=(Fee("Placement Fee", 12500.0),),
        covenants=(Covenant("Minimum DSCR", "", 1.25),),
    )
    text = "Riverside Holdings LLC $500,000 at 7.25% for 360 months."
    out = verify_document("side_letter", inp, _full_prose("capital", "side_letter", text))

    fields = {i.field for i in out.issues}
    assert "fee:Placement Fee" in fields
    assert "covenant:Minimum DSCR" in fields
    assert out.passed is True  # both are warnings

    text += " Placement Fee of $12,500. DSCR no lower than 1.25x."
    out = verify_document("side_letter", inp, _full_prose("capital", "side_letter", text))
    assert out.issues == ()


def test_deterministic_doc_without_prose_passes():
    inp = _inp(covenants=(Covenant("Minimum DSCR", "", 1.25),), fees=(Fee("Origination Fee", 5000.0),))
    out = verify_document("amortization_schedule", inp, {})
    assert out.passed is True
    assert out.checks_run == out.checks_passed == 7


def test_ai_doc_with_empty_prose_fails_every_figure():
    out = verify_document("side_letter", _inp(module="capital"), {})

    assert out.passed is False
    fields = {i.field: i.severity for i in out.issues}
    assert fields["approvedAmount"] == "critical"
    assert fields["interestRate"] == "critical"
    assert fields["termMonths"] == "warning"
    assert fields["counterpartyName"] == "warning"
    assert all(f"prose:{k}" in fields for k in required_prose_keys("capital", "side_letter"))
    # required keys + amount + rate + term + counterparty, none passed
    assert out.checks_run == 5
    assert out.checks_passed == 0


def test_absent_figures_count_as_passed():
    inp = _inp(module="compliance", approved_amount=None, interest_rate=None, term_months=None)
    prose = _full_prose("compliance", "capital_call_notice", "Riverside Holdings LLC is called.")
    out = verify_document("capital_call_notice", inp, prose)
    assert out.passed is True
    assert out.checks_run == out.checks_passed


def test_candidate_spellings():
    assert "$500,000" in amount_candidates(500000)
    assert "$500,000.00" in amount_candidates(500000)
    assert "500000" in amount_candidates(500000)
    assert "7.250%" in rate_candidates(0.0725)
    assert "7.25%" in rate_candidates(0.0725)
    assert "30-year" in term_candidates(360)
    assert "360 month" in term_candidates(360)
