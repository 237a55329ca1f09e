# backend/docgen/domain/compliance/ma.py
from __future__ import annotations

import re
from typing import Any, Mapping

from ..findings import ComplianceCheck
from ..project_context import DocumentInput

_DURATION = re.compile(r"\b(\d+|one|two|three|four|five)\s*(?:\(\d+\)\s*)?[- ]?(year|month)s?\b", re.IGNORECASE)


def _text(v: Any) -> str:
    if isinstance(v, (list, tuple)):
        return " ".join(str(x) for x in v if x)
    return "" if v is None else str(v)


def check_governing_law(inp: DocumentInput, prose: Mapping[str, Any]) -> ComplianceCheck:
    clause = _text(prose.get("governingLaw")).strip()
    state = str(inp.attr("governingLawState", "") or "").strip()
    if not clause:
        return ComplianceCheck(
            "Governing Law Clause", "Contract formation", "standard", False, "critical",
            "No governing law clause was produced.",
            "Regenerate with an explicit choice-of-law and forum clause.",
        )
    if state and state.lower() not in clause.lower():
        return ComplianceCheck(
            "Governing Law Clause", "Contract formation", "standard", False, "warning",
            f"Governing law clause does not name the agreed jurisdiction ({state}).",
            f"Conform the clause to {state} law.",
        )
    return ComplianceCheck(
        "Governing Law Clause", "Contract formation", "standard", True, "info",
        "Governing law clause present.",
    )


def check_confidentiality_term(prose: Mapping[str, Any], key: str) -> ComplianceCheck:
    text = _text(prose.get(key))
    passed = bool(_DURATION.search(text))
    return ComplianceCheck(
        "Confidentiality Term",
        "Trade secret / NDA practice",
        "standard",
        passed,
        "info" if passed else "warning",
        "Confidentiality obligations carry a stated duration."
        if passed
        else "Confidentiality obligations do not state a duration.",
        None if passed else "State a fixed survival period (typically 2-3 years) for confidentiality obligations.",
    )


def check_binding_statement(prose: Mapping[str, Any]) -> ComplianceCheck:
    text = _text(prose.get("bindingNonBindingStatement")).lower()
    passed = "non-binding" in text or "nonbinding" in text or "not binding" in text
    return ComplianceCheck(
        "Binding / Non-Binding Allocation",
        "Letter of intent enforceability",
        "standard",
        passed,
        "info" if passed else "critical",
        "Letter identifies which provisions are non-binding."
        if passed
        else "Letter does not separate binding from non-binding provisions.",
        None if passed else "Add an explicit non-binding statement excluding exclusivity and confidentiality.",
    )


def ma_checks(doc_type: str, inp: DocumentInput, prose: Mapping[str, Any]) -> list[ComplianceCheck]:
    if not prose:
        return []

    checks: list[ComplianceCheck] = []
    if doc_type == "nda":
        checks.append(check_confidentiality_term(prose, "termAndDuration"))
    elif doc_type == "loi":
        checks.append(check_confidentiality_term(prose, "confidentialityProvision"))
        checks.append(check_binding_statement(prose))

    if "governingLaw" in prose or doc_type in {"loi", "nda", "purchase_agreement"}:
        checks.append(check_governing_law(inp, prose))
    return checks
