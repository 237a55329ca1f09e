# backend/docgen/domain/compliance/securities.py
"""
Private-offering rules shared by the capital-raise and syndication modules.
"""
from __future__ import annotations

from typing import Any, Mapping

from ..dscr import parse_currency
from ..findings import ComplianceCheck
from ..formatting import to_fixed
from ..project_context import DocumentInput

ICA_3C1_MAX_INVESTORS = 100
RULE_506B_MAX_NON_ACCREDITED = 35
MARKET_MAX_MANAGEMENT_FEE = 0.03

_LEGEND_MARKERS = ("securities act", "not been registered")


def _text(v: Any) -> str:
    if isinstance(v, (list, tuple)):
        return " ".join(str(x) for x in v if x)
    return "" if v is None else str(v)


def _present(prose: Mapping[str, Any], key: str) -> bool:
    v = prose.get(key)
    if isinstance(v, (list, tuple)):
        return any(str(x).strip() for x in v)
    return bool(_text(v).strip())


def is_506c(inp: DocumentInput) -> bool:
    return str(inp.attr("exemptionType", "")).upper() in {"REG_D_506C", "506C", "506(C)"}


def check_sec_legend(doc_type: str, inp: DocumentInput, prose: Mapping[str, Any]) -> ComplianceCheck:
    if doc_type != "ppm":
        return ComplianceCheck(
            "SEC Legend Present", "17 CFR 230.502(d)", "securities", True, "info",
            "Restricted-securities legend is rendered by the document template.",
        )
    legend = _text(prose.get("secLegend")).lower()
    passed = bool(legend.strip()) and any(m in legend for m in _LEGEND_MARKERS)
    return ComplianceCheck(
        "SEC Legend Present",
        "17 CFR 230.502(d)",
        "securities",
        passed,
        "info" if passed else "critical",
        "Rule 502(d) legend is present on the cover page."
        if passed
        else "Cover-page legend is missing or does not reference the Securities Act.",
        None if passed else "Regenerate the memorandum with the Rule 502(d) restricted-securities legend.",
    )


def check_general_solicitation(inp: DocumentInput) -> ComplianceCheck:
    if is_506c(inp):
        return ComplianceCheck(
            "General Solicitation Disclosure", "17 CFR 230.506(c)", "securities", True, "info",
            "506(c) offering: general solicitation is permitted; every purchaser must be a verified accredited investor.",
        )
    solicited = bool(inp.attr("generalSolicitation", False))
    return ComplianceCheck(
        "General Solicitation Disclosure",
        "17 CFR 230.502(c)",
        "securities",
        not solicited,
        "info" if not solicited else "critical",
        "506(b) offering: no general solicitation or advertising per Rule 502(c)."
        if not solicited
        else "506(b) offering is marked as generally solicited, which Rule 502(c) prohibits.",
        None if not solicited else "Switch the exemption to Rule 506(c) or stop general solicitation.",
    )


def check_investor_cap(inp: DocumentInput) -> ComplianceCheck | None:
    if str(inp.attr("icaExemption", "")).upper() != "SECTION_3C1":
        return None
    max_investors = int(parse_currency(inp.attr("maxInvestors", ICA_3C1_MAX_INVESTORS)))
    passed = max_investors <= ICA_3C1_MAX_INVESTORS
    return ComplianceCheck(
        "3(c)(1) Investor Limit",
        "15 U.S.C. Section 80a-3(c)(1)",
        "securities",
        passed,
        "info" if passed else "critical",
        f"Maximum {max_investors} investors; the Section 3(c)(1) limit is {ICA_3C1_MAX_INVESTORS} beneficial owners.",
        None if passed else f"Cap the offering at {ICA_3C1_MAX_INVESTORS} beneficial owners or rely on Section 3(c)(7).",
    )


def check_non_accredited_limit(inp: DocumentInput) -> ComplianceCheck | None:
    if is_506c(inp):
        return None
    limit = int(parse_currency(inp.attr("nonAccreditedLimit", RULE_506B_MAX_NON_ACCREDITED)))
    passed = limit <= RULE_506B_MAX_NON_ACCREDITED
    return ComplianceCheck(
        "Non-Accredited Investor Limit",
        "17 CFR 230.506(b)(2)(i)",
        "investor_protection",
        passed,
        "info" if passed else "critical",
        f"Non-accredited investor limit: {limit} (max {RULE_506B_MAX_NON_ACCREDITED} under 506(b)).",
    )


def check_risk_factors(prose: Mapping[str, Any]) -> ComplianceCheck:
    passed = _present(prose, "riskFactors")
    return ComplianceCheck(
        "Risk Factors Disclosure",
        "Rule 10b-5 (17 CFR 240.10b-5)",
        "anti_fraud",
        passed,
        "info" if passed else "critical",
        "Material risk factors are disclosed." if passed else "Risk factor disclosure is missing from the memorandum.",
        None if passed else "Regenerate the memorandum with a complete risk factors section.",
    )


def check_use_of_proceeds(prose: Mapping[str, Any], key: str) -> ComplianceCheck:
    passed = _present(prose, key)
    return ComplianceCheck(
        "Use of Proceeds Disclosure",
        "Securities Act Section 17(a)",
        "anti_fraud",
        passed,
        "info" if passed else "critical",
        "Use of proceeds is disclosed." if passed else "Use of proceeds disclosure is missing.",
    )


def check_management_fee(inp: DocumentInput) -> ComplianceCheck | None:
    raw = inp.attr("managementFee")
    if raw is None:
        return None
    fee = parse_currency(raw)
    passed = fee <= MARKET_MAX_MANAGEMENT_FEE
    return ComplianceCheck(
        "Management Fee Market Standard",
        "Market standard (informational)",
        "investor_protection",
        passed,
        "info" if passed else "warning",
        f"Management fee of {to_fixed(fee * 100, 2)}% "
        + ("is within market range." if passed else "exceeds the typical market range; disclose it prominently."),
    )


def securities_checks(doc_type: str, inp: DocumentInput, prose: Mapping[str, Any]) -> list[ComplianceCheck]:
    if doc_type == "pro_forma":
        return []

    checks: list[ComplianceCheck] = [check_sec_legend(doc_type, inp, prose), check_general_solicitation(inp)]
    for extra in (check_investor_cap(inp), check_non_accredited_limit(inp)):
        if extra is not None:
            checks.append(extra)

    if doc_type == "ppm":
        checks.append(check_risk_factors(prose))
        proceeds_key = "useOfProceeds" if inp.module == "capital" else "businessPlan"
        checks.append(check_use_of_proceeds(prose, proceeds_key))

    if doc_type in {"ppm", "operating_agreement", "side_letter"}:
        fee = check_management_fee(inp)
        if fee is not None:
            checks.append(fee)

    return checks
