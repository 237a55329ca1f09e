# backend/docgen/domain/compliance/fund_reporting.py
from __future__ import annotations

from typing import Any, Mapping

from ..dscr import parse_currency
from ..findings import ComplianceCheck
from ..formatting import format_currency
from ..project_context import DocumentInput

SEC_REGISTRATION_AUM = 100_000_000


def _present(prose: Mapping[str, Any], key: str) -> bool:
    v = prose.get(key)
    if isinstance(v, (list, tuple)):
        return any(str(x).strip() for x in v)
    return bool(str(v or "").strip())


def check_reporting_period(inp: DocumentInput) -> ComplianceCheck:
    period = str(inp.attr("reportingPeriod", "") or "").strip()
    return ComplianceCheck(
        "Reporting Period Defined",
        "ILPA Reporting Template",
        "disclosure",
        bool(period),
        "info" if period else "critical",
        f"Reporting period: {period}." if period else "No reporting period is set on the fund.",
        None if period else "Set the reporting period before generating investor reports.",
    )


def check_amount(inp: DocumentInput, key: str, name: str, regulation: str) -> ComplianceCheck:
    amount = parse_currency(inp.attr(key, 0))
    passed = amount > 0
    return ComplianceCheck(
        name,
        regulation,
        "disclosure",
        passed,
        "info" if passed else "critical",
        f"Amount of {format_currency(amount)} specified." if passed else f"No positive {key} on the fund.",
    )


def check_call_within_commitments(inp: DocumentInput) -> ComplianceCheck | None:
    unfunded = inp.attr("unfundedCommitments")
    if unfunded is None:
        return None
    call = parse_currency(inp.attr("callAmount", 0))
    remaining = parse_currency(unfunded)
    passed = call <= remaining
    return ComplianceCheck(
        "Call Within Unfunded Commitments",
        "Limited Partnership Agreement",
        "standard",
        passed,
        "info" if passed else "critical",
        f"Call of {format_currency(call)} against {format_currency(remaining)} unfunded commitments.",
        None if passed else "Reduce the call to the remaining unfunded commitments.",
    )


def check_prose_disclosure(prose: Mapping[str, Any], key: str, name: str, regulation: str) -> ComplianceCheck:
    passed = _present(prose, key)
    return ComplianceCheck(
        name,
        regulation,
        "disclosure",
        passed,
        "info" if passed else "warning",
        f"{name} included." if passed else f"{name} missing from the generated narrative.",
    )


def check_registration_threshold(inp: DocumentInput) -> ComplianceCheck:
    aum = parse_currency(inp.attr("regulatoryAum", 0))
    must_register = aum >= SEC_REGISTRATION_AUM
    return ComplianceCheck(
        "SEC Registration Threshold",
        "Investment Advisers Act Section 203A",
        "regulatory",
        True,
        "info",
        f"Regulatory AUM of {format_currency(aum)}: "
        + ("SEC registration required." if must_register else "below the SEC registration threshold; state registration may apply."),
    )


def fund_reporting_checks(doc_type: str, inp: DocumentInput, prose: Mapping[str, Any]) -> list[ComplianceCheck]:
    checks: list[ComplianceCheck] = []
    if doc_type in {"lp_quarterly_report", "annual_report"}:
        checks.append(check_reporting_period(inp))
        key = "feeAndExpenseDisclosure" if doc_type == "lp_quarterly_report" else "valuationMethodology"
        checks.append(check_prose_disclosure(prose, key, "Fee and Valuation Disclosure", "ILPA Reporting Template"))
    elif doc_type == "capital_call_notice":
        checks.append(check_amount(inp, "callAmount", "Call Amount Specified", "Limited Partnership Agreement"))
        within = check_call_within_commitments(inp)
        if within is not None:
            checks.append(within)
        checks.append(check_prose_disclosure(prose, "defaultProvisionsNarrative", "Default Provisions", "Limited Partnership Agreement"))
    elif doc_type == "distribution_notice":
        checks.append(check_amount(inp, "distributionAmount", "Distribution Amount Specified", "Limited Partnership Agreement"))
        checks.append(check_prose_disclosure(prose, "waterfallExplanation", "Distribution Waterfall", "Limited Partnership Agreement"))
    elif doc_type == "k1_summary":
        year = inp.attr("taxYear")
        checks.append(
            ComplianceCheck(
                "Tax Year Specified", "IRC Section 6031", "regulatory", bool(year),
                "info" if year else "critical",
                f"Tax year {year}." if year else "No tax year set for the K-1 summary.",
            )
        )
    elif doc_type == "form_adv_summary":
        checks.append(check_registration_threshold(inp))
        checks.append(check_prose_disclosure(prose, "conflictsOfInterest", "Conflicts of Interest", "Form ADV Part 2A"))
    return checks
