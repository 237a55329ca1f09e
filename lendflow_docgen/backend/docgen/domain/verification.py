# backend/docgen/domain/verification.py
"""
Deterministic verification of AI-authored prose.

Plain string matching, no model call and no I/O: given the inputs a
document was generated from and the prose sections the model returned,
confirm the prose carries the figures and sections it is responsible for.

Numeric terms of template-handled doc types are rendered by the template,
so those checks are counted as run and passed rather than matched against
prose that was never asked to repeat them.
"""
from __future__ import annotations

from typing import Any, Iterable, Mapping

from .catalog import is_ai_doc, is_template_handled, required_prose_keys
from .findings import VerificationIssue, VerificationResult
from .formatting import format_currency, format_currency_detailed, format_grouped, number_str, to_fixed
from .project_context import DocumentInput

Prose = Mapping[str, Any]


def flatten_prose(prose: Prose) -> str:
    parts: list[str] = []
    for v in prose.values():
        if isinstance(v, (list, tuple)):
            parts.extend(str(x) for x in v if x is not None)
        elif v is not None:
            parts.append(str(v))
    return " ".join(parts)


def contains_any(text: str, candidates: Iterable[str]) -> bool:
    lower = text.lower()
    return any(c and c.lower() in lower for c in candidates)


def amount_candidates(amount: float) -> list[str]:
    out = [format_currency(amount), format_currency_detailed(amount), format_grouped(amount)]
    if float(amount).is_integer():
        out.append(str(int(amount)))
    return out


def rate_candidates(rate: float) -> list[str]:
    pct = round(rate * 100, 10)
    return [
        f"{to_fixed(pct, 3)}%",
        f"{to_fixed(pct, 2)}%",
        f"{to_fixed(pct, 1)}%",
        to_fixed(pct, 3),
        to_fixed(pct, 2),
        to_fixed(pct, 1),
    ]


def term_candidates(term_months: int) -> list[str]:
    months = str(term_months)
    years = to_fixed(term_months / 12, 0)
    years_decimal = to_fixed(term_months / 12, 1)
    return [
        f"{months} month",
        f"{months}-month",
        f"{years} year",
        f"{years}-year",
        f"{years_decimal} year",
    ]


def threshold_candidates(threshold: float) -> list[str]:
    pct = round(threshold * 100, 10)
    return [
        number_str(threshold),
        f"{number_str(threshold)}x",
        f"{to_fixed(pct, 0)}%",
        f"{to_fixed(pct, 1)}%",
        to_fixed(threshold, 2),
    ]


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def _missing_label(prose: Prose, key: str) -> str:
    if key not in prose or prose[key] is None:
        return "missing"
    return "empty array" if isinstance(prose[key], (list, tuple)) else "empty"


class _Tally:
    def __init__(self) -> None:
        self.run = 0
        self.passed = 0
        self.issues: list[VerificationIssue] = []

    def record(self, ok: bool, issue: VerificationIssue | None = None) -> None:
        self.run += 1
        if ok:
            self.passed += 1
        elif issue is not None:
            self.issues.append(issue)


def verify_document(doc_type: str, doc_input: DocumentInput, prose: Prose | None) -> VerificationResult:
    prose = prose or {}
    text = flatten_prose(prose)
    terms = doc_input.terms
    ai = is_ai_doc(doc_input.module, doc_type)
    # deterministic documents carry no model output; there is nothing to match.
    # An AI document with empty prose is still checked and fails on every figure.
    skip_text = is_template_handled(doc_type) or not ai
    t = _Tally()

    # ---- required prose sections ----
    keys = required_prose_keys(doc_input.module, doc_type)
    missing = [k for k in keys if _is_empty(prose.get(k))]
    for k in missing:
        t.issues.append(
            VerificationIssue(
                field=f"prose:{k}",
                expected=f'Non-empty value for "{k}"',
                found=_missing_label(prose, k),
                severity="critical",
            )
        )
    t.run += 1
    if not missing:
        t.passed += 1

    # ---- amount / rate / term ----
    # A figure the project does not carry has nothing to match and counts as passed.
    if skip_text or terms.approved_amount is None:
        t.record(True)
    else:
        t.record(
            contains_any(text, amount_candidates(terms.approved_amount)),
            VerificationIssue("approvedAmount", format_currency(terms.approved_amount), "not found in prose", "critical"),
        )

    if skip_text or terms.interest_rate is None:
        t.record(True)
    else:
        cands = rate_candidates(terms.interest_rate)
        t.record(
            contains_any(text, cands),
            VerificationIssue("interestRate", cands[0], "not found in prose", "critical"),
        )

    if skip_text or not terms.term_months:
        t.record(True)
    else:
        t.record(
            contains_any(text, term_candidates(terms.term_months)),
            VerificationIssue("termMonths", f"{terms.term_months} months", "not found in prose", "warning"),
        )

    # ---- counterparty ----
    if skip_text:
        t.record(True)
    else:
        t.record(
            contains_any(text, [doc_input.counterparty_name]),
            VerificationIssue("counterpartyName", doc_input.counterparty_name, "not found in prose", "warning"),
        )

    # ---- fees ----
    for fee in terms.fees:
        if skip_text:
            t.record(True)
            continue
        t.record(
            contains_any(text, amount_candidates(fee.amount)),
            VerificationIssue(
                f"fee:{fee.name}",
                f"{fee.name}: {format_currency(fee.amount)}",
                "fee amount not found in prose",
                "warning",
            ),
        )

    # ---- covenant thresholds (every doc type) ----
    for cov in terms.covenants:
        if cov.threshold is None:
            continue
        if not ai:
            t.record(True)
            continue
        t.record(
            contains_any(text, threshold_candidates(cov.threshold)),
            VerificationIssue(
                f"covenant:{cov.name}",
                f"{cov.name} threshold: {number_str(cov.threshold)}",
                "covenant threshold not found in prose",
                "warning",
            ),
        )

    passed = not any(i.severity == "critical" for i in t.issues)
    return VerificationResult(passed=passed, issues=tuple(t.issues), checks_run=t.run, checks_passed=t.passed)
