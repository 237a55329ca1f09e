# backend/docgen/domain/compliance/lending.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ...config import settings
from ..dscr import calculate_dscr
from ..findings import ComplianceCheck
from ..formatting import format_currency, to_fixed
from ..project_context import DocumentInput

# NO_CAP marks states without a usury ceiling for written commercial contracts.
NO_CAP = 9.99


@dataclass(frozen=True)
class UsuryLimit:
    rate: float
    statute: str
    commercial_exempt_above: Optional[float] = None


STATE_USURY_LIMITS: dict[str, UsuryLimit] = {
    "AL": UsuryLimit(0.08, "Ala. Code §8-8-5", 2000),
    "AK": UsuryLimit(0.105, "Alaska Stat. §45.45.010", 25000),
    "AZ": UsuryLimit(NO_CAP, "Ariz. Rev. Stat. §44-1201"),
    "AR": UsuryLimit(0.17, "Ark. Const. Amend. 89 §3"),
    "CA": UsuryLimit(0.10, "Cal. Const. Art. XV §1", 300000),
    "CO": UsuryLimit(0.12, "Colo. Rev. Stat. §5-12-103", 75000),
    "CT": UsuryLimit(0.12, "Conn. Gen. Stat. §37-4"),
    "DE": UsuryLimit(0.105, "Del. Code tit. 6, §2301", 100000),
    "DC": UsuryLimit(0.24, "D.C. Code §28-3301"),
    "FL": UsuryLimit(0.18, "Fla. Stat. §687.02", 500000),
    "GA": UsuryLimit(NO_CAP, "Ga. Code §7-4-2", 3000),
    "HI": UsuryLimit(0.10, "Haw. Rev. Stat. §478-4", 750000),
    "ID": UsuryLimit(0.12, "Idaho Code §28-22-104"),
    "IL": UsuryLimit(0.09, "815 ILCS 205/4", 5000),
    "IN": UsuryLimit(0.21, "Ind. Code §24-4.6-1-102"),
    "IA": UsuryLimit(NO_CAP, "Iowa Code §535.2", 25000),
    "KS": UsuryLimit(0.15, "Kan. Stat. §16-207", 25000),
    "KY": UsuryLimit(0.19, "Ky. Rev. Stat. §360.010", 15000),
    "LA": UsuryLimit(0.12, "La. Rev. Stat. §9:3500"),
    "ME": UsuryLimit(NO_CAP, "Me. Rev. Stat. tit. 9-A, §2-201", 250000),
    "MD": UsuryLimit(0.08, "Md. Code, Com. Law §12-103", 275000),
    "MA": UsuryLimit(0.20, "Mass. Gen. Laws ch. 271, §49"),
    "MI": UsuryLimit(0.07, "Mich. Comp. Laws §438.31", 250000),
    "MN": UsuryLimit(0.08, "Minn. Stat. §334.01", 100000),
    "MS": UsuryLimit(0.10, "Miss. Code §75-17-1", 250000),
    "MO": UsuryLimit(0.10, "Mo. Rev. Stat. §408.030", 5000),
    "MT": UsuryLimit(0.15, "Mont. Code §31-1-107"),
    "NE": UsuryLimit(0.16, "Neb. Rev. Stat. §45-101.03"),
    "NV": UsuryLimit(NO_CAP, "Nev. Rev. Stat. §99.050"),
    "NH": UsuryLimit(NO_CAP, "N.H. Rev. Stat. §336:1"),
    "NJ": UsuryLimit(0.06, "N.J. Stat. §31:1-1", 50000),
    "NM": UsuryLimit(0.15, "N.M. Stat. §56-8-3"),
    "NY": UsuryLimit(0.16, "N.Y. Gen. Oblig. Law §5-501", 250000),
    "NC": UsuryLimit(0.08, "N.C. Gen. Stat. §24-1.1", 25000),
    "ND": UsuryLimit(0.06, "N.D. Cent. Code §47-14-09"),
    "OH": UsuryLimit(0.08, "Ohio Rev. Code §1343.01", 100000),
    "OK": UsuryLimit(NO_CAP, "Okla. Stat. tit. 15, §266"),
    "OR": UsuryLimit(0.12, "Or. Rev. Stat. §82.010", 50000),
    "PA": UsuryLimit(0.06, "41 Pa. Stat. §201", 50000),
    "RI": UsuryLimit(0.21, "R.I. Gen. Laws §6-26-2"),
    "SC": UsuryLimit(0.0875, "S.C. Code §34-31-20", 50000),
    "SD": UsuryLimit(NO_CAP, "S.D. Codified Laws §54-3-4"),
    "TN": UsuryLimit(0.24, "Tenn. Code §47-14-103", 250000),
    "TX": UsuryLimit(0.18, "Tex. Fin. Code §303.009"),
    "UT": UsuryLimit(NO_CAP, "Utah Code §15-1-1"),
    "VT": UsuryLimit(0.12, "Vt. Stat. tit. 9, §41a"),
    "VA": UsuryLimit(0.12, "Va. Code §6.2-303", 150000),
    "WA": UsuryLimit(0.12, "Wash. Rev. Code §19.52.020", 100000),
    "WV": UsuryLimit(0.08, "W.Va. Code §47-6-5", 100000),
    "WI": UsuryLimit(0.12, "Wis. Stat. §138.04", 150000),
    "WY": UsuryLimit(0.07, "Wyo. Stat. §40-14-306", 25000),
}


@dataclass(frozen=True)
class LoanProgram:
    id: str
    name: str
    max_ltv: float
    min_dscr: float
    max_term: int  # months; 0 == revolving, no fixed term
    non_qm: bool = False


LOAN_PROGRAMS: dict[str, LoanProgram] = {
    p.id: p
    for p in (
        LoanProgram("sba_7a", "SBA 7(a)", 0.85, 1.15, 300),
        LoanProgram("sba_504", "SBA 504", 0.90, 1.15, 300),
        LoanProgram("commercial_cre", "Commercial Real Estate", 0.75, 1.25, 120),
        LoanProgram("dscr", "DSCR Loan", 0.80, 1.00, 360, non_qm=True),
        LoanProgram("bank_statement", "Bank Statement Loan", 0.80, 1.00, 360, non_qm=True),
        LoanProgram("conventional_business", "Conventional Business Term", 0.70, 1.25, 84),
        LoanProgram("line_of_credit", "Business Line of Credit", 0.60, 1.20, 0),
        LoanProgram("equipment_financing", "Equipment Financing", 0.85, 1.15, 84),
        LoanProgram("bridge", "Bridge Loan", 0.70, 1.00, 36),
    )
}

HPML_FIRST_LIEN_SPREAD = 0.015


def program_for(inp: DocumentInput) -> LoanProgram:
    prog = LOAN_PROGRAMS.get(inp.program_id or "")
    if prog is not None:
        return prog
    return LoanProgram(
        id="default",
        name="Default underwriting",
        max_ltv=settings.max_ltv,
        min_dscr=settings.dscr_min,
        max_term=settings.max_term_months,
    )


def _pct(rate: float, digits: int = 3) -> str:
    return f"{to_fixed(rate * 100, digits)}%"


# -------------------- checks --------------------

def check_usury(inp: DocumentInput) -> ComplianceCheck:
    state = inp.state_abbr
    rate = inp.terms.interest_rate or 0.0
    principal = inp.terms.approved_amount or 0.0
    limit = STATE_USURY_LIMITS.get(state or "")

    if limit is None:
        note = (
            f'State "{state}" not found in usury table. Manual review recommended.'
            if state
            else "No state specified on deal. Usury check cannot be performed; manual review required."
        )
        return ComplianceCheck("Usury Compliance", "State usury statutes", "regulatory", True, "warning", note)

    if limit.commercial_exempt_above and principal >= limit.commercial_exempt_above:
        return ComplianceCheck(
            "Usury Compliance",
            limit.statute,
            "regulatory",
            True,
            "info",
            f"Commercial loan of {format_currency(principal)} exceeds the {state} exemption threshold of "
            f"{format_currency(limit.commercial_exempt_above)}; exempt from the general usury cap.",
        )

    passed = rate <= limit.rate
    if passed:
        note = f"Interest rate of {_pct(rate)} is within the {state} maximum per {limit.statute}."
    else:
        note = (
            f"Interest rate of {_pct(rate)} EXCEEDS the {state} usury limit of {_pct(limit.rate, 1)} "
            f"per {limit.statute}. Loan may be unenforceable or subject to penalties."
        )
    return ComplianceCheck(
        "Usury Compliance",
        limit.statute,
        "regulatory",
        passed,
        "info" if passed else "critical",
        note,
        None if passed else f"Reduce the rate to {_pct(limit.rate, 1)} or below, or document an applicable exemption.",
    )


def check_hpml(inp: DocumentInput, apor: float) -> ComplianceCheck:
    """Advisory only: the binding APOR comparison happens at closing."""
    rate = inp.terms.interest_rate or 0.0
    threshold = apor + HPML_FIRST_LIEN_SPREAD
    likely = rate > threshold
    if likely:
        note = (
            f"Interest rate of {_pct(rate)} exceeds the estimated HPML threshold of {_pct(threshold)} "
            f"(APOR estimate {_pct(apor)} + 1.5%). Escrow, appraisal and balloon restrictions under "
            "12 CFR §1026.35 may apply. Verify against the current FFIEC APOR table."
        )
    else:
        note = (
            f"Interest rate of {_pct(rate)} is below the estimated HPML threshold of {_pct(threshold)}. "
            "Verify against the current FFIEC APOR table."
        )
    return ComplianceCheck(
        "Higher-Priced Mortgage Loan (HPML) Check",
        "12 CFR §1026.35; Dodd-Frank Act §1411",
        "regulatory",
        True,
        "warning" if likely else "info",
        note,
    )


def check_atr(inp: DocumentInput, program: LoanProgram) -> ComplianceCheck:
    parts: list[str] = []
    passed = True
    ltv = inp.terms.ltv
    if ltv is not None and program.max_ltv > 0 and ltv > program.max_ltv:
        parts.append(f"LTV of {_pct(ltv, 1)} exceeds program maximum of {_pct(program.max_ltv, 1)}.")
        passed = False
    if program.non_qm:
        parts.append(
            "Non-QM loan: ATR compliance must be documented through alternative documentation "
            "per 12 CFR §1026.43(c)."
        )
    return ComplianceCheck(
        "Ability to Repay (ATR)",
        "12 CFR §1026.43; CFPB ATR/QM Rule",
        "regulatory",
        passed,
        ("warning" if program.non_qm else "info") if passed else "critical",
        " ".join(parts) or "ATR requirements satisfied per 12 CFR §1026.43.",
    )


def check_ltv(inp: DocumentInput, program: LoanProgram) -> ComplianceCheck:
    ltv = inp.terms.ltv
    regulation = f"{program.name} guidelines (max LTV {_pct(program.max_ltv, 0)})"
    if ltv is None:
        return ComplianceCheck(
            "LTV Limit", regulation, "standard", True, "info",
            "No LTV value available on deal terms. LTV limit check not performed.",
        )
    passed = ltv <= program.max_ltv
    return ComplianceCheck(
        "LTV Limit",
        regulation,
        "standard",
        passed,
        "info" if passed else "critical",
        f"LTV of {_pct(ltv, 1)} {'is within' if passed else 'EXCEEDS'} the maximum of {_pct(program.max_ltv, 0)}.",
        None if passed else "Reduce the loan amount or obtain additional collateral.",
    )


def check_term(inp: DocumentInput, program: LoanProgram) -> ComplianceCheck:
    term = inp.terms.term_months or 0
    if program.max_term == 0:
        return ComplianceCheck(
            "Term Limit", f"{program.name} guidelines", "standard", True, "info",
            f"{program.name} is a revolving facility. No fixed term limit applies.",
        )
    passed = term <= program.max_term
    return ComplianceCheck(
        "Term Limit",
        f"{program.name} guidelines (max term {program.max_term} months)",
        "standard",
        passed,
        "info" if passed else "critical",
        f"Loan term of {term} months {'is within' if passed else 'EXCEEDS'} the maximum of {program.max_term} months.",
    )


def check_dscr_minimum(inp: DocumentInput, program: LoanProgram) -> ComplianceCheck:
    ex = inp.extractions
    analysis = calculate_dscr(
        income_analysis=ex.get("income"),
        bank_statement_data=ex.get("bank_statement"),
        rental_data=ex.get("rental"),
        proposed_loan_payment=inp.terms.monthly_payment,
        proposed_rate=inp.terms.interest_rate,
        proposed_term=inp.terms.amortization_months or inp.terms.term_months,
        loan_amount=inp.terms.approved_amount,
    )
    ratio = analysis.global_dscr if analysis.global_dscr is not None else analysis.property_dscr
    regulation = f"{program.name} guidelines (min DSCR {program.min_dscr:.2f}x)"

    if ratio is None or analysis.noi <= 0:
        return ComplianceCheck(
            "Minimum DSCR", regulation, "standard", True, "warning",
            "DSCR cannot be calculated from available extraction data; manual underwriting review required.",
        )
    passed = ratio >= program.min_dscr
    return ComplianceCheck(
        "Minimum DSCR",
        regulation,
        "standard",
        passed,
        "info" if passed else "critical",
        f"DSCR of {ratio:.2f}x ({analysis.rating}) against a minimum of {program.min_dscr:.2f}x.",
        None if passed else "Restructure the loan amount or term, or document compensating factors.",
    )


def lending_checks(inp: DocumentInput, apor: float) -> list[ComplianceCheck]:
    program = program_for(inp)
    return [
        check_usury(inp),
        check_hpml(inp, apor),
        check_atr(inp, program),
        check_ltv(inp, program),
        check_term(inp, program),
        check_dscr_minimum(inp, program),
    ]
