# backend/docgen/domain/dscr.py
"""
Debt Service Coverage Ratio analysis.

Deterministic math over extraction data; no I/O and no model calls.
Every function here degrades to zero / None with an explanatory note
instead of raising, so callers always get a usable result.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

RATING_BANDS: tuple[tuple[float, str], ...] = (
    (1.50, "strong"),
    (1.25, "adequate"),
    (1.00, "weak"),
)

DEBT_CATEGORIES = {"debt", "loan", "mortgage"}

_DEBT_DESCRIPTION = re.compile(
    r"\b(mortgage|loan|auto pay|car pay|student|credit card|min payment|capital one|chase|discover"
    r"|amex|wells fargo|boa|usaa|navy fed)\b",
    re.IGNORECASE,
)

# months-per-payment multipliers: monthly = amount * factor
_FREQUENCY_TO_MONTHLY = {
    "biweekly": 26.0 / 12.0,
    "bi-weekly": 26.0 / 12.0,
    "weekly": 52.0 / 12.0,
    "quarterly": 1.0 / 3.0,
    "annual": 1.0 / 12.0,
    "annually": 1.0 / 12.0,
}


@dataclass(frozen=True)
class IncomeAnalysis:
    qualifying_income: float
    sources: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class DebtItem:
    description: str
    amount: float  # normalized monthly


@dataclass(frozen=True)
class ExistingDebt:
    monthly_amount: float
    items: list[DebtItem]


@dataclass(frozen=True)
class PropertyNoi:
    noi: float
    debt_service: float  # annual


@dataclass(frozen=True)
class DscrAnalysis:
    global_dscr: Optional[float]
    property_dscr: Optional[float]
    noi: float
    total_debt_service: float
    proposed_debt_service: float
    existing_debt_service: float
    rating: str  # strong|adequate|weak|insufficient
    notes: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "global_dscr": self.global_dscr,
            "property_dscr": self.property_dscr,
            "noi": self.noi,
            "total_debt_service": self.total_debt_service,
            "proposed_debt_service": self.proposed_debt_service,
            "existing_debt_service": self.existing_debt_service,
            "rating": self.rating,
            "notes": list(self.notes),
        }


# -------------------- helpers --------------------

def parse_currency(val: Any) -> float:
    """
    Lenient numeric parse for extraction output.
    "$1,234.50" -> 1234.5, "(1,234)" -> -1234.0, garbage -> 0.0
    """
    if isinstance(val, bool):
        return 0.0
    if isinstance(val, (int, float)):
        f = float(val)
        return f if math.isfinite(f) else 0.0
    if isinstance(val, str):
        cleaned = re.sub(r"[$,\s]", "", val)
        m = re.fullmatch(r"\((.+)\)", cleaned)
        if m:
            cleaned = "-" + m.group(1)
        try:
            f = float(cleaned)
        except ValueError:
            return 0.0
        return f if math.isfinite(f) else 0.0
    return 0.0


def _first(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        v = data.get(k)
        if v is not None:
            return v
    return default


def _money(x: float) -> str:
    if not math.isfinite(x):
        return "n/a"
    return f"${round(x):,.0f}"


def calculate_monthly_payment(principal: float, annual_rate: float, term_months: int) -> float:
    """
    Standard amortization: M = P * r(1+r)^n / ((1+r)^n - 1)

    annual_rate is a decimal (0.065 == 6.5%). A zero or negative rate
    degrades to straight-line principal / term. A term long enough to
    overflow (1+r)^n degrades to the interest-only limit principal * r.
    """
    principal = parse_currency(principal)
    annual_rate = parse_currency(annual_rate)
    n = int(parse_currency(term_months))
    if principal <= 0 or n <= 0:
        return 0.0
    if annual_rate <= 0:
        return principal / n

    r = annual_rate / 12.0
    factor = _growth_factor(r, n)
    if factor is None:
        payment = principal * r
    elif factor <= 1.0:
        # rate too small to register in float math
        payment = principal / n
    else:
        payment = principal * r * factor / (factor - 1)
    return payment if math.isfinite(payment) else 0.0


def _growth_factor(r: float, n: int) -> Optional[float]:
    try:
        return (1 + r) ** n
    except OverflowError:
        return None


def detect_existing_debt_from_bank_statements(bank_statement_data: Any) -> ExistingDebt:
    items: list[DebtItem] = []
    monthly_total = 0.0

    if not isinstance(bank_statement_data, Mapping):
        return ExistingDebt(monthly_amount=0.0, items=items)

    payments = _first(bank_statement_data, "regularPaymentsDetected", "regularPayments", "recurringDebits", default=[])
    if not isinstance(payments, list):
        return ExistingDebt(monthly_amount=0.0, items=items)

    for payment in payments:
        if not isinstance(payment, Mapping):
            continue
        amount = parse_currency(_first(payment, "amount", "monthlyAmount", "averageAmount"))
        desc = str(_first(payment, "description", "payee", "name", default="Unknown payment"))
        category = str(payment.get("category") or "").lower()

        is_debt = category in DEBT_CATEGORIES or bool(_DEBT_DESCRIPTION.search(desc))
        if not is_debt or amount <= 0:
            continue

        freq = str(payment.get("frequency") or "monthly").lower()
        monthly = amount * _FREQUENCY_TO_MONTHLY.get(freq, 1.0)

        items.append(DebtItem(description=desc, amount=round(monthly, 2)))
        monthly_total += monthly

    return ExistingDebt(monthly_amount=round(monthly_total, 2), items=items)


def extract_property_noi(rental_data: Any) -> PropertyNoi:
    """
    NOI is pre-debt-service. Schedule E style data often folds mortgage
    interest into operating expenses, so it is added back when both are present.
    """
    if not isinstance(rental_data, Mapping):
        return PropertyNoi(noi=0.0, debt_service=0.0)

    if rental_data.get("noi") is not None:
        monthly_debt = parse_currency(_first(rental_data, "debtService", "mortgagePayment", default=0))
        return PropertyNoi(noi=parse_currency(rental_data["noi"]), debt_service=monthly_debt * 12)

    gross_rents = parse_currency(
        _first(rental_data, "grossRents", "totalRentsReceived", "rentsReceived", "grossRentalIncome", default=0)
    )
    operating_expenses = parse_currency(
        _first(rental_data, "totalOperatingExpenses", "totalExpenses", "operatingExpenses", default=0)
    )
    mortgage_interest = parse_currency(_first(rental_data, "mortgageInterest", "interestExpense", default=0))
    mortgage_principal = parse_currency(rental_data.get("principalPayments", 0))

    noi = gross_rents - operating_expenses
    if operating_expenses > 0 and mortgage_interest > 0:
        noi += mortgage_interest

    debt_service = mortgage_interest + mortgage_principal
    return PropertyNoi(noi=noi, debt_service=debt_service if debt_service > 0 else 0.0)


def rate_dscr(ratio: Optional[float]) -> str:
    if ratio is None:
        return "insufficient"
    for floor, label in RATING_BANDS:
        if ratio >= floor:
            return label
    return "insufficient"


def _qualifying_income(income_analysis: Any) -> float:
    if isinstance(income_analysis, IncomeAnalysis):
        return parse_currency(income_analysis.qualifying_income)
    if isinstance(income_analysis, Mapping):
        return parse_currency(_first(income_analysis, "qualifyingIncome", "qualifying_income", default=0))
    return 0.0


# -------------------- main calculation --------------------

def calculate_dscr(
    *,
    income_analysis: Any = None,
    bank_statement_data: Any = None,
    rental_data: Any = None,
    proposed_loan_payment: Any = None,
    proposed_rate: Any = None,
    proposed_term: Any = None,
    loan_amount: Any = None,
) -> DscrAnalysis:
    notes: list[str] = []

    # ---- proposed debt service ----
    proposed_monthly = 0.0
    explicit_payment = parse_currency(proposed_loan_payment)
    principal = parse_currency(loan_amount)
    term = int(parse_currency(proposed_term))

    if explicit_payment > 0:
        proposed_monthly = explicit_payment
    elif principal > 0 and proposed_rate is not None and term > 0:
        rate = parse_currency(proposed_rate)
        proposed_monthly = calculate_monthly_payment(principal, rate, term)
        if rate > 0 and _growth_factor(rate / 12.0, term) is None:
            notes.append(
                f"Term of {term} months is too long to amortize; proposed payment uses the interest-only limit."
            )
        notes.append(
            f"Calculated proposed monthly payment: {_money(proposed_monthly)} "
            f"({principal:,.0f} at {rate * 100:.2f}% for {term} months)."
        )
    else:
        notes.append("No proposed payment or (amount, rate, term) supplied; proposed debt service treated as $0.")

    proposed_debt_service = round(proposed_monthly * 12, 2)

    # ---- existing debt ----
    existing = detect_existing_debt_from_bank_statements(bank_statement_data)
    existing_debt_service = round(existing.monthly_amount * 12, 2)
    if existing.items:
        notes.append(
            f"Detected {len(existing.items)} recurring debt payment(s) from bank statements "
            f"totaling {_money(existing.monthly_amount)}/month."
        )

    total_debt_service = round(existing_debt_service + proposed_debt_service, 2)

    # ---- cash flow available for debt service ----
    prop = extract_property_noi(rental_data)
    if prop.noi > 0:
        noi = prop.noi
        notes.append(f"Using property NOI ({_money(prop.noi)}/year) as cash flow for global DSCR.")
    else:
        noi = _qualifying_income(income_analysis)
        if noi <= 0:
            notes.append("No qualifying income or property NOI available; NOI treated as $0.")

    global_dscr: Optional[float] = None
    if total_debt_service > 0:
        global_dscr = round(noi / total_debt_service, 2)
    else:
        notes.append("No debt service identified. DSCR cannot be calculated.")

    property_dscr: Optional[float] = None
    if prop.noi > 0:
        property_debt = proposed_debt_service if proposed_debt_service > 0 else prop.debt_service
        if property_debt > 0:
            property_dscr = round(prop.noi / property_debt, 2)
            notes.append(
                f"Property NOI: {_money(prop.noi)}, Property debt service: {_money(property_debt)}/year."
            )

    ratio = global_dscr if global_dscr is not None else property_dscr
    rating = rate_dscr(ratio)
    if ratio is not None:
        if rating == "weak":
            notes.append("DSCR is marginal; borrower may have difficulty servicing debt if income decreases.")
        elif rating == "insufficient":
            notes.append("DSCR below 1.0; income does not cover debt obligations.")

    return DscrAnalysis(
        global_dscr=global_dscr,
        property_dscr=property_dscr,
        noi=round(noi, 2),
        total_debt_service=total_debt_service,
        proposed_debt_service=proposed_debt_service,
        existing_debt_service=existing_debt_service,
        rating=rating,
        notes=notes,
    )
