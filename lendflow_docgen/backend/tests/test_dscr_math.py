# backend/tests/test_dscr_math.py
from __future__ import annotations

import pytest

from docgen.domain.dscr import (
    calculate_dscr,
    calculate_monthly_payment,
    detect_existing_debt_from_bank_statements,
    extract_property_noi,
    parse_currency,
    rate_dscr,
)


@pytest.mark.parametrize(
    "principal,rate,term",
    [(500000, 0.0725, 360), (250000, 0.065, 120), (1000, 0.01, 12), (75000.5, 0.189, 60)],
)
def test_monthly_payment_amortizes_principal(principal, rate, term):
    payment = calculate_monthly_payment(principal, rate, term)

    # walk the schedule: the last payment leaves a zero balance
    balance = float(principal)
    r = rate / 12
    for _ in range(term):
        balance = balance * (1 + r) - payment
    assert abs(balance) < 0.01
    assert payment * term > principal


def test_monthly_payment_known_value():
    assert calculate_monthly_payment(500000, 0.0725, 360) == pytest.approx(3410.89, abs=0.01)


def test_zero_rate_is_straight_line():
    assert calculate_monthly_payment(120000, 0, 360) == 120000 / 360
    assert calculate_monthly_payment(0, 0.05, 360) == 0.0
    assert calculate_monthly_payment(1000, 0.05, 0) == 0.0


def test_parse_currency_is_lenient():
    assert parse_currency("$1,234.50") == 1234.5
    assert parse_currency("(1,000)") == -1000.0
    assert parse_currency("n/a") == 0.0
    assert parse_currency(None) == 0.0
    assert parse_currency(True) == 0.0


def test_existing_debt_ignores_non_debt_and_normalizes_frequency():
    data = {
        "regularPaymentsDetected": [
            {"description": "Rocket Mortgage", "amount": "1,500.00", "frequency": "monthly"},
            {"description": "Gym membership", "amount": 60},
            {"description": "Payroll deposit", "amount": 4000, "category": "income"},
            {"description": "ACH transfer", "amount": 200, "category": "loan", "frequency": "biweekly"},
            {"description": "Chase card autopay", "amount": 300, "frequency": "quarterly"},
        ]
    }
    out = detect_existing_debt_from_bank_statements(data)

    described = [i.description for i in out.items]
    assert "Gym membership" not in described
    assert "Payroll deposit" not in described
    assert described == ["Rocket Mortgage", "ACH transfer", "Chase card autopay"]

    expected = 1500 + 200 * 26 / 12 + 300 / 3
    assert out.monthly_amount == round(expected, 2)
    assert out.monthly_amount == pytest.approx(sum(i.amount for i in out.items), abs=0.01)


def test_existing_debt_degrades_on_garbage():
    assert detect_existing_debt_from_bank_statements(None).monthly_amount == 0.0
    assert detect_existing_debt_from_bank_statements({"regularPaymentsDetected": "nope"}).items == []


@pytest.mark.parametrize(
    "ratio,rating",
    [(None, "insufficient"), (0.99, "insufficient"), (1.0, "weak"), (1.24, "weak"),
     (1.25, "adequate"), (1.49, "adequate"), (1.5, "strong"), (3.0, "strong")],
)
def test_rating_bands_are_inclusive_on_the_lower_edge(ratio, rating):
    assert rate_dscr(ratio) == rating


def test_ratio_exactly_one_twenty_five_rates_adequate():
    # 15,000 / (1,000 * 12) == 1.25
    out = calculate_dscr(income_analysis={"qualifyingIncome": 15000}, proposed_loan_payment=1000)
    assert out.global_dscr == 1.25
    assert out.rating == "adequate"


def test_property_noi_adds_back_mortgage_interest():
    prop = extract_property_noi({"grossRents": 60000, "totalExpenses": 25000, "mortgageInterest": 8000})
    assert prop.noi == 43000
    assert prop.debt_service == 8000


def test_global_dscr_combines_existing_and_proposed_debt():
    out = calculate_dscr(
        income_analysis={"qualifyingIncome": 90000},
        bank_statement_data={"regularPaymentsDetected": [{"description": "auto loan", "amount": 500}]},
        proposed_rate=0.0725,
        proposed_term=360,
        loan_amount=500000,
    )
    assert out.existing_debt_service == 6000.0
    assert out.proposed_debt_service == pytest.approx(3410.89 * 12, abs=0.2)
    assert out.total_debt_service == pytest.approx(out.existing_debt_service + out.proposed_debt_service, abs=0.01)
    assert out.global_dscr == round(90000 / out.total_debt_service, 2)
    assert any("Calculated proposed monthly payment" in n for n in out.notes)


def test_no_debt_service_never_raises():
    out = calculate_dscr()
    assert out.global_dscr is None
    assert out.rating == "insufficient"
    assert out.noi == 0
    assert any("cannot be calculated" in n for n in out.notes)


def test_overlong_term_uses_interest_only_limit():
    assert calculate_monthly_payment(100000, 0.07, 1_000_000) == pytest.approx(100000 * 0.07 / 12)

    out = calculate_dscr(
        income_analysis={"qualifyingIncome": 100000},
        loan_amount=100000,
        proposed_rate=0.07,
        proposed_term=1_000_000,
    )
    assert out.proposed_debt_service == pytest.approx(7000.0)
    assert out.global_dscr == round(100000 / 7000.0, 2)
    assert any("interest-only limit" in n for n in out.notes)


def test_degenerate_rates_never_raise():
    # too small to move (1 + r) off 1.0 in float math
    assert calculate_monthly_payment(120000, 1e-18, 360) == pytest.approx(120000 / 360)
    assert calculate_monthly_payment(1e300, 1e300, 12) == 0.0
