# backend/docgen/documents/templates.py
"""
Template specs: title, deterministic field rows, an optional computed
table, and the ordered prose sections the model fills in.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from ..domain.catalog import doc_type_label, required_prose_keys
from ..domain.dscr import calculate_monthly_payment, parse_currency
from ..domain.formatting import format_currency, format_currency_detailed, format_date, format_percent
from ..domain.project_context import DocumentInput

Row = tuple[str, str]
Table = tuple[tuple[str, ...], list[tuple[str, ...]]]


# -------------------- deterministic fields --------------------

def _term(inp: DocumentInput) -> str:
    return f"{inp.terms.term_months} months" if inp.terms.term_months else "[Term TBD]"


def _monthly_payment(inp: DocumentInput) -> str:
    t = inp.terms
    if t.monthly_payment:
        return format_currency_detailed(t.monthly_payment)
    pmt = calculate_monthly_payment(t.approved_amount or 0, t.interest_rate or 0, t.amortization_months or t.term_months or 0)
    return format_currency_detailed(pmt) if pmt > 0 else "[Payment TBD]"


FIELDS: dict[str, tuple[str, Callable[[DocumentInput], str]]] = {
    "counterparty": ("Counterparty", lambda i: i.counterparty_name),
    "borrower": ("Borrower", lambda i: i.counterparty_name),
    "project": ("Project", lambda i: i.project_name),
    "date": ("Date", lambda i: format_date(i.generated_on)),
    "amount": ("Principal Amount", lambda i: format_currency(i.terms.approved_amount)),
    "purchase_price": ("Purchase Price", lambda i: format_currency(i.terms.approved_amount)),
    "offering_size": ("Offering Size", lambda i: format_currency(i.terms.approved_amount)),
    "rate": ("Interest Rate", lambda i: format_percent(i.terms.interest_rate)),
    "term": ("Term", _term),
    "payment": ("Monthly Payment", _monthly_payment),
    "state": ("Governing State", lambda i: i.state_abbr or "[State TBD]"),
    "property": ("Property", lambda i: i.property_address or "N/A"),
    "program": ("Loan Program", lambda i: i.program_id or "N/A"),
    "transaction": ("Transaction Structure", lambda i: (i.transaction_type or "TBD").replace("_", " ").title()),
    "exemption": ("Exemption", lambda i: str(i.attr("exemptionType", "Regulation D"))),
    "fund": ("Fund", lambda i: str(i.attr("fundName", i.project_name))),
    "period": ("Reporting Period", lambda i: str(i.attr("reportingPeriod", "[Period TBD]"))),
    "call_amount": ("Call Amount", lambda i: format_currency(parse_currency(i.attr("callAmount", 0)))),
    "due_date": ("Due Date", lambda i: str(i.attr("dueDate", "[Date TBD]"))),
    "distribution_amount": ("Distribution Amount", lambda i: format_currency(parse_currency(i.attr("distributionAmount", 0)))),
    "tax_year": ("Tax Year", lambda i: str(i.attr("taxYear", "[Year TBD]"))),
}

MODULE_FIELDS: dict[str, tuple[str, ...]] = {
    "lending": ("borrower", "date", "amount", "rate", "term", "payment", "state", "property", "program"),
    "ma": ("counterparty", "date", "purchase_price", "transaction"),
    "syndication": ("counterparty", "project", "date", "offering_size", "exemption", "property"),
    "capital": ("counterparty", "fund", "date", "offering_size", "exemption"),
    "compliance": ("fund", "counterparty", "date", "period"),
}

DOC_FIELDS: dict[str, tuple[str, ...]] = {
    "capital_call_notice": ("fund", "counterparty", "date", "call_amount", "due_date"),
    "distribution_notice": ("fund", "counterparty", "date", "distribution_amount"),
    "k1_summary": ("fund", "counterparty", "tax_year"),
}


# -------------------- computed tables --------------------

def amortization_table(inp: DocumentInput, max_rows: int = 360) -> Table:
    t = inp.terms
    principal = t.approved_amount or 0.0
    rate = t.interest_rate or 0.0
    n = t.amortization_months or t.term_months or 0
    payment = t.monthly_payment or calculate_monthly_payment(principal, rate, n)
    rows: list[tuple[str, ...]] = []
    balance = principal
    for k in range(1, min(n, max_rows) + 1):
        interest = balance * rate / 12.0
        principal_part = min(balance, payment - interest)
        balance = max(0.0, balance - principal_part)
        rows.append((
            str(k),
            format_currency_detailed(payment),
            format_currency_detailed(interest),
            format_currency_detailed(principal_part),
            format_currency_detailed(balance),
        ))
    return ("Payment", "Amount", "Interest", "Principal", "Balance"), rows


def fees_table(inp: DocumentInput) -> Table:
    rows = [(f.name, format_currency_detailed(f.amount)) for f in inp.terms.fees]
    total = sum(f.amount for f in inp.terms.fees)
    principal = inp.terms.approved_amount or 0.0
    rows.append(("Total Fees", format_currency_detailed(total)))
    rows.append(("Net Loan Proceeds", format_currency_detailed(principal - total)))
    return ("Item", "Amount"), rows


def covenants_table(inp: DocumentInput) -> Table:
    rows = [
        (c.name, c.description, "" if c.threshold is None else f"{c.threshold:g}")
        for c in inp.terms.covenants
    ]
    return ("Covenant", "Description", "Threshold"), rows


DUE_DILIGENCE_ITEMS = (
    ("Corporate", "Charter documents, good standing, capitalization table"),
    ("Financial", "Audited financial statements (3 years), quality of earnings"),
    ("Tax", "Federal and state returns, open audits, transfer taxes"),
    ("Legal", "Pending and threatened litigation, regulatory correspondence"),
    ("Contracts", "Material contracts, change-of-control consents"),
    ("Employees", "Key employee agreements, benefit plans, WARN exposure"),
    ("Intellectual Property", "Registrations, licenses, invention assignments"),
    ("Real Property", "Deeds, leases, title and survey"),
    ("Environmental", "Phase I reports, permits, known releases"),
    ("Insurance", "Policies, claims history"),
)

CLOSING_ITEMS = (
    ("Definitive agreement executed", "Buyer / Seller"),
    ("Third-party consents obtained", "Seller"),
    ("Regulatory approvals (HSR if applicable)", "Buyer / Seller"),
    ("Officer certificates delivered", "Seller"),
    ("Payoff letters and lien releases", "Seller"),
    ("Funds flow memorandum approved", "Buyer"),
    ("Escrow agreement executed", "Buyer / Seller / Escrow Agent"),
    ("Closing deliverables exchanged", "Counsel"),
)


def checklist_table(items: tuple[tuple[str, str], ...], headers: tuple[str, str]) -> Callable[[DocumentInput], Table]:
    def build(_inp: DocumentInput) -> Table:
        return (headers[0], headers[1], "Status"), [(a, b, "Open") for a, b in items]
    return build


def pro_forma_table(inp: DocumentInput, years: int = 5) -> Table:
    noi = parse_currency(inp.attr("yearOneNoi", 0))
    growth = parse_currency(inp.attr("noiGrowth", 0.03))
    equity = inp.terms.approved_amount or 0.0
    rows = []
    for y in range(1, years + 1):
        year_noi = noi * (1 + growth) ** (y - 1)
        coc = year_noi / equity if equity > 0 else 0.0
        rows.append((f"Year {y}", format_currency(year_noi), f"{coc * 100:.1f}%"))
    return ("Year", "Projected NOI", "Cash-on-Cash"), rows


def k1_table(inp: DocumentInput) -> Table:
    keys = (
        ("Beginning Capital Account", "beginningCapital"),
        ("Capital Contributed", "capitalContributed"),
        ("Share of Income (Loss)", "allocatedIncome"),
        ("Distributions", "distributions"),
        ("Ending Capital Account", "endingCapital"),
    )
    return ("Line", "Amount"), [(label, format_currency(parse_currency(inp.attr(k, 0)))) for label, k in keys]


TABLES: dict[str, Callable[[DocumentInput], Table]] = {
    "amortization_schedule": amortization_table,
    "settlement_statement": fees_table,
    "disbursement_authorization": fees_table,
    "compliance_certificate": covenants_table,
    "loan_agreement": covenants_table,
    "due_diligence_checklist": checklist_table(DUE_DILIGENCE_ITEMS, ("Area", "Request")),
    "closing_checklist": checklist_table(CLOSING_ITEMS, ("Deliverable", "Responsible Party")),
    "pro_forma": pro_forma_table,
    "k1_summary": k1_table,
}

# Fixed notice text for deterministic disclosures.
BOILERPLATE: dict[str, str] = {
    "privacy_notice": (
        "We collect nonpublic personal information about you from applications and other forms, and from "
        "your transactions with us. We do not disclose that information to nonaffiliated third parties "
        "except as permitted by law (Gramm-Leach-Bliley Act, 15 U.S.C. 6801 et seq.)."
    ),
    "patriot_act_notice": (
        "To help the government fight the funding of terrorism and money laundering activities, federal law "
        "requires all financial institutions to obtain, verify and record information that identifies each "
        "person who opens an account (USA PATRIOT Act, Section 326)."
    ),
    "flood_determination": (
        "Standard Flood Hazard Determination. The lender must determine whether the improved real property "
        "securing this loan is located in a Special Flood Hazard Area (42 U.S.C. 4012a)."
    ),
}


@dataclass(frozen=True)
class TemplateSpec:
    doc_type: str
    title: str
    fields: tuple[str, ...]
    prose_sections: tuple[str, ...]
    table: Optional[Callable[[DocumentInput], Table]] = None
    boilerplate: Optional[str] = None

    def field_rows(self, inp: DocumentInput) -> list[Row]:
        return [(FIELDS[f][0], FIELDS[f][1](inp)) for f in self.fields]


def template_for(module: str, doc_type: str, resolved_doc_type: Optional[str] = None) -> TemplateSpec:
    return TemplateSpec(
        doc_type=doc_type,
        title=doc_type_label(resolved_doc_type or doc_type).upper(),
        fields=DOC_FIELDS.get(doc_type, MODULE_FIELDS[module]),
        prose_sections=required_prose_keys(module, doc_type),
        table=TABLES.get(doc_type),
        boilerplate=BOILERPLATE.get(doc_type),
    )
