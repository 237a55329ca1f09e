# backend/docgen/domain/project_context.py
"""
Immutable snapshot of everything a document needs from the database.

The orchestrator loads a project once, builds a DocumentInput on the
caller's thread, and hands that (never a Session) to the per-document
worker thread.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping, Optional

from ..errors import ProjectInputError
from .dscr import parse_currency


@dataclass(frozen=True)
class Fee:
    name: str
    amount: float


@dataclass(frozen=True)
class Covenant:
    name: str
    description: str = ""
    threshold: Optional[float] = None


@dataclass(frozen=True)
class DealTerms:
    approved_amount: Optional[float]
    interest_rate: Optional[float]  # decimal, 0.0725 == 7.25%
    term_months: Optional[int]
    fees: tuple[Fee, ...] = ()
    covenants: tuple[Covenant, ...] = ()
    personal_guaranty: bool = False
    ltv: Optional[float] = None
    monthly_payment: Optional[float] = None
    amortization_months: Optional[int] = None


@dataclass(frozen=True)
class DocumentInput:
    project_id: int
    org_id: int
    module: str
    project_name: str
    counterparty_name: str
    terms: DealTerms
    program_id: Optional[str] = None
    state_abbr: Optional[str] = None
    property_address: Optional[str] = None
    collateral_types: tuple[str, ...] = ()
    subordinate_creditor_name: Optional[str] = None
    second_lien_lender_name: Optional[str] = None
    transaction_type: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)
    extractions: Mapping[str, Any] = field(default_factory=dict)
    generated_on: date = field(default_factory=lambda: datetime.utcnow().date())

    def attr(self, key: str, default: Any = None) -> Any:
        v = self.attributes.get(key)
        return default if v is None else v

    def prose_payload(self) -> dict[str, Any]:
        """Project data handed to the prose generator."""
        t = self.terms
        return {
            "module": self.module,
            "projectName": self.project_name,
            "counterpartyName": self.counterparty_name,
            "approvedAmount": t.approved_amount,
            "interestRate": t.interest_rate,
            "termMonths": t.term_months,
            "fees": [{"name": f.name, "amount": f.amount} for f in t.fees],
            "covenants": [
                {"name": c.name, "description": c.description, "threshold": c.threshold}
                for c in t.covenants
            ],
            "personalGuaranty": t.personal_guaranty,
            "programId": self.program_id,
            "stateAbbr": self.state_abbr,
            "propertyAddress": self.property_address,
            "collateralTypes": list(self.collateral_types),
            "transactionType": self.transaction_type,
            **{k: v for k, v in self.attributes.items() if v is not None},
        }


# Fields each module must carry before a run may start.
REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "lending": ("counterparty_name", "approved_amount", "interest_rate", "term_months"),
    "ma": ("counterparty_name", "approved_amount"),
    "syndication": ("counterparty_name", "approved_amount"),
    "capital": ("counterparty_name", "approved_amount"),
    "compliance": ("counterparty_name",),
}

_TERMS_KEYS = {
    "approvedAmount", "interestRate", "termMonths", "fees", "covenants", "personalGuaranty",
    "ltv", "monthlyPayment", "amortizationMonths", "programId", "stateAbbr", "propertyAddress",
    "collateralTypes", "subordinateCreditorName", "secondLienLenderName", "transactionType",
}


def _loads(s: Optional[str]) -> dict[str, Any]:
    if not s:
        return {}
    try:
        v = json.loads(s)
        return v if isinstance(v, dict) else {}
    except (TypeError, ValueError):
        return {}


def _opt_float(v: Any) -> Optional[float]:
    if v is None or v == "":
        return None
    return parse_currency(v)


def _opt_int(v: Any) -> Optional[int]:
    f = _opt_float(v)
    return None if f is None else int(f)


def _opt_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def parse_terms(raw: Mapping[str, Any]) -> DealTerms:
    fees = tuple(
        Fee(name=str(f.get("name") or "Fee"), amount=parse_currency(f.get("amount")))
        for f in (raw.get("fees") or [])
        if isinstance(f, Mapping)
    )
    covenants = tuple(
        Covenant(
            name=str(c.get("name") or "Covenant"),
            description=str(c.get("description") or ""),
            threshold=_opt_float(c.get("threshold")),
        )
        for c in (raw.get("covenants") or [])
        if isinstance(c, Mapping)
    )
    return DealTerms(
        approved_amount=_opt_float(raw.get("approvedAmount")),
        interest_rate=_opt_float(raw.get("interestRate")),
        term_months=_opt_int(raw.get("termMonths")),
        fees=fees,
        covenants=covenants,
        personal_guaranty=bool(raw.get("personalGuaranty")),
        ltv=_opt_float(raw.get("ltv")),
        monthly_payment=_opt_float(raw.get("monthlyPayment")),
        amortization_months=_opt_int(raw.get("amortizationMonths")),
    )


def missing_required_fields(module: str, counterparty_name: Optional[str], terms: DealTerms) -> list[str]:
    values = {
        "counterparty_name": (counterparty_name or "").strip() or None,
        "approved_amount": terms.approved_amount,
        "interest_rate": terms.interest_rate,
        "term_months": terms.term_months,
    }
    return [f for f in REQUIRED_FIELDS.get(module, ()) if values.get(f) is None]


def build_document_input(project: Any, extractions: Optional[Mapping[str, Any]] = None) -> DocumentInput:
    """
    project is a models.Project row (duck-typed so domain code stays free of ORM imports).
    Raises ProjectInputError when the module's required fields are absent.
    """
    raw = _loads(getattr(project, "terms_json", None))
    terms = parse_terms(raw)

    missing = missing_required_fields(project.module, project.counterparty_name, terms)
    if missing:
        raise ProjectInputError(project.id, missing)

    collateral = raw.get("collateralTypes") or []
    if isinstance(collateral, str):
        collateral = [collateral]

    return DocumentInput(
        project_id=project.id,
        org_id=project.org_id,
        module=project.module,
        project_name=project.name,
        counterparty_name=project.counterparty_name.strip(),
        terms=terms,
        program_id=_opt_str(raw.get("programId")),
        state_abbr=(_opt_str(raw.get("stateAbbr")) or "").upper() or None,
        property_address=_opt_str(raw.get("propertyAddress")),
        collateral_types=tuple(str(c) for c in collateral),
        subordinate_creditor_name=_opt_str(raw.get("subordinateCreditorName")),
        second_lien_lender_name=_opt_str(raw.get("secondLienLenderName")),
        transaction_type=_opt_str(raw.get("transactionType")),
        attributes={k: v for k, v in raw.items() if k not in _TERMS_KEYS},
        extractions=dict(extractions or {}),
    )
