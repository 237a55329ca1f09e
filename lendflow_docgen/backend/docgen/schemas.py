# backend/docgen/schemas.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional, List

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from .domain.catalog import MODULES


def _loads(s: Any, default: Any) -> Any:
    if not isinstance(s, str) or not s:
        return default
    try:
        return json.loads(s)
    except (TypeError, ValueError):
        return default


# -------------------- Projects --------------------

class ProjectCreate(BaseModel):
    module: str
    name: str = Field(min_length=1, max_length=200)
    counterparty_name: str = Field(default="", max_length=200)
    # camelCase deal terms + context (approvedAmount, interestRate, termMonths, fees, covenants, ...)
    terms: dict[str, Any] = Field(default_factory=dict)

    @field_validator("module")
    @classmethod
    def _known_module(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in MODULES:
            raise ValueError(f"module must be one of {', '.join(MODULES)}")
        return v


class ProjectOut(BaseModel):
    id: int
    org_id: int
    module: str
    name: str
    counterparty_name: str
    status: str
    error_message: Optional[str] = None
    error_step: Optional[str] = None
    terms: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="before")
    @classmethod
    def _parse_terms(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return data
        out = {k: getattr(data, k) for k in (
            "id", "org_id", "module", "name", "counterparty_name", "status",
            "error_message", "error_step", "created_at", "updated_at",
        )}
        out["terms"] = _loads(getattr(data, "terms_json", None), {})
        return out


class ProjectStatusOut(BaseModel):
    project_id: int
    status: str
    error_message: Optional[str] = None
    error_step: Optional[str] = None


class ExtractionIn(BaseModel):
    kind: str  # income|bank_statement|rental
    data: dict[str, Any]
    source_document_id: Optional[int] = None


class ExtractionOut(BaseModel):
    id: int
    project_id: int
    kind: str
    model_config = ConfigDict(from_attributes=True)


# -------------------- Pipeline --------------------

class GenerateOut(BaseModel):
    project_id: int
    status: str
    triggered_at: str
    execution: str  # inline|celery


class RunOut(BaseModel):
    project_id: int
    triggered_at: str
    status: str
    run_id: Optional[int] = None
    docs_generated: int = 0
    idempotent: bool = False
    error_message: Optional[str] = None
    error_step: Optional[str] = None


class RetryOut(BaseModel):
    project_id: int
    triggered_at: str
    cleanup: dict[str, int]
    run: Optional[RunOut] = None


# -------------------- Documents --------------------

class DocumentOut(BaseModel):
    id: int
    project_id: int
    doc_type: str
    resolved_doc_type: Optional[str] = None
    version: int
    storage_key: str
    status: str

    compliance_status: str
    compliance_issues: List[dict[str, Any]] = Field(default_factory=list)

    verification_status: str
    verification_issues: List[dict[str, Any]] = Field(default_factory=list)
    verification_checks_run: int = 0
    verification_checks_passed: int = 0

    feedback: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="before")
    @classmethod
    def _parse_issue_json(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return data
        out = {k: getattr(data, k) for k in cls.model_fields if hasattr(data, k)}
        out["compliance_issues"] = _loads(getattr(data, "compliance_issues_json", None), [])
        out["verification_issues"] = _loads(getattr(data, "verification_issues_json", None), [])
        return out


class RegenerateIn(BaseModel):
    feedback: Optional[str] = Field(default=None, max_length=4000)


# -------------------- Audit --------------------

class AuditEventOut(BaseModel):
    id: int
    actor: Optional[str] = None
    action: str
    entity_type: str
    entity_id: str
    before: Optional[dict[str, Any]] = None
    after: Optional[dict[str, Any]] = None
    created_at: datetime

    @model_validator(mode="before")
    @classmethod
    def _parse_json(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return data
        return {
            "id": data.id,
            "actor": data.actor,
            "action": data.action,
            "entity_type": data.entity_type,
            "entity_id": data.entity_id,
            "before": _loads(data.before_json, None),
            "after": _loads(data.after_json, None),
            "created_at": data.created_at,
        }


# -------------------- Analysis --------------------

class DscrIn(BaseModel):
    proposed_loan_payment: Optional[float] = None
    proposed_rate: Optional[float] = None
    proposed_term: Optional[int] = None
    loan_amount: Optional[float] = None


class DscrOut(BaseModel):
    global_dscr: Optional[float] = None
    property_dscr: Optional[float] = None
    noi: float
    total_debt_service: float
    proposed_debt_service: float
    existing_debt_service: float
    rating: str
    notes: list[str] = Field(default_factory=list)
