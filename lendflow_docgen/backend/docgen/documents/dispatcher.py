# backend/docgen/documents/dispatcher.py
"""
One entry point for every document type: resolve the template, fetch
prose when the type is AI-authored, render, then evaluate compliance and
verification. Errors from the prose call or rule evaluation propagate.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Optional

from ..domain.catalog import is_ai_doc, resolve_doc_type
from ..domain.compliance import run_compliance_checks
from ..domain.findings import ComplianceCheck, VerificationResult
from ..domain.project_context import DocumentInput
from ..domain.verification import verify_document
from ..integrations.prose_client import ProseClient
from .renderer import render_document
from .templates import template_for

if TYPE_CHECKING:
    from ..services.market_rates import MarketRateCache


@dataclass(frozen=True)
class DispatchResult:
    buffer: bytes
    compliance_checks: list[ComplianceCheck]
    resolved_doc_type: str
    verification: VerificationResult
    prose: Mapping[str, Any]


def generate_document(
    inp: DocumentInput,
    doc_type: str,
    prose_client: ProseClient,
    *,
    rate_cache: Optional["MarketRateCache"] = None,
    feedback: Optional[str] = None,
) -> DispatchResult:
    resolved = resolve_doc_type(inp.module, doc_type, inp.transaction_type)
    template = template_for(inp.module, doc_type, resolved)

    prose: Mapping[str, Any] = {}
    if is_ai_doc(inp.module, doc_type):
        prose = prose_client.generate_prose(doc_type, inp.prose_payload(), feedback).sections

    buffer = render_document(template, inp, prose)
    checks = run_compliance_checks(doc_type, inp, prose, rate_cache=rate_cache)
    verification = verify_document(doc_type, inp, prose)

    return DispatchResult(
        buffer=buffer,
        compliance_checks=checks,
        resolved_doc_type=resolved,
        verification=verification,
        prose=prose,
    )
