# backend/docgen/domain/compliance/__init__.py
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Optional

from ..findings import ComplianceCheck
from ..project_context import DocumentInput
from .fund_reporting import fund_reporting_checks
from .lending import lending_checks
from .ma import ma_checks
from .securities import securities_checks

if TYPE_CHECKING:
    from ...services.market_rates import MarketRateCache


def run_compliance_checks(
    doc_type: str,
    inp: DocumentInput,
    prose: Mapping[str, Any],
    *,
    rate_cache: Optional["MarketRateCache"] = None,
) -> list[ComplianceCheck]:
    """
    Module rule family for one document. A document no rule applies to
    gets a single informational pass so its status is not left pending.
    """
    if inp.module == "lending":
        if rate_cache is None:
            raise ValueError("lending compliance requires a market rate cache")
        checks = lending_checks(inp, rate_cache.get().apor_estimate)
    elif inp.module in ("capital", "syndication"):
        checks = securities_checks(doc_type, inp, prose)
    elif inp.module == "ma":
        checks = ma_checks(doc_type, inp, prose)
    elif inp.module == "compliance":
        checks = fund_reporting_checks(doc_type, inp, prose)
    else:
        raise ValueError(f"unknown module: {inp.module}")

    if not checks:
        checks = [
            ComplianceCheck(
                "No Applicable Rules",
                "Internal",
                "standard",
                True,
                "info",
                "Deterministic template; no regulatory rule applies to this document.",
            )
        ]
    return checks


__all__ = ["run_compliance_checks"]
