# backend/docgen/domain/findings.py
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class ComplianceCheck:
    name: str
    regulation: str
    category: str  # securities|anti_fraud|regulatory|standard|disclosure|generation
    passed: bool
    severity: str = "info"  # info|warning|critical
    note: str = ""
    recommendation: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class VerificationIssue:
    field: str
    expected: str
    found: str
    severity: str  # critical|warning

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Finding:
    """Generation-failure notice attached to a placeholder artifact."""

    severity: str
    section: str
    description: str
    recommendation: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class VerificationResult:
    passed: bool
    issues: tuple[VerificationIssue, ...]
    checks_run: int
    checks_passed: int

    @property
    def critical_issues(self) -> list[VerificationIssue]:
        return [i for i in self.issues if i.severity == "critical"]


def compliance_status_for(checks: list[ComplianceCheck]) -> str:
    """
    pending: nothing evaluated
    flagged: any failed check that is critical or in a securities/anti-fraud category
    passed:  everything passed
    Failed advisory checks leave the document pending human review.
    """
    if not checks:
        return "pending"
    hard = [
        c for c in checks
        if not c.passed and (c.severity == "critical" or c.category in {"securities", "anti_fraud"})
    ]
    if hard:
        return "flagged"
    if all(c.passed for c in checks):
        return "passed"
    return "pending"
