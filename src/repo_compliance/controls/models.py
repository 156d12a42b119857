"""Framework-specific control findings produced by the control mapper."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

from ..signals.models import Confidence, Evidence


class FindingStatus(Enum):
    """Verdict on a control.

    The mapper only emits PASS, PARTIAL, FAIL and NOT_APPLICABLE.
    NOT_OBSERVED and NEEDS_HUMAN are set by reviewers.
    """

    PASS = "pass"
    PARTIAL = "partial"
    FAIL = "fail"
    NOT_APPLICABLE = "not_applicable"
    NOT_OBSERVED = "not_observed"
    NEEDS_HUMAN = "needs_human"

    @property
    def is_actionable(self) -> bool:
        """Whether a remediation task is generated for this status."""
        return self in (FindingStatus.FAIL, FindingStatus.PARTIAL)

    @classmethod
    def parse(cls, value: str) -> Optional["FindingStatus"]:
        try:
            return cls(value)
        except ValueError:
            return None


# Ordering used when resolving several verdicts for one control
VERDICT_RANK = {FindingStatus.FAIL: 0, FindingStatus.PARTIAL: 1, FindingStatus.PASS: 2}


class Framework(Enum):
    SOC2 = "SOC2"
    ISO27001 = "ISO27001"
    NIST80053 = "NIST80053"

    @classmethod
    def parse(cls, value: "str | Framework") -> Optional["Framework"]:
        """Resolve a framework name or alias, case-insensitively.

        >>> Framework.parse("nist800-53")
        <Framework.NIST80053: 'NIST80053'>
        """
        if isinstance(value, Framework):
            return value
        return _FRAMEWORK_ALIASES.get(str(value).strip().upper())


_FRAMEWORK_ALIASES = {
    "SOC2": Framework.SOC2,
    "SOC 2": Framework.SOC2,
    "ISO27001": Framework.ISO27001,
    "ISO-27001": Framework.ISO27001,
    "ISO 27001": Framework.ISO27001,
    "NIST80053": Framework.NIST80053,
    "NIST800-53": Framework.NIST80053,
    "NIST 800-53": Framework.NIST80053,
    "NIST": Framework.NIST80053,
}


@dataclass(frozen=True)
class EvidenceReference:
    file_path: str
    line_start: Optional[int] = None
    line_end: Optional[int] = None
    snippet: Optional[str] = None

    @classmethod
    def from_evidence(cls, evidence: Evidence) -> "EvidenceReference":
        lines = evidence.line_numbers or ()
        return cls(
            file_path=evidence.path,
            line_start=lines[0] if lines else None,
            line_end=lines[-1] if lines else None,
            snippet=evidence.snippet,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EvidenceReference":
        return cls(
            file_path=data["file_path"],
            line_start=data.get("line_start"),
            line_end=data.get("line_end"),
            snippet=data.get("snippet"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_path": self.file_path,
            "line_start": self.line_start,
            "line_end": self.line_end,
            "snippet": self.snippet,
        }


@dataclass(frozen=True)
class ControlFinding:
    """A graded verdict on one control of one framework."""

    control_id: str
    framework: str
    status: FindingStatus
    confidence_level: Confidence
    signal_type: str
    summary: str
    recommendation: str
    details: dict[str, Any] = field(default_factory=dict)
    evidence_references: tuple[EvidenceReference, ...] = ()
    ai_model: Optional[str] = None

    def with_summary(self, summary: str, ai_model: str) -> "ControlFinding":
        return replace(self, summary=summary, ai_model=ai_model)

    def to_dict(self) -> dict[str, Any]:
        return {
            "control_id": self.control_id,
            "framework": self.framework,
            "status": self.status.value,
            "confidence_level": self.confidence_level.value,
            "signal_type": self.signal_type,
            "summary": self.summary,
            "details": dict(self.details),
            "evidence_references": [r.to_dict() for r in self.evidence_references],
            "recommendation": self.recommendation,
            "ai_model": self.ai_model,
        }
