"""Signal data models: typed, evidence-backed observations about security patterns.

Signals are framework-independent. The control mapper turns them into
framework-specific findings; nothing here knows about SOC2 or NIST.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class SignalCategory(Enum):
    """The six families of security-relevant patterns."""

    AUTH = "auth"
    ENCRYPTION = "encryption"
    LOGGING = "logging"
    ACCESS_CONTROL = "access_control"
    CICD = "cicd"
    SECRETS = "secrets"


class Confidence(Enum):
    """How unambiguous the evidence behind a signal is.

    HIGH:   canonical API call (``jwt.sign``, ``bcrypt.hash``)
    MEDIUM: indirect evidence (library name, config key)
    LOW:    weak lexical match
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]

    @classmethod
    def strongest(cls, values) -> "Confidence":
        """Maximum confidence among *values* (LOW when empty)."""
        best = cls.LOW
        for v in values:
            if v.rank > best.rank:
                best = v
        return best


_CONFIDENCE_RANK = {Confidence.LOW: 0, Confidence.MEDIUM: 1, Confidence.HIGH: 2}


class Severity(Enum):
    """Severity of a leaked-secret warning."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return ("low", "medium", "high", "critical").index(self.value)


@dataclass(frozen=True)
class Evidence:
    """Where a pattern was observed. Snippets of secrets are always redacted."""

    path: str
    snippet: str
    line_numbers: Optional[tuple[int, ...]] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "line_numbers": list(self.line_numbers) if self.line_numbers else None,
            "snippet": self.snippet,
        }


@dataclass(frozen=True)
class Signal:
    """One detected pattern type, aggregating every file that exhibits it."""

    category: SignalCategory
    type: str
    confidence: Confidence
    details: str
    evidence: tuple[Evidence, ...]
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def files(self) -> tuple[Evidence, ...]:
        return self.evidence

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "type": self.type,
            "confidence": self.confidence.value,
            "details": self.details,
            "evidence": [e.to_dict() for e in self.evidence],
            "attributes": dict(self.attributes),
        }


@dataclass(frozen=True)
class CICDSignal(Signal):
    """A CI/CD pipeline definition and the scanners it runs."""

    has_security_scanning: bool = False
    has_secret_scanning: bool = False
    has_dependency_scanning: bool = False

    @property
    def has_any_scanning(self) -> bool:
        return self.has_security_scanning or self.has_secret_scanning or self.has_dependency_scanning

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "has_security_scanning": self.has_security_scanning,
                "has_secret_scanning": self.has_secret_scanning,
                "has_dependency_scanning": self.has_dependency_scanning,
            }
        )
        return data


@dataclass(frozen=True)
class SecretsWarning(Signal):
    """A probable hardcoded secret. Evidence never contains the value."""

    severity: Severity = Severity.MEDIUM
    recommendation: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({"severity": self.severity.value, "recommendation": self.recommendation})
        return data


@dataclass
class Signals:
    """Run-scoped bag of signals, one list per category.

    Phases only ever append; individual signals are immutable.
    """

    auth: list[Signal] = field(default_factory=list)
    encryption: list[Signal] = field(default_factory=list)
    logging: list[Signal] = field(default_factory=list)
    access_control: list[Signal] = field(default_factory=list)
    cicd: list[CICDSignal] = field(default_factory=list)
    secrets_warnings: list[SecretsWarning] = field(default_factory=list)
    scanned_files: int = 0
    skipped_files: int = 0

    def for_category(self, category: SignalCategory) -> list:
        return {
            SignalCategory.AUTH: self.auth,
            SignalCategory.ENCRYPTION: self.encryption,
            SignalCategory.LOGGING: self.logging,
            SignalCategory.ACCESS_CONTROL: self.access_control,
            SignalCategory.CICD: self.cicd,
            SignalCategory.SECRETS: self.secrets_warnings,
        }[category]

    @property
    def total(self) -> int:
        return sum(len(self.for_category(c)) for c in SignalCategory)

    def to_dict(self) -> dict[str, Any]:
        return {
            "auth": [s.to_dict() for s in self.auth],
            "encryption": [s.to_dict() for s in self.encryption],
            "logging": [s.to_dict() for s in self.logging],
            "access_control": [s.to_dict() for s in self.access_control],
            "cicd": [s.to_dict() for s in self.cicd],
            "secrets_warnings": [s.to_dict() for s in self.secrets_warnings],
            "scanned_files": self.scanned_files,
            "skipped_files": self.skipped_files,
        }
