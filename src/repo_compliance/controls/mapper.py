"""Control mapper: turn framework-independent signals into graded findings.

The mapper is pure. It never mutates the signals it is given and the same
signals always produce the same findings in rule-table order.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence, Union

from ..exceptions import AppError, ControlMappingError
from ..logging_config import get_logger
from ..signals.models import CICDSignal, Confidence, SecretsWarning, Signal, Signals
from .models import VERDICT_RANK, ControlFinding, EvidenceReference, FindingStatus, Framework
from .rules import RULES, ControlRule

logger = get_logger(__name__)

# Confidence assigned when a verdict rests on the absence of evidence
ABSENCE_CONFIDENCE = Confidence.MEDIUM

_VERDICT_BY_CONFIDENCE = {
    Confidence.HIGH: FindingStatus.PASS,
    Confidence.MEDIUM: FindingStatus.PARTIAL,
    Confidence.LOW: FindingStatus.FAIL,
}


class FindingSummarizer(Protocol):
    """Optional hook that rewrites finding summaries (e.g. with an LLM)."""

    model_name: str

    def summarize(self, finding: ControlFinding, signals: Sequence[Signal]) -> Optional[str]:
        """Return a new summary, or None to keep the static one."""
        ...


class ControlMapper:
    """Maps a run's ``Signals`` onto the controls of one framework.

    Args:
        summarizer: Optional summary rewriter; findings it rewrites carry
            its ``model_name`` as ``ai_model``
        rules: Rule tables, resolved once (defaults to the built-in tables)
    """

    def __init__(
        self,
        summarizer: Optional[FindingSummarizer] = None,
        rules: Optional[dict[Framework, tuple[ControlRule, ...]]] = None,
    ):
        self.summarizer = summarizer
        self._rules = dict(rules if rules is not None else RULES)

    def supported_frameworks(self) -> list[Framework]:
        return list(self._rules)

    def map_signals_to_controls(
        self, signals: Signals, framework: Union[str, Framework]
    ) -> list[ControlFinding]:
        """Grade every control of *framework* against *signals*.

        Returns an empty list for unsupported frameworks.

        Raises:
            ControlMappingError: If the signals cannot be traversed
        """
        resolved = Framework.parse(framework)
        if resolved is None or resolved not in self._rules:
            logger.warning("Unsupported framework '%s'; no controls mapped", framework)
            return []

        try:
            findings = [self._evaluate(rule, resolved, signals) for rule in self._rules[resolved]]
        except AppError:
            raise
        except Exception as e:
            logger.error("Failed to map signals to %s controls: %s", resolved.value, e)
            raise ControlMappingError(resolved.value, str(e)) from e

        summarizer = self.summarizer
        if summarizer is not None:
            findings = [_summarize(summarizer, f, signals) for f in findings]

        logger.info(
            "Mapped %d signals to %d %s controls",
            signals.total,
            len(findings),
            resolved.value,
        )
        return findings

    # ── Rule evaluation ───────────────────────────────────────────

    def _evaluate(self, rule: ControlRule, framework: Framework, signals: Signals) -> ControlFinding:
        contributing = _contributing_signals(rule, signals)
        if rule.inverse:
            return self._evaluate_inverse(rule, framework, contributing)

        if not contributing:
            category = rule.primary_category.value
            return ControlFinding(
                control_id=rule.control_id,
                framework=framework.value,
                status=FindingStatus.FAIL,
                confidence_level=ABSENCE_CONFIDENCE,
                signal_type=f"{category}_absent",
                summary=f"{rule.title}: no implementation evidence found",
                recommendation=rule.recommendation,
                details={"control_title": rule.title, "signals": [], "files_with_evidence": 0},
            )

        verdicts = [(signal, _verdict(signal)) for signal in contributing]
        status = _resolve(verdicts)
        confidence = Confidence.strongest(s.confidence for s in contributing)

        # The signal that carries the resolved verdict names the finding
        primary = next(
            (s for s, v in verdicts if v is status and s.confidence.rank >= Confidence.MEDIUM.rank),
            contributing[0],
        )
        types = ", ".join(s.type for s in contributing)

        if status is FindingStatus.PASS:
            summary = f"{rule.title}: {types} detected"
            recommendation = rule.verification
        elif status is FindingStatus.PARTIAL:
            summary = f"{rule.title}: partial evidence ({types})"
            recommendation = rule.verification
        elif any(isinstance(s, CICDSignal) and not s.has_any_scanning for s in contributing):
            summary = f"{rule.title}: pipeline detected without security scanning ({types})"
            recommendation = rule.recommendation
        else:
            summary = f"{rule.title}: only weak evidence ({types})"
            recommendation = rule.recommendation

        return ControlFinding(
            control_id=rule.control_id,
            framework=framework.value,
            status=status,
            confidence_level=confidence,
            signal_type=f"{primary.category.value}_{primary.type}",
            summary=summary,
            recommendation=recommendation,
            details={
                "control_title": rule.title,
                "signals": [_describe(s, v) for s, v in verdicts],
                "files_with_evidence": len({e.path for s in contributing for e in s.evidence}),
            },
            evidence_references=_references(contributing),
        )

    def _evaluate_inverse(
        self, rule: ControlRule, framework: Framework, warnings: list[Signal]
    ) -> ControlFinding:
        if not warnings:
            return ControlFinding(
                control_id=rule.control_id,
                framework=framework.value,
                status=FindingStatus.PASS,
                confidence_level=ABSENCE_CONFIDENCE,
                signal_type=f"{rule.primary_category.value}_none",
                summary=f"{rule.title}: no hardcoded secrets detected",
                recommendation=rule.verification,
                details={"control_title": rule.title, "signals": [], "files_with_evidence": 0},
            )

        # Most severe warning first
        ordered = sorted(
            warnings,
            key=lambda w: -w.severity.rank if isinstance(w, SecretsWarning) else 0,
        )
        primary = ordered[0]
        recommendation = getattr(primary, "recommendation", "") or rule.recommendation
        return ControlFinding(
            control_id=rule.control_id,
            framework=framework.value,
            status=FindingStatus.FAIL,
            confidence_level=Confidence.strongest(w.confidence for w in warnings),
            signal_type=f"{primary.category.value}_{primary.type}",
            summary=(
                f"{rule.title}: {len(warnings)} potential hardcoded secret type(s) detected "
                f"({', '.join(w.type for w in ordered)})"
            ),
            recommendation=recommendation,
            details={
                "control_title": rule.title,
                "signals": [_describe(w, FindingStatus.FAIL) for w in ordered],
                "files_with_evidence": len({e.path for w in warnings for e in w.evidence}),
            },
            evidence_references=_references(ordered),
        )


def _summarize(
    summarizer: FindingSummarizer, finding: ControlFinding, signals: Signals
) -> ControlFinding:
    related = [
        s
        for s in (*signals.auth, *signals.encryption, *signals.logging,
                  *signals.access_control, *signals.cicd, *signals.secrets_warnings)
        if finding.signal_type == f"{s.category.value}_{s.type}"
    ]
    try:
        summary = summarizer.summarize(finding, related)
    except Exception as e:
        # Summaries are cosmetic; keep the static one
        logger.warning(
            "Summarizer %s failed for %s: %s", summarizer.model_name, finding.control_id, e
        )
        return finding
    if not summary:
        return finding
    return finding.with_summary(summary, summarizer.model_name)


def _contributing_signals(rule: ControlRule, signals: Signals) -> list[Signal]:
    seen: set[int] = set()
    result: list[Signal] = []
    for category, types in rule.evidence:
        for signal in signals.for_category(category):
            if signal.type in types and id(signal) not in seen:
                seen.add(id(signal))
                result.append(signal)
    return result


def _verdict(signal: Signal) -> FindingStatus:
    if isinstance(signal, SecretsWarning):
        return FindingStatus.FAIL
    if isinstance(signal, CICDSignal) and not signal.has_any_scanning:
        return FindingStatus.FAIL
    return _VERDICT_BY_CONFIDENCE[signal.confidence]


def _resolve(verdicts: list[tuple[Signal, FindingStatus]]) -> FindingStatus:
    """Best verdict among signals of at least medium confidence, else FAIL."""
    best = FindingStatus.FAIL
    for signal, verdict in verdicts:
        if signal.confidence.rank < Confidence.MEDIUM.rank:
            continue
        if VERDICT_RANK[verdict] > VERDICT_RANK[best]:
            best = verdict
    return best


def _describe(signal: Signal, verdict: FindingStatus) -> dict:
    described = {
        "type": signal.type,
        "confidence": signal.confidence.value,
        "verdict": verdict.value,
        "details": signal.details,
        "files": len(signal.evidence),
    }
    if signal.attributes:
        described["attributes"] = dict(signal.attributes)
    if isinstance(signal, CICDSignal):
        described["has_security_scanning"] = signal.has_security_scanning
        described["has_secret_scanning"] = signal.has_secret_scanning
        described["has_dependency_scanning"] = signal.has_dependency_scanning
    if isinstance(signal, SecretsWarning):
        described["severity"] = signal.severity.value
    return described


def _references(signals: list[Signal]) -> tuple[EvidenceReference, ...]:
    return tuple(EvidenceReference.from_evidence(e) for s in signals for e in s.evidence)


_default_mapper = ControlMapper()


def map_signals_to_controls(
    signals: Signals, framework: Union[str, Framework]
) -> list[ControlFinding]:
    """Map *signals* with the default (summarizer-less) mapper."""
    return _default_mapper.map_signals_to_controls(signals, framework)
