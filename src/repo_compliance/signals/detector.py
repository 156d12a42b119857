"""Signal detector: pattern-based discovery of security-relevant code.

The detector only reads the files it is handed. Every ``scan_for_*`` entry
point is independent and can be called in any order; file contents are
cached on the instance so a run reads each file at most once no matter how
many categories it scans.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, Optional

from ..config import ScanConfig
from ..exceptions import UnscannableFileError
from ..file_ops import read_scannable_text, resolve_within
from ..logging_config import get_logger
from ..scanning.models import FileCategory, FileEntry
from .models import (
    CICDSignal,
    Confidence,
    Evidence,
    SecretsWarning,
    Signal,
    SignalCategory,
)
from .patterns import (
    ACCESS_CONTROL_PATTERNS,
    AUTH_PATTERNS,
    CICD_PROVIDERS,
    DEPENDENCY_SCANNING_REGEX,
    ENCRYPTION_PATTERNS,
    LOGGING_PATTERNS,
    REDACTED,
    SECRET_PATTERNS,
    SECRET_RECOMMENDATIONS,
    SECRET_SCANNING_REGEX,
    SECURITY_SCANNING_REGEX,
    SignalPattern,
)

logger = get_logger(__name__)

# Line numbers kept per evidence entry
MAX_LINES_PER_FILE = 50

_NON_PRODUCTION_MARKERS = ("example", "sample", "template", "fixture", "mock", "dummy")


class SignalDetector:
    """Scans an inventoried snapshot for security signals.

    Usage:
        detector = SignalDetector(config)
        files = list_candidate_files(path, config)
        auth = detector.scan_for_auth(path, files)
        secrets = detector.scan_for_secrets(path, files)
        detector.scanned_files, detector.skipped_files
    """

    def __init__(self, config: Optional[ScanConfig] = None):
        self.config = config or ScanConfig()
        self._contents: dict[str, Optional[str]] = {}
        self._scanned: set[str] = set()
        self._skipped: set[str] = set()

    @property
    def scanned_files(self) -> int:
        return len(self._scanned)

    @property
    def skipped_files(self) -> int:
        return len(self._skipped)

    def clear_cache(self) -> None:
        self._contents.clear()
        self._scanned.clear()
        self._skipped.clear()

    # ── Category entry points ─────────────────────────────────────

    def scan_for_auth(self, extracted_path: str, files: list[FileEntry]) -> list[Signal]:
        signals = self._scan_patterns(SignalCategory.AUTH, AUTH_PATTERNS, extracted_path, files)
        logger.info("Authentication scan: %d signal types", len(signals))
        return signals

    def scan_for_encryption(self, extracted_path: str, files: list[FileEntry]) -> list[Signal]:
        signals = self._scan_patterns(
            SignalCategory.ENCRYPTION, ENCRYPTION_PATTERNS, extracted_path, files
        )
        logger.info("Encryption scan: %d signal types", len(signals))
        return signals

    def scan_for_logging(self, extracted_path: str, files: list[FileEntry]) -> list[Signal]:
        signals = self._scan_patterns(SignalCategory.LOGGING, LOGGING_PATTERNS, extracted_path, files)
        logger.info("Logging scan: %d signal types", len(signals))
        return signals

    def scan_for_access_control(self, extracted_path: str, files: list[FileEntry]) -> list[Signal]:
        signals = self._scan_patterns(
            SignalCategory.ACCESS_CONTROL, ACCESS_CONTROL_PATTERNS, extracted_path, files
        )
        logger.info("Access control scan: %d signal types", len(signals))
        return signals

    def scan_for_cicd(self, extracted_path: str, files: list[FileEntry]) -> list[CICDSignal]:
        """Detect pipeline definitions and the scanners they run.

        Providers are recognised by file location. A definition that cannot
        be read still counts as present, with no scanning observed.
        """
        root = Path(extracted_path)
        signals: list[CICDSignal] = []

        for provider in CICD_PROVIDERS:
            matched = [f for f in files if provider.matches(f)]
            if not matched:
                continue

            evidence: list[Evidence] = []
            security = secret = dependency = False
            for entry in matched:
                content = self._read(root, entry)
                if content is None:
                    evidence.append(Evidence(entry.relative_path, f"{provider.label} configuration"))
                    continue

                lines: list[int] = []
                first_hit: Optional[str] = None
                for lineno, line in enumerate(content.splitlines(), start=1):
                    hit = False
                    if SECURITY_SCANNING_REGEX.search(line):
                        security = hit = True
                    if SECRET_SCANNING_REGEX.search(line):
                        secret = hit = True
                    if DEPENDENCY_SCANNING_REGEX.search(line):
                        dependency = hit = True
                    if hit:
                        lines.append(lineno)
                        if first_hit is None:
                            first_hit = line.strip()

                evidence.append(
                    Evidence(
                        entry.relative_path,
                        self._truncate(first_hit or f"{provider.label} configuration"),
                        tuple(lines[:MAX_LINES_PER_FILE]) or None,
                    )
                )

            scanning = security or secret or dependency
            details = (
                f"{provider.label} CI/CD pipeline detected with security scanning"
                if scanning
                else f"{provider.label} CI/CD pipeline detected without security scanning"
            )
            signals.append(
                CICDSignal(
                    category=SignalCategory.CICD,
                    type=provider.type,
                    confidence=Confidence.HIGH,
                    details=details,
                    evidence=tuple(evidence),
                    attributes={"provider": provider.label},
                    has_security_scanning=security,
                    has_secret_scanning=secret,
                    has_dependency_scanning=dependency,
                )
            )

        logger.info("CI/CD scan: %d pipeline providers", len(signals))
        return signals

    def scan_for_secrets(self, extracted_path: str, files: list[FileEntry]) -> list[SecretsWarning]:
        """Find probable hardcoded secrets.

        Test, example and template files are skipped. Evidence snippets have
        every matched value replaced by ``[REDACTED]``.
        """
        root = Path(extracted_path)
        found: dict[str, list[Evidence]] = {p.type: [] for p in SECRET_PATTERNS}

        for entry in files:
            if _is_non_production(entry):
                continue
            content = self._read(root, entry)
            if content is None:
                continue

            per_type: dict[str, tuple[list[int], list[str]]] = {}
            for lineno, line in enumerate(content.splitlines(), start=1):
                matches = [
                    (pattern.type, match)
                    for pattern in SECRET_PATTERNS
                    for match in pattern.regex.finditer(line)
                ]
                if not matches:
                    continue
                # Every secret on the line is blanked before any snippet is kept
                redacted = _redact(line, [match for _, match in matches]).strip()
                for type_ in dict.fromkeys(type_ for type_, _ in matches):
                    lines, snippets = per_type.setdefault(type_, ([], []))
                    lines.append(lineno)
                    if not snippets:
                        snippets.append(redacted)

            for type_, (lines, snippets) in per_type.items():
                found[type_].append(
                    Evidence(
                        entry.relative_path,
                        self._truncate(snippets[0]),
                        tuple(lines[:MAX_LINES_PER_FILE]),
                    )
                )

        warnings: list[SecretsWarning] = []
        for pattern in SECRET_PATTERNS:
            evidence = found[pattern.type]
            if not evidence:
                continue
            warnings.append(
                SecretsWarning(
                    category=SignalCategory.SECRETS,
                    type=pattern.type,
                    confidence=pattern.confidence,
                    details=(
                        f"Potential hardcoded {pattern.type.replace('_', ' ')} "
                        f"in {len(evidence)} file(s)"
                    ),
                    evidence=tuple(evidence),
                    severity=pattern.severity,
                    recommendation=SECRET_RECOMMENDATIONS[pattern.type],
                )
            )

        if warnings:
            logger.warning(
                "Secrets scan: %d potential secret types (%s)",
                len(warnings),
                ", ".join(f"{w.type}={w.severity.value}" for w in warnings),
            )
        return warnings

    # ── Shared machinery ──────────────────────────────────────────

    def _scan_patterns(
        self,
        category: SignalCategory,
        patterns: Iterable[SignalPattern],
        extracted_path: str,
        files: list[FileEntry],
    ) -> list[Signal]:
        root = Path(extracted_path)
        patterns = tuple(patterns)
        evidence: dict[str, list[Evidence]] = {p.type: [] for p in patterns}
        confidences: dict[str, list[Confidence]] = {p.type: [] for p in patterns}
        tags: dict[str, set[str]] = {p.type: set() for p in patterns}

        for entry in files:
            content = self._read(root, entry)
            if content is None:
                continue
            lines = content.splitlines()

            for pattern in patterns:
                hit_lines: list[int] = []
                first_snippet: Optional[str] = None
                for lineno, line in enumerate(lines, start=1):
                    # One match per line: strongest rule first
                    for rule in pattern.rules:
                        if rule.regex.search(line):
                            hit_lines.append(lineno)
                            confidences[pattern.type].append(rule.confidence)
                            if first_snippet is None:
                                first_snippet = line.strip()
                            if pattern.attribute_regex is not None:
                                tags[pattern.type].update(
                                    m.group(1).lower() for m in pattern.attribute_regex.finditer(line)
                                )
                            break

                if hit_lines:
                    evidence[pattern.type].append(
                        Evidence(
                            entry.relative_path,
                            self._truncate(first_snippet or ""),
                            tuple(hit_lines[:MAX_LINES_PER_FILE]),
                        )
                    )

        signals: list[Signal] = []
        for pattern in patterns:
            if not evidence[pattern.type]:
                continue
            attributes = {}
            if pattern.attribute_name and tags[pattern.type]:
                attributes[pattern.attribute_name] = sorted(tags[pattern.type])
            signals.append(
                Signal(
                    category=category,
                    type=pattern.type,
                    confidence=Confidence.strongest(confidences[pattern.type]),
                    details=pattern.details,
                    evidence=tuple(evidence[pattern.type]),
                    attributes=attributes,
                )
            )
        return signals

    def _read(self, root: Path, entry: FileEntry) -> Optional[str]:
        """Cached text read. Unscannable files are recorded once as skipped."""
        key = entry.relative_path
        if key in self._contents:
            return self._contents[key]

        try:
            path = resolve_within(root, key)
            content: Optional[str] = read_scannable_text(path, self.config.max_file_size_bytes)
            self._scanned.add(key)
        except UnscannableFileError as e:
            logger.debug("Skipping %s: %s", key, e.reason)
            content = None
            self._skipped.add(key)

        self._contents[key] = content
        return content

    def _truncate(self, text: str) -> str:
        limit = self.config.snippet_length
        if len(text) <= limit:
            return text
        return text[: limit - 3] + "..."


def _is_non_production(entry: FileEntry) -> bool:
    if entry.category is FileCategory.TEST:
        return True
    lower = entry.lower_path
    return any(marker in lower for marker in _NON_PRODUCTION_MARKERS)


def _redact(line: str, matches: Iterable[re.Match]) -> str:
    """Replace every captured secret value in *line* with the redaction marker.

    Overlapping spans from different patterns are merged first.
    """
    spans: list[tuple[int, int]] = []
    for match in matches:
        captured = [
            match.span(name)
            for name, value in match.groupdict().items()
            if value is not None
        ]
        spans.extend(captured or [match.span()])

    merged: list[list[int]] = []
    for start, end in sorted(spans):
        if merged and start <= merged[-1][1]:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])

    for start, end in reversed(merged):
        line = line[:start] + REDACTED + line[end:]
    return line
