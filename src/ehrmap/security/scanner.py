"""Load-time security scan of mapping expressions."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from ehrmap.core.exceptions import SecurityVeto
from ehrmap.core.types import MappingSet
from ehrmap.security.patterns import (
    TAXONOMY_VERSION,
    Severity,
    SignatureMatcher,
    ThreatCategory,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SecurityIssue:
    """A forbidden signature found in one expression."""

    location: str
    expression: str
    severity: Severity
    category: ThreatCategory
    description: str
    pattern: str

    def __str__(self) -> str:
        return f"{self.severity.value}: {self.location} - {self.description}"


@dataclass
class SecurityReport:
    """Issues collected by a scan."""

    issues: list[SecurityIssue] = field(default_factory=list)
    expressions_scanned: int = 0
    taxonomy_version: str = TAXONOMY_VERSION

    @property
    def has_issues(self) -> bool:
        return bool(self.issues)

    @property
    def has_critical(self) -> bool:
        return any(i.severity == Severity.CRITICAL for i in self.issues)

    @property
    def issue_count(self) -> int:
        return len(self.issues)

    def by_severity(self, severity: Severity) -> list[SecurityIssue]:
        return [i for i in self.issues if i.severity == severity]

    def merge(self, other: SecurityReport) -> None:
        self.issues.extend(other.issues)
        self.expressions_scanned += other.expressions_scanned

    def raise_if_critical(self, mapping_id: str | None = None) -> None:
        """Raise SecurityVeto if any CRITICAL issue was found."""
        critical = self.by_severity(Severity.CRITICAL)
        if critical:
            raise SecurityVeto(
                f"{len(critical)} critical security issue(s) found in mapping expressions",
                critical,
                mapping_id=mapping_id,
            )

    def format_report(self) -> str:
        """Return a human-readable report grouped by severity."""
        lines = [
            "=== Security Validation Report ===",
            f"Taxonomy version: {TAXONOMY_VERSION}",
            f"Expressions scanned: {self.expressions_scanned}",
            f"Total issues: {self.issue_count}",
        ]
        for severity in sorted(Severity, key=lambda s: s.rank, reverse=True):
            found = self.by_severity(severity)
            if not found:
                continue
            lines.append("")
            lines.append(f"{severity.value} ({len(found)}):")
            for issue in found:
                lines.append(f"  - {issue.location}: {issue.description}")
                lines.append(f"    Expression: {issue.expression}")
        return "\n".join(lines)


class ExpressionSecurityScanner:
    """Scans condition and transform expressions against forbidden signatures.

    This is a coarse text scan run once when mapping sets are loaded. The
    evaluator's closed function namespace is what actually confines
    expressions at runtime.

    Example:
        >>> scanner = ExpressionSecurityScanner()
        >>> report = scanner.scan_mapping_set(mapping)
        >>> report.raise_if_critical(mapping.id)
    """

    def scan_expression(self, expression: str, location: str = "expression") -> SecurityReport:
        """Scan a single expression."""
        report = SecurityReport()
        if not expression or not expression.strip():
            return report

        report.expressions_scanned = 1
        for signature in SignatureMatcher.match(expression):
            issue = SecurityIssue(
                location=location,
                expression=expression,
                severity=signature.severity,
                category=signature.category,
                description=signature.description,
                pattern=signature.pattern,
            )
            report.issues.append(issue)
            logger.warning(
                "Security issue found in %s: %s - %s", location, signature.description, expression
            )
        return report

    def scan_mapping_set(self, mapping: MappingSet) -> SecurityReport:
        """Scan every condition and transform expression in a mapping set."""
        report = SecurityReport()
        for rule in mapping.field_rules:
            for kind, text in rule.expressions():
                location = f"Mapping: {mapping.id}, Field: {rule.id} ({kind})"
                report.merge(self.scan_expression(text, location))
        return report

    def scan_registry(self, mappings: Iterable[MappingSet]) -> SecurityReport:
        """Scan a collection of mapping sets, such as ``registry.mapping_sets()``."""
        logger.info("Starting security validation of mapping expressions")
        report = SecurityReport()
        for mapping in mappings:
            report.merge(self.scan_mapping_set(mapping))
        logger.info(
            "Security validation complete: %d issues found in %d expressions",
            report.issue_count,
            report.expressions_scanned,
        )
        return report
