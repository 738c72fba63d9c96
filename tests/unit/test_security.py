"""Tests for the expression security scanner."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from ehrmap.core.exceptions import SecurityVeto
from ehrmap.core.types import FieldRule, MappingDirection, MappingSet
from ehrmap.security.patterns import (
    FORBIDDEN_SIGNATURES,
    Severity,
    SignatureMatcher,
    ThreatCategory,
)
from ehrmap.security.scanner import ExpressionSecurityScanner, SecurityReport


def _mapping(*expressions: str) -> MappingSet:
    rules = tuple(
        FieldRule(id=f"f{i}", target_path=f"t{i}", transform_expr=text)
        for i, text in enumerate(expressions)
    )
    return MappingSet(
        id="scan-me",
        name="Scan me",
        version="1",
        direction=MappingDirection.FORWARD,
        source_type="S",
        field_rules=rules,
    )


class TestSignatureMatcher:
    """Tests for signature matching."""

    @pytest.mark.parametrize(
        ("expression", "severity"),
        [
            ("Runtime.getRuntime().exec('ls')", Severity.CRITICAL),
            ("new ProcessBuilder('sh')", Severity.CRITICAL),
            ("value.__class__", Severity.CRITICAL),
            ("eval('1')", Severity.CRITICAL),
            ("os.system('ls')", Severity.CRITICAL),
            ("javax.script.ScriptEngineManager", Severity.CRITICAL),
            ("Class.forName('x')", Severity.HIGH),
            ("java.sql.DriverManager", Severity.HIGH),
            ("open('/etc/passwd')", Severity.HIGH),
            ("java.io.File('x')", Severity.MEDIUM),
            ("Thread.sleep(1000)", Severity.LOW),
        ],
    )
    def test_classifies_signatures(self, expression: str, severity: Severity) -> None:
        matched = SignatureMatcher.match(expression)
        assert matched
        assert max(s.severity.rank for s in matched) == severity.rank

    @pytest.mark.parametrize(
        "expression",
        [
            "fn.uppercase(value)",
            "fn.formatDate(value, 'yyyy-MM-dd')",
            "operatingSystem != null",
            "$ctx.settings['identifierSystem']",
            "fn.concat(fn.trim(firstName), ' ', lastName)",
            "positions[0]",
            "",
        ],
    )
    def test_safe_expressions(self, expression: str) -> None:
        assert SignatureMatcher.match(expression) == []

    def test_every_category_has_signatures(self) -> None:
        for category in ThreatCategory:
            assert SignatureMatcher.signatures_for(category)

    def test_signatures_for_partitions_the_list(self) -> None:
        grouped = [s for c in ThreatCategory for s in SignatureMatcher.signatures_for(c)]
        assert sorted(grouped, key=FORBIDDEN_SIGNATURES.index) == FORBIDDEN_SIGNATURES
        for category in ThreatCategory:
            assert all(s.category is category for s in SignatureMatcher.signatures_for(category))

    def test_signatures_for_from_many_threads(self) -> None:
        expected = {c: SignatureMatcher.signatures_for(c) for c in ThreatCategory}
        categories = list(ThreatCategory) * 50

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(SignatureMatcher.signatures_for, categories))

        for category, signatures in zip(categories, results):
            assert signatures == expected[category]

    def test_signatures_for_returns_a_copy(self) -> None:
        signatures = SignatureMatcher.signatures_for(ThreatCategory.NETWORK)
        signatures.clear()
        assert SignatureMatcher.signatures_for(ThreatCategory.NETWORK)

    def test_signatures_compile(self) -> None:
        for signature in FORBIDDEN_SIGNATURES:
            assert signature.regex.pattern == signature.pattern


class TestExpressionSecurityScanner:
    """Tests for the scanner and its report."""

    @pytest.fixture
    def scanner(self) -> ExpressionSecurityScanner:
        return ExpressionSecurityScanner()

    def test_clean_mapping(self, scanner: ExpressionSecurityScanner) -> None:
        report = scanner.scan_mapping_set(_mapping("fn.trim(value)", "value + 1"))
        assert not report.has_issues
        assert not report.has_critical
        assert report.expressions_scanned == 2
        report.raise_if_critical()

    def test_conditions_are_scanned(self, scanner: ExpressionSecurityScanner) -> None:
        mapping = MappingSet(
            id="m",
            name="M",
            version="1",
            direction=MappingDirection.FORWARD,
            source_type="S",
            field_rules=(FieldRule(id="a", target_path="x", condition="Thread.sleep(5)"),),
        )
        report = scanner.scan_mapping_set(mapping)
        assert report.issue_count == 1
        issue = report.issues[0]
        assert issue.severity == Severity.LOW
        assert issue.category == ThreatCategory.THREADING
        assert "Field: a (condition)" in issue.location

    def test_critical_vetoes(self, scanner: ExpressionSecurityScanner) -> None:
        report = scanner.scan_mapping_set(_mapping("fn.trim(value)", "Runtime.getRuntime()"))
        assert report.has_critical
        with pytest.raises(SecurityVeto) as exc_info:
            report.raise_if_critical("scan-me")
        assert exc_info.value.mapping_id == "scan-me"
        assert all(i.severity == Severity.CRITICAL for i in exc_info.value.issues)

    def test_non_critical_does_not_veto(self, scanner: ExpressionSecurityScanner) -> None:
        report = scanner.scan_mapping_set(_mapping("java.io.File('x')"))
        assert report.has_issues
        assert report.by_severity(Severity.MEDIUM)
        report.raise_if_critical()

    def test_scan_registry_merges(self, scanner: ExpressionSecurityScanner) -> None:
        report = scanner.scan_registry([_mapping("eval('x')"), _mapping("fn.trim(value)")])
        assert report.expressions_scanned == 2
        assert report.has_critical

    def test_format_report(self, scanner: ExpressionSecurityScanner) -> None:
        report = scanner.scan_mapping_set(_mapping("os.system('x')", "Thread.sleep(1)"))
        text = report.format_report()
        assert "Security Validation Report" in text
        assert "CRITICAL" in text
        assert "LOW (1)" in text
        assert text.index("CRITICAL") < text.index("LOW (1)")

    def test_empty_report(self) -> None:
        report = SecurityReport()
        assert report.issue_count == 0
        assert "Total issues: 0" in report.format_report()
