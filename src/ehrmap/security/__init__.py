"""Expression security scanning."""

from ehrmap.security.patterns import (
    FORBIDDEN_SIGNATURES,
    TAXONOMY_VERSION,
    ForbiddenSignature,
    Severity,
    SignatureMatcher,
    ThreatCategory,
)
from ehrmap.security.scanner import ExpressionSecurityScanner, SecurityIssue, SecurityReport

__all__ = [
    "FORBIDDEN_SIGNATURES",
    "TAXONOMY_VERSION",
    "ExpressionSecurityScanner",
    "ForbiddenSignature",
    "SecurityIssue",
    "SecurityReport",
    "Severity",
    "SignatureMatcher",
    "ThreatCategory",
]
