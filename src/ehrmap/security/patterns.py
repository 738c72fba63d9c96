"""Forbidden expression signatures and their risk classification."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

# Bump when signatures are added, removed or reclassified
TAXONOMY_VERSION = "2.0"


class Severity(str, Enum):
    """Risk level of a forbidden signature. Only CRITICAL vetoes a mapping set."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class ThreatCategory(str, Enum):
    """What a forbidden signature would give an expression access to."""

    PROCESS_EXECUTION = "process_execution"
    REFLECTION = "reflection"
    FILESYSTEM = "filesystem"
    NETWORK = "network"
    DATABASE = "database"
    NAMING = "naming"
    THREADING = "threading"
    SCRIPT_ENGINE = "script_engine"


@dataclass(frozen=True)
class ForbiddenSignature:
    """A regex that marks an expression as attempting a forbidden capability."""

    pattern: str
    severity: Severity
    category: ThreatCategory
    description: str
    regex: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "regex", re.compile(self.pattern))

    def matches(self, expression: str) -> bool:
        return self.regex.search(expression) is not None


_P = ThreatCategory

FORBIDDEN_SIGNATURES: list[ForbiddenSignature] = [
    # Process and runtime
    ForbiddenSignature(r"\bSystem\.", Severity.HIGH, _P.PROCESS_EXECUTION, "Access to System class"),
    ForbiddenSignature(
        r"\bRuntime\.getRuntime", Severity.CRITICAL, _P.PROCESS_EXECUTION, "Runtime execution"
    ),
    ForbiddenSignature(r"\bProcessBuilder\b", Severity.CRITICAL, _P.PROCESS_EXECUTION, "Process creation"),
    ForbiddenSignature(r"\.exec\s*\(", Severity.CRITICAL, _P.PROCESS_EXECUTION, "Process execution"),
    ForbiddenSignature(r"\.exit\s*\(", Severity.CRITICAL, _P.PROCESS_EXECUTION, "System exit"),
    ForbiddenSignature(r"\bsubprocess\b", Severity.CRITICAL, _P.PROCESS_EXECUTION, "Subprocess module"),
    ForbiddenSignature(r"\bos\.", Severity.CRITICAL, _P.PROCESS_EXECUTION, "Operating system module"),
    ForbiddenSignature(
        r"(?<![\w.])(?:eval|exec|compile)\s*\(",
        Severity.CRITICAL,
        _P.PROCESS_EXECUTION,
        "Dynamic code evaluation",
    ),
    # Reflection and dynamic loading
    ForbiddenSignature(r"\bClass\.forName\b", Severity.HIGH, _P.REFLECTION, "Dynamic class loading"),
    ForbiddenSignature(r"\bClassLoader\b", Severity.HIGH, _P.REFLECTION, "Class loader access"),
    ForbiddenSignature(r"\.newInstance\s*\(", Severity.HIGH, _P.REFLECTION, "Reflection instantiation"),
    ForbiddenSignature(r"\bMethod\.invoke\b", Severity.HIGH, _P.REFLECTION, "Reflection method invocation"),
    ForbiddenSignature(r"__\w+__", Severity.CRITICAL, _P.REFLECTION, "Dunder attribute access"),
    ForbiddenSignature(r"\b__import__\b|\bimportlib\b", Severity.CRITICAL, _P.REFLECTION, "Module import"),
    ForbiddenSignature(
        r"\b(?:getattr|setattr|delattr|globals|locals|vars)\s*\(",
        Severity.HIGH,
        _P.REFLECTION,
        "Attribute reflection",
    ),
    # Filesystem
    ForbiddenSignature(r"\bjava\.io\.File\b", Severity.MEDIUM, _P.FILESYSTEM, "File system access"),
    ForbiddenSignature(r"\bjava\.nio\.file\b", Severity.MEDIUM, _P.FILESYSTEM, "NIO file access"),
    ForbiddenSignature(
        r"\bFile(?:InputStream|OutputStream|Reader|Writer)\b",
        Severity.MEDIUM,
        _P.FILESYSTEM,
        "File stream access",
    ),
    ForbiddenSignature(r"\bRandomAccessFile\b", Severity.MEDIUM, _P.FILESYSTEM, "Random file access"),
    ForbiddenSignature(r"(?<![\w.])open\s*\(", Severity.HIGH, _P.FILESYSTEM, "File open"),
    ForbiddenSignature(r"\b(?:pathlib|shutil)\b", Severity.HIGH, _P.FILESYSTEM, "Path manipulation"),
    # Network
    ForbiddenSignature(r"\bjava\.net\.Socket\b", Severity.HIGH, _P.NETWORK, "Network socket access"),
    ForbiddenSignature(r"\bServerSocket\b", Severity.HIGH, _P.NETWORK, "Server socket"),
    ForbiddenSignature(r"\bjava\.net\.URL\b", Severity.MEDIUM, _P.NETWORK, "URL connection"),
    ForbiddenSignature(r"\b(?:Http)?URLConnection\b", Severity.MEDIUM, _P.NETWORK, "URL connection"),
    ForbiddenSignature(r"\bsocket\.", Severity.HIGH, _P.NETWORK, "Socket module"),
    ForbiddenSignature(
        r"\b(?:urllib|requests|httpx|http\.client)\b", Severity.MEDIUM, _P.NETWORK, "HTTP client"
    ),
    # Database
    ForbiddenSignature(r"\bjavax?\.sql\.", Severity.HIGH, _P.DATABASE, "SQL database access"),
    ForbiddenSignature(r"\bDriverManager\b", Severity.HIGH, _P.DATABASE, "JDBC driver access"),
    ForbiddenSignature(
        r"\b(?:sqlite3|psycopg2?|pymysql|sqlalchemy)\b", Severity.HIGH, _P.DATABASE, "Database driver"
    ),
    # Naming services
    ForbiddenSignature(r"\bjavax\.naming\.", Severity.HIGH, _P.NAMING, "JNDI access"),
    ForbiddenSignature(r"\bInitialContext\b", Severity.HIGH, _P.NAMING, "JNDI context"),
    # Threading
    ForbiddenSignature(r"\bThread\.sleep\b", Severity.LOW, _P.THREADING, "Thread sleep"),
    ForbiddenSignature(r"\bnew\s+Thread\s*\(", Severity.MEDIUM, _P.THREADING, "Thread creation"),
    ForbiddenSignature(r"\b(?:threading|multiprocessing)\b", Severity.MEDIUM, _P.THREADING, "Thread creation"),
    # Script engines
    ForbiddenSignature(r"\bScriptEngine\w*", Severity.CRITICAL, _P.SCRIPT_ENGINE, "Script engine access"),
    ForbiddenSignature(r"\bjavax\.script\b", Severity.CRITICAL, _P.SCRIPT_ENGINE, "Scripting API"),
]

_BY_CATEGORY: dict[ThreatCategory, tuple[ForbiddenSignature, ...]] = {
    category: tuple(s for s in FORBIDDEN_SIGNATURES if s.category is category)
    for category in ThreatCategory
}


class SignatureMatcher:
    """Matches expression text against the forbidden signature list."""

    @classmethod
    def match(cls, expression: str) -> list[ForbiddenSignature]:
        """Return every signature found in the expression, in declaration order."""
        if not expression or not expression.strip():
            return []
        return [s for s in FORBIDDEN_SIGNATURES if s.matches(expression)]

    @classmethod
    def signatures_for(cls, category: ThreatCategory) -> list[ForbiddenSignature]:
        return list(_BY_CATEGORY[category])
