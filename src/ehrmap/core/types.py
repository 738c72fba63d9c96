"""Core type definitions for ehrmap."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ehrmap.core.exceptions import LookupMiss, LookupNotSupported


class MappingDirection(Enum):
    """Which side of a mapping is the source document."""

    FORWARD = "forward"  # Source format -> standard (e.g. JSON -> FHIR)
    REVERSE = "reverse"  # Standard -> source format (e.g. FHIR -> JSON)

    @classmethod
    def parse(cls, value: str | MappingDirection) -> MappingDirection:
        """Parse a direction, accepting the legacy JSON/FHIR names."""
        if isinstance(value, MappingDirection):
            return value
        normalized = value.strip().lower()
        aliases = {
            "json_to_fhir": cls.FORWARD,
            "fhir_to_json": cls.REVERSE,
        }
        if normalized in aliases:
            return aliases[normalized]
        return cls(normalized)


@dataclass(frozen=True)
class FieldRule:
    """Declarative instruction for deriving and placing one target value."""

    id: str
    target_path: str
    source_path: str | None = None
    data_type: str | None = None
    transform_expr: str | None = None
    condition: str | None = None
    validator: str | None = None
    required: bool = False
    default_value: Any = None
    lookup_table_id: str | None = None
    description: str = ""

    def can_produce_value(self) -> bool:
        """Return True if the rule has any way of producing a value."""
        return any(
            [
                self.source_path is not None,
                self.default_value is not None,
                self.transform_expr is not None,
            ]
        )

    def expressions(self) -> list[tuple[str, str]]:
        """Return (kind, text) for every expression declared on the rule."""
        found = []
        if self.condition:
            found.append(("condition", self.condition))
        if self.transform_expr:
            found.append(("transform", self.transform_expr))
        return found


@dataclass(frozen=True)
class MappingSet:
    """Named, versioned, ordered collection of field rules.

    Example:
        >>> mapping = MappingSet(
        ...     id="patient-json-to-fhir-v1",
        ...     name="Patient",
        ...     version="1.0",
        ...     direction=MappingDirection.FORWARD,
        ...     source_type="PatientDTO",
        ...     target_type="Patient",
        ...     field_rules=(FieldRule(id="id", source_path="patientId", target_path="id"),),
        ... )
    """

    id: str
    name: str
    version: str
    direction: MappingDirection
    source_type: str
    field_rules: tuple[FieldRule, ...]
    target_type: str | None = None
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "field_rules", tuple(self.field_rules))
        if not self.field_rules:
            raise ValueError(f"Mapping set '{self.id}' has no field rules")

        seen: set[str] = set()
        for rule in self.field_rules:
            if rule.id in seen:
                raise ValueError(f"Duplicate field rule id '{rule.id}' in mapping set '{self.id}'")
            seen.add(rule.id)

    def get_rule(self, rule_id: str) -> FieldRule | None:
        """Get a field rule by id."""
        for rule in self.field_rules:
            if rule.id == rule_id:
                return rule
        return None


@dataclass(frozen=True)
class CodeEntry:
    """A single source code to target code translation."""

    source_code: str
    target_code: str
    target_system: str | None = None
    display: str = ""


@dataclass(frozen=True)
class CodeMappingResult:
    """Result of translating a code: the code, its coding system and display."""

    code: str
    system: str | None = None
    display: str = ""

    def to_coding(self) -> dict[str, Any]:
        """Render as a FHIR Coding-shaped dict, omitting an unknown system."""
        coding: dict[str, Any] = {"code": self.code}
        if self.system is not None:
            coding["system"] = self.system
        if self.display:
            coding["display"] = self.display
        return coding


@dataclass(frozen=True)
class CodeTranslationTable:
    """Static code-to-code dictionary between two vocabularies.

    Codes are compared as strings, so a numeric source value of ``1`` matches
    an entry declared as ``"1"``.
    """

    id: str
    name: str
    source_system: str | None
    entries: tuple[CodeEntry, ...]
    default_target_system: str | None = None
    bidirectional: bool = False
    description: str = ""

    _forward: dict[str, CodeEntry] = field(init=False, repr=False, compare=False)
    _reverse: dict[str, CodeEntry] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", tuple(self.entries))

        forward: dict[str, CodeEntry] = {}
        reverse: dict[str, CodeEntry] = {}
        for entry in self.entries:
            if entry.source_code in forward:
                raise ValueError(
                    f"Duplicate source code '{entry.source_code}' in lookup table '{self.id}'"
                )
            forward[entry.source_code] = entry

            if self.bidirectional:
                if entry.target_code in reverse:
                    raise ValueError(
                        f"Duplicate target code '{entry.target_code}' in bidirectional "
                        f"lookup table '{self.id}'"
                    )
                reverse[entry.target_code] = entry

        object.__setattr__(self, "_forward", forward)
        object.__setattr__(self, "_reverse", reverse)

    def lookup_forward(self, code: Any) -> CodeMappingResult:
        """Translate a source code into the target vocabulary.

        Args:
            code: Source code (compared as a string).

        Returns:
            CodeMappingResult with the entry's system, else the table default.

        Raises:
            LookupMiss: If the code is not declared in the table.
        """
        key = str(code)
        entry = self._forward.get(key)
        if entry is None:
            raise LookupMiss(
                f"No mapping found for code '{key}' in lookup: {self.id}",
                table_id=self.id,
                code=code,
            )
        system = entry.target_system if entry.target_system else self.default_target_system
        return CodeMappingResult(code=entry.target_code, system=system, display=entry.display)

    def lookup_reverse(self, code: Any) -> CodeMappingResult:
        """Translate a target code back into the source vocabulary.

        Raises:
            LookupNotSupported: If the table is not bidirectional.
            LookupMiss: If the code is not a declared target code.
        """
        if not self.bidirectional:
            raise LookupNotSupported(
                f"Lookup table '{self.id}' is not bidirectional",
                table_id=self.id,
                code=code,
            )
        key = str(code)
        entry = self._reverse.get(key)
        if entry is None:
            raise LookupMiss(
                f"No reverse mapping found for code '{key}' in lookup: {self.id}",
                table_id=self.id,
                code=code,
            )
        return CodeMappingResult(
            code=entry.source_code, system=self.source_system, display=entry.display
        )

    def __contains__(self, code: object) -> bool:
        return str(code) in self._forward

    def __len__(self) -> int:
        return len(self.entries)
