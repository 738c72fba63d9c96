"""Loads mapping sets and lookup tables from YAML or JSON definition files."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from ehrmap.conversion.validator import parse_validator
from ehrmap.core.exceptions import ExpressionSyntaxError, MappingDefinitionError
from ehrmap.core.types import (
    CodeEntry,
    CodeTranslationTable,
    FieldRule,
    MappingDirection,
    MappingSet,
)
from ehrmap.expression.evaluator import ExpressionEvaluator
from ehrmap.schemas.registry import MappingRegistry
from ehrmap.security.scanner import ExpressionSecurityScanner, SecurityReport

logger = logging.getLogger(__name__)

DEFINITION_SUFFIXES = (".yaml", ".yml", ".json")


def _read_definitions(path: Path) -> list[dict[str, Any]]:
    """Read a file holding one definition or a list of definitions."""
    try:
        with open(path) as f:
            if path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise MappingDefinitionError(f"Cannot read definition file: {e}", source=str(path)) from e

    if data is None:
        return []
    items = data if isinstance(data, list) else [data]
    for item in items:
        if not isinstance(item, dict):
            raise MappingDefinitionError(
                f"Expected a mapping object, got {type(item).__name__}", source=str(path)
            )
    return items


def _require(data: dict[str, Any], key: str, source: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise MappingDefinitionError(f"Missing required key '{key}'", source=source)
    return value


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _object(item: Any, what: str, source: str) -> dict[str, Any]:
    if not isinstance(item, dict):
        raise MappingDefinitionError(
            f"Expected {what} to be a mapping object, got {type(item).__name__}", source=source
        )
    return item


def _flag(data: dict[str, Any], key: str, source: str) -> bool:
    """Read a boolean key, accepting YAML booleans or the strings "true"/"false"."""
    value = data.get(key, False)
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise MappingDefinitionError(f"'{key}' must be true or false, got {value!r}", source=source)


def _parse_field_rule(data: dict[str, Any], source: str) -> FieldRule:
    return FieldRule(
        id=str(_require(data, "id", source)),
        target_path=str(_require(data, "targetPath", source)),
        source_path=_optional_str(data.get("sourcePath")),
        data_type=_optional_str(data.get("dataType")),
        transform_expr=_optional_str(data.get("transformExpression")),
        condition=_optional_str(data.get("condition")),
        validator=_optional_str(data.get("validator")),
        required=_flag(data, "required", source),
        default_value=data.get("defaultValue"),
        lookup_table_id=_optional_str(data.get("lookupTable")),
        description=data.get("description", "") or "",
    )


def parse_mapping_set(data: dict[str, Any], source: str = "<memory>") -> MappingSet:
    """Build a MappingSet from a camelCase definition dict.

    Raises:
        MappingDefinitionError: If required keys are missing or invalid.
    """
    mapping_id = str(_require(data, "id", source))
    try:
        direction = MappingDirection.parse(str(_require(data, "direction", source)))
    except ValueError as e:
        raise MappingDefinitionError(
            f"Invalid direction '{data.get('direction')}'", source=source, mapping_id=mapping_id
        ) from e

    rules_data = data.get("fieldMappings") or []
    if not isinstance(rules_data, list):
        raise MappingDefinitionError(
            "'fieldMappings' must be a list", source=source, mapping_id=mapping_id
        )

    source_type = str(_require(data, "sourceType", source))
    rules = [_parse_field_rule(_object(r, "field mapping", source), source) for r in rules_data]
    try:
        return MappingSet(
            id=mapping_id,
            name=str(data.get("name") or mapping_id),
            version=str(data.get("version", "1.0")),
            direction=direction,
            source_type=source_type,
            target_type=_optional_str(data.get("targetType")),
            field_rules=tuple(rules),
            description=data.get("description", "") or "",
        )
    except ValueError as e:
        raise MappingDefinitionError(str(e), source=source, mapping_id=mapping_id) from e


def parse_lookup_table(data: dict[str, Any], source: str = "<memory>") -> CodeTranslationTable:
    """Build a CodeTranslationTable from a camelCase definition dict.

    Raises:
        MappingDefinitionError: If required keys are missing or codes collide.
    """
    table_id = str(_require(data, "id", source))
    entries_data = data.get("mappings") or []
    if not isinstance(entries_data, list):
        raise MappingDefinitionError(
            f"'mappings' of lookup table '{table_id}' must be a list", source=source
        )
    entries = []
    for item in entries_data:
        entry = _object(item, f"a code entry of lookup table '{table_id}'", source)
        entries.append(
            CodeEntry(
                source_code=str(_require(entry, "sourceCode", source)),
                target_code=str(_require(entry, "targetCode", source)),
                target_system=_optional_str(entry.get("targetSystem")),
                display=entry.get("display", "") or "",
            )
        )
    bidirectional = _flag(data, "bidirectional", source)
    try:
        return CodeTranslationTable(
            id=table_id,
            name=str(data.get("name") or table_id),
            source_system=_optional_str(data.get("sourceSystem")),
            default_target_system=_optional_str(data.get("targetSystem")),
            bidirectional=bidirectional,
            entries=tuple(entries),
            description=data.get("description", "") or "",
        )
    except ValueError as e:
        raise MappingDefinitionError(str(e), source=source) from e


class MappingLoader:
    """Loads a mapping registry from a definitions directory.

    Layout::

        <base_dir>/
            lookups/    *.yaml, *.yml or *.json lookup tables
            mappings/   *.yaml, *.yml or *.json mapping sets

    In strict mode any invalid mapping file aborts the load; otherwise the
    file is skipped and logged. A critical security finding always aborts
    the load while ``enforce_security`` is set.
    """

    def __init__(
        self,
        base_dir: str | Path,
        strict: bool = True,
        enforce_security: bool = True,
    ) -> None:
        self.base_dir = Path(base_dir)
        self.strict = strict
        self.enforce_security = enforce_security
        self.evaluator = ExpressionEvaluator(cache_enabled=False)
        self.scanner = ExpressionSecurityScanner()
        self.last_security_report: SecurityReport | None = None

    @property
    def lookups_dir(self) -> Path:
        return self.base_dir / "lookups"

    @property
    def mappings_dir(self) -> Path:
        return self.base_dir / "mappings"

    def load_all(self) -> MappingRegistry:
        """Load every lookup table and mapping set into a new registry.

        Raises:
            MappingDefinitionError: On an invalid definition in strict mode, or
                an unreadable lookup file.
            SecurityVeto: If an expression carries a critical signature.
        """
        registry = MappingRegistry()

        for path in self._definition_files(self.lookups_dir):
            for table in self.load_lookup_file(path):
                registry.add_lookup_table(table)
                logger.debug("Loaded lookup table %s from %s", table.id, path.name)

        report = SecurityReport()
        self.last_security_report = report
        seen: dict[str, str] = {}
        for path in self._definition_files(self.mappings_dir):
            try:
                mappings = self.load_mapping_file(path)
                in_file: set[str] = set()
                for mapping in mappings:
                    if mapping.id in seen or mapping.id in in_file:
                        raise MappingDefinitionError(
                            f"Duplicate mapping id '{mapping.id}' also defined in "
                            f"{seen.get(mapping.id, path.name)}",
                            source=str(path),
                            mapping_id=mapping.id,
                        )
                    in_file.add(mapping.id)

                    # Scan runs before compile checks
                    scanned = self.scanner.scan_mapping_set(mapping)
                    report.merge(scanned)
                    if self.enforce_security:
                        scanned.raise_if_critical(mapping.id)

                    self.check_mapping_set(mapping, registry, source=str(path))
            except MappingDefinitionError as e:
                if self.strict:
                    raise
                logger.error("Skipping %s: %s", path, e)
                continue

            for mapping in mappings:
                registry.add_mapping_set(mapping)
                seen[mapping.id] = path.name
                logger.debug(
                    "Loaded mapping %s [%s] from %s", mapping.id, mapping.direction.value, path.name
                )

        if report.has_issues:
            logger.warning("Security scan found %d issue(s)", report.issue_count)

        logger.info("Mapping registry loaded: %s", registry.stats())
        return registry

    def load_mapping_file(self, path: str | Path) -> list[MappingSet]:
        """Parse mapping sets from one file without registry-level checks."""
        path = Path(path)
        return [parse_mapping_set(item, str(path)) for item in _read_definitions(path)]

    def load_lookup_file(self, path: str | Path) -> list[CodeTranslationTable]:
        """Parse lookup tables from one file."""
        path = Path(path)
        return [parse_lookup_table(item, str(path)) for item in _read_definitions(path)]

    def check_mapping_set(
        self,
        mapping: MappingSet,
        registry: MappingRegistry,
        source: str | None = None,
    ) -> None:
        """Check references, validators and expressions of a mapping set.

        Raises:
            MappingDefinitionError: On the first problem found.
        """
        for rule in mapping.field_rules:
            where = {"source": source, "mapping_id": mapping.id, "field_id": rule.id}

            if rule.lookup_table_id and registry.get_lookup_table(rule.lookup_table_id) is None:
                raise MappingDefinitionError(
                    f"Unknown lookup table '{rule.lookup_table_id}'", **where
                )

            if rule.validator:
                try:
                    parse_validator(rule.validator)
                except ValueError as e:
                    raise MappingDefinitionError(str(e), **where) from e

            for kind, text in rule.expressions():
                try:
                    self.evaluator.compile(text)
                except ExpressionSyntaxError as e:
                    raise MappingDefinitionError(
                        f"Invalid {kind} expression {text!r}: {e.message}", **where
                    ) from e

            if not rule.can_produce_value():
                logger.warning(
                    "Field %s in %s has no sourcePath, defaultValue or transformExpression",
                    rule.id,
                    mapping.id,
                )

    def _definition_files(self, directory: Path) -> list[Path]:
        if not directory.exists():
            logger.info("No %s directory found in %s, skipping", directory.name, self.base_dir)
            return []
        return sorted(p for p in directory.iterdir() if p.suffix in DEFINITION_SUFFIXES)
