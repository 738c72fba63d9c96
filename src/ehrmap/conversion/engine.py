"""Transformation engine executing mapping sets against source documents."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ehrmap.conversion.field import Failed, FieldTransformer, Skipped, Written
from ehrmap.conversion.lookup import CodeLookupService
from ehrmap.conversion.validator import FieldValidator
from ehrmap.core.context import TransformationContext
from ehrmap.core.exceptions import DirectionMismatch, MappingError
from ehrmap.core.types import MappingDirection, MappingSet
from ehrmap.expression.evaluator import ExpressionEvaluator
from ehrmap.schemas.registry import MappingRegistry

logger = logging.getLogger(__name__)


@dataclass
class TransformationOptions:
    """Options for the transformation engine."""

    # Set "resourceType" on targets of forward mapping sets that declare a target type
    tag_resource_type: bool = True

    # Compiled-expression cache
    cache_expressions: bool = True


class TransformationEngine:
    """Runs mapping sets against nested dict/list documents.

    Every call builds a fresh target and either returns it complete or raises
    the first fatal field error. Optional fields that fail are logged and left
    out of the target.

    Example:
        >>> engine = TransformationEngine(registry)
        >>> context = TransformationContext(organization_id="org-1", tracing_enabled=True)
        >>> patient = engine.transform_by_id("patient-json-to-fhir-v1", source, context)
    """

    def __init__(
        self,
        registry: MappingRegistry | None = None,
        options: TransformationOptions | None = None,
        evaluator: ExpressionEvaluator | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            registry: Registry supplying mapping sets and lookup tables.
            options: Engine options.
            evaluator: Expression evaluator; a new caching one by default.
        """
        self.registry = registry if registry is not None else MappingRegistry()
        self.options = options or TransformationOptions()
        self.evaluator = evaluator or ExpressionEvaluator(
            cache_enabled=self.options.cache_expressions
        )
        self.field_transformer = FieldTransformer(
            self.evaluator,
            CodeLookupService(self.registry.get_lookup_table),
            FieldValidator(),
        )

    def transform(
        self,
        source: Mapping[str, Any],
        mapping: MappingSet,
        context: TransformationContext | None = None,
        direction: MappingDirection = MappingDirection.FORWARD,
    ) -> dict[str, Any]:
        """Transform a source document with a mapping set.

        Args:
            source: Source document.
            mapping: Mapping set to execute.
            context: Per-call context. Its trace, if any, is reset and filled in.
            direction: Direction the caller intends; must match the mapping set.

        Returns:
            The completed target document.

        Raises:
            DirectionMismatch: If the mapping set runs in the other direction.
            MappingError: The first fatal field error, annotated with the
                mapping id and field id.
        """
        trace = context.trace if context is not None else None
        if trace is not None:
            trace.begin(mapping.id, mapping.source_type, mapping.target_type)

        try:
            if mapping.direction != direction:
                raise DirectionMismatch(
                    f"Invalid mapping direction. Expected {direction.value} "
                    f"but got {mapping.direction.value}",
                    mapping_id=mapping.id,
                )
            if not isinstance(source, Mapping):
                raise MappingError(
                    f"Source document must be a mapping, got {type(source).__name__}",
                    mapping_id=mapping.id,
                )
            target = self._run(source, mapping, context)
        except MappingError as e:
            if e.mapping_id is None:
                e.mapping_id = mapping.id
            if trace is not None:
                trace.fail(e)
            logger.debug("Transformation %s failed: %s", mapping.id, e)
            raise

        if trace is not None:
            trace.complete()
        return target

    def _run(
        self,
        source: Mapping[str, Any],
        mapping: MappingSet,
        context: TransformationContext | None,
    ) -> dict[str, Any]:
        target: dict[str, Any] = {}
        if (
            self.options.tag_resource_type
            and mapping.direction == MappingDirection.FORWARD
            and mapping.target_type
        ):
            target["resourceType"] = mapping.target_type

        written = 0
        for rule in mapping.field_rules:
            outcome = self.field_transformer.transform_field(
                rule, source, target, context, mapping.direction
            )
            if isinstance(outcome, Written):
                written += 1
            elif isinstance(outcome, Skipped):
                logger.debug("Field %s skipped: %s", rule.id, outcome.reason)
            elif isinstance(outcome, Failed):
                if outcome.fatal:
                    outcome.error.mapping_id = mapping.id
                    raise outcome.error
                logger.warning("Optional field %s skipped after error: %s", rule.id, outcome.error)

        logger.debug(
            "Transformed with %s: %d of %d fields written",
            mapping.id,
            written,
            len(mapping.field_rules),
        )
        return target

    def forward(
        self,
        source: Mapping[str, Any],
        mapping: MappingSet,
        context: TransformationContext | None = None,
    ) -> dict[str, Any]:
        """Transform with a forward mapping set (source format to standard)."""
        return self.transform(source, mapping, context, MappingDirection.FORWARD)

    def reverse(
        self,
        source: Mapping[str, Any],
        mapping: MappingSet,
        context: TransformationContext | None = None,
    ) -> dict[str, Any]:
        """Transform with a reverse mapping set (standard back to source format)."""
        return self.transform(source, mapping, context, MappingDirection.REVERSE)

    def transform_by_id(
        self,
        mapping_id: str,
        source: Mapping[str, Any],
        context: TransformationContext | None = None,
        direction: MappingDirection | None = None,
    ) -> dict[str, Any]:
        """Transform with a registered mapping set.

        When ``direction`` is omitted the mapping set's own direction is used.

        Raises:
            MappingError: If no mapping set is registered under the id.
        """
        mapping = self.registry.find_by_id(mapping_id)
        if mapping is None:
            raise MappingError(f"Mapping not found: {mapping_id}", mapping_id=mapping_id)
        return self.transform(source, mapping, context, direction or mapping.direction)
