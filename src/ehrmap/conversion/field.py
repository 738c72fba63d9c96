"""Per-field transformation pipeline.

Each field rule runs the same steps in the same order::

    condition -> extract -> default -> transform -> required check
              -> lookup -> type coercion -> validate -> write

Steps a rule does not configure pass the working value through unchanged.
The result is an explicit Outcome; the engine decides from ``Failed.fatal``
whether the whole mapping aborts.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ehrmap.conversion.lookup import CodeLookupService
from ehrmap.conversion.paths import ABSENT, read_path, write_path
from ehrmap.conversion.validator import FieldValidator
from ehrmap.core.context import TransformationContext
from ehrmap.core.exceptions import (
    ExpressionError,
    LookupMiss,
    MappingError,
    RequiredFieldMissing,
)
from ehrmap.core.trace import FieldTrace
from ehrmap.core.types import FieldRule, MappingDirection
from ehrmap.expression.evaluator import ExpressionEvaluator

logger = logging.getLogger(__name__)

CONTEXT_PREFIX = "$ctx."

_SETTINGS_KEY = re.compile(r"""^settings\[(['"])(?P<key>.+)\1\]$""")


@dataclass(frozen=True)
class Written:
    """The field produced a value and it was written to the target."""

    value: Any


@dataclass(frozen=True)
class Skipped:
    """The field contributed nothing, and that is not an error."""

    reason: str


@dataclass(frozen=True)
class Failed:
    """The field failed. ``fatal`` means the whole mapping must abort."""

    error: MappingError
    fatal: bool


Outcome = Written | Skipped | Failed


def resolve_default(default: Any, context: TransformationContext | None) -> Any:
    """Resolve a default value, following ``$ctx.`` references into the context.

    Supported references are ``$ctx.settings['key']``, ``$ctx.settings.key``,
    ``$ctx.variables.key`` and ``$ctx.name``. A bare name is looked up in
    settings, then organizationId, facilityId, tenantId, then variables.
    Anything else is returned as the literal default.
    """
    if not isinstance(default, str) or not default.startswith(CONTEXT_PREFIX):
        return default
    if context is None:
        return None

    reference = default[len(CONTEXT_PREFIX) :]

    match = _SETTINGS_KEY.match(reference)
    if match:
        return context.get_setting(match.group("key"))
    if reference.startswith("settings."):
        return context.get_setting(reference[len("settings.") :])
    if reference.startswith("variables."):
        return context.get_variable(reference[len("variables.") :])

    if reference in context.settings:
        return context.settings[reference]
    identifiers = {
        "organizationId": context.organization_id,
        "facilityId": context.facility_id,
        "tenantId": context.tenant_id,
    }
    if reference in identifiers:
        return identifiers[reference]
    return context.get_variable(reference)


def coerce_type(value: Any, data_type: str) -> Any:
    """Best-effort conversion to a semantic data type.

    ``boolean`` is True only for a case-insensitive "true". Integer types parse
    with ``int`` and ``decimal`` with ``float``. Any other type tag keeps the
    value. When parsing fails the original value is returned unchanged.
    """
    kind = data_type.lower()
    text = "true" if value is True else "false" if value is False else str(value)
    try:
        if kind == "boolean":
            return text.strip().lower() == "true"
        if kind in ("integer", "unsignedint", "positiveint"):
            return int(text)
        if kind == "decimal":
            return float(text)
    except ValueError:
        logger.warning("Could not convert %r to %s; keeping original value", value, data_type)
        return value
    return value


class FieldTransformer:
    """Executes the per-field pipeline for one rule at a time.

    Holds only shared, read-only collaborators, so one instance can serve
    concurrent transformations.
    """

    def __init__(
        self,
        evaluator: ExpressionEvaluator,
        lookup_service: CodeLookupService | None = None,
        validator: FieldValidator | None = None,
    ) -> None:
        self.evaluator = evaluator
        self.lookup_service = lookup_service
        self.validator = validator or FieldValidator()

    def transform_field(
        self,
        rule: FieldRule,
        source: Mapping[str, Any],
        target: dict[str, Any],
        context: TransformationContext | None = None,
        direction: MappingDirection = MappingDirection.FORWARD,
    ) -> Outcome:
        """Run the pipeline for one rule, writing into ``target`` on success."""
        field_trace = FieldTrace(
            field_id=rule.id,
            source_path=rule.source_path,
            target_path=rule.target_path,
            expression=rule.transform_expr,
            condition=rule.condition,
        )
        outcome = self._run(rule, source, target, context, direction, field_trace)

        if isinstance(outcome, Failed):
            field_trace.finish(outcome.error)
        else:
            field_trace.finish()
        if context is not None and context.trace is not None:
            context.trace.add_field_trace(field_trace)
        return outcome

    def _run(
        self,
        rule: FieldRule,
        source: Mapping[str, Any],
        target: dict[str, Any],
        context: TransformationContext | None,
        direction: MappingDirection,
        field_trace: FieldTrace,
    ) -> Outcome:
        # 1. Condition
        if rule.condition:
            try:
                passed = self.evaluator.evaluate_condition(rule.condition, source, context)
            except ExpressionError as e:
                return self._fail(rule, e, fatal=rule.required)
            field_trace.condition_passed = passed
            if not passed:
                logger.debug("Field %s skipped: condition is false", rule.id)
                return Skipped("condition false")

        # 2. Extract
        value = None
        if rule.source_path:
            extracted = read_path(source, rule.source_path)
            value = None if extracted is ABSENT else extracted
        field_trace.source_value = value

        # 3. Default
        if value is None and rule.default_value is not None:
            value = resolve_default(rule.default_value, context)

        # 4. Transform
        if rule.transform_expr:
            try:
                value = self.evaluator.evaluate(rule.transform_expr, value, source, context)
            except ExpressionError as e:
                return self._fail(rule, e, fatal=True)

        # 5. Required check
        if value is None:
            if rule.required:
                missing = RequiredFieldMissing(
                    f"Required field missing: {rule.source_path or rule.id}",
                    field_id=rule.id,
                )
                return self._fail(rule, missing, fatal=True)
            return Skipped("no value")

        # 6. Lookup
        if rule.lookup_table_id:
            try:
                if self.lookup_service is None:
                    raise LookupMiss(
                        f"No lookup service configured for table: {rule.lookup_table_id}",
                        table_id=rule.lookup_table_id,
                        code=value,
                    )
                value = self.lookup_service.translate(rule.lookup_table_id, value, direction).code
            except LookupMiss as e:
                return self._fail(rule, e, fatal=True)

        # 7. Type coercion
        if rule.data_type:
            value = coerce_type(value, rule.data_type)

        # 8. Validate
        if rule.validator:
            try:
                self.validator.validate(value, rule.validator, rule.id)
            except MappingError as e:
                return self._fail(rule, e, fatal=rule.required)

        # 9. Write
        try:
            write_path(target, rule.target_path, value)
        except MappingError as e:
            return self._fail(rule, e, fatal=rule.required)

        field_trace.result_value = value
        return Written(value)

    def _fail(self, rule: FieldRule, error: MappingError, fatal: bool) -> Failed:
        if error.field_id is None:
            error.field_id = rule.id
        return Failed(error, fatal)
