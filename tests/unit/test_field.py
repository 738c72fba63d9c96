"""Tests for the per-field transformation pipeline."""

from typing import Any

import pytest

from ehrmap.conversion.field import (
    Failed,
    FieldTransformer,
    Skipped,
    Written,
    coerce_type,
    resolve_default,
)
from ehrmap.conversion.lookup import CodeLookupService
from ehrmap.core.context import TransformationContext
from ehrmap.core.exceptions import (
    ExpressionError,
    LookupMiss,
    LookupTableNotFound,
    PathError,
    RequiredFieldMissing,
    ValidationError,
)
from ehrmap.core.types import FieldRule, MappingDirection
from ehrmap.expression.evaluator import ExpressionEvaluator
from ehrmap.schemas.registry import MappingRegistry


class TestResolveDefault:
    """Tests for default value resolution."""

    @pytest.fixture
    def context(self) -> TransformationContext:
        return TransformationContext(
            organization_id="org-1",
            facility_id="fac-1",
            tenant_id="tenant-1",
            settings={"mrnSystem": "urn:mrn", "facilityId": "from-settings"},
            variables={"source": "batch", "tenantId": "from-variables"},
        )

    def test_literal(self, context: TransformationContext) -> None:
        assert resolve_default("unknown", context) == "unknown"
        assert resolve_default(5, context) == 5

    @pytest.mark.parametrize(
        ("reference", "expected"),
        [
            ("$ctx.settings['mrnSystem']", "urn:mrn"),
            ('$ctx.settings["mrnSystem"]', "urn:mrn"),
            ("$ctx.settings.mrnSystem", "urn:mrn"),
            ("$ctx.variables.source", "batch"),
            ("$ctx.organizationId", "org-1"),
            ("$ctx.mrnSystem", "urn:mrn"),
            ("$ctx.source", "batch"),
            ("$ctx.missing", None),
        ],
    )
    def test_context_references(
        self, context: TransformationContext, reference: str, expected: Any
    ) -> None:
        assert resolve_default(reference, context) == expected

    def test_resolution_priority(self, context: TransformationContext) -> None:
        """Settings win over identifiers, identifiers over variables."""
        assert resolve_default("$ctx.facilityId", context) == "from-settings"
        assert resolve_default("$ctx.tenantId", context) == "tenant-1"

    def test_without_context(self) -> None:
        assert resolve_default("$ctx.organizationId", None) is None


class TestCoerceType:
    """Tests for best-effort type coercion."""

    @pytest.mark.parametrize(
        ("value", "data_type", "expected"),
        [
            ("true", "boolean", True),
            ("TRUE", "boolean", True),
            ("yes", "boolean", False),
            (True, "boolean", True),
            ("42", "integer", 42),
            ("7", "positiveInt", 7),
            ("3", "unsignedInt", 3),
            ("2.5", "decimal", 2.5),
            ("abc", "string", "abc"),
            ("2024-01-01", "date", "2024-01-01"),
        ],
    )
    def test_conversions(self, value: Any, data_type: str, expected: Any) -> None:
        result = coerce_type(value, data_type)
        assert result == expected
        assert type(result) is type(expected)

    @pytest.mark.parametrize(
        ("value", "data_type"),
        [("abc", "integer"), ("4.5", "integer"), ("n/a", "decimal")],
    )
    def test_parse_failure_keeps_original(self, value: str, data_type: str) -> None:
        assert coerce_type(value, data_type) == value


class TestFieldTransformer:
    """Tests for FieldTransformer outcomes."""

    @pytest.fixture
    def transformer(self, registry: MappingRegistry) -> FieldTransformer:
        return FieldTransformer(
            ExpressionEvaluator(), CodeLookupService(registry.get_lookup_table)
        )

    def _run(
        self,
        transformer: FieldTransformer,
        rule: FieldRule,
        source: dict[str, Any],
        context: TransformationContext | None = None,
        direction: MappingDirection = MappingDirection.FORWARD,
    ) -> tuple[Any, dict[str, Any]]:
        target: dict[str, Any] = {}
        outcome = transformer.transform_field(rule, source, target, context, direction)
        return outcome, target

    def test_extract_and_write(self, transformer: FieldTransformer) -> None:
        rule = FieldRule(id="f", source_path="name.first", target_path="name[0].given[0]")
        outcome, target = self._run(transformer, rule, {"name": {"first": "John"}})
        assert outcome == Written("John")
        assert target == {"name": [{"given": ["John"]}]}

    def test_condition_false_skips(self, transformer: FieldTransformer) -> None:
        rule = FieldRule(
            id="f", source_path="a", target_path="b", condition="a == 'x'", required=True
        )
        outcome, target = self._run(transformer, rule, {"a": "y"})
        assert isinstance(outcome, Skipped)
        assert target == {}

    def test_optional_missing_is_skipped(self, transformer: FieldTransformer) -> None:
        rule = FieldRule(id="f", source_path="missing", target_path="b")
        outcome, target = self._run(transformer, rule, {})
        assert outcome == Skipped("no value")
        assert target == {}

    def test_required_missing_is_fatal(self, transformer: FieldTransformer) -> None:
        rule = FieldRule(id="f", source_path="missing", target_path="b", required=True)
        outcome, _ = self._run(transformer, rule, {})
        assert isinstance(outcome, Failed)
        assert outcome.fatal
        assert isinstance(outcome.error, RequiredFieldMissing)
        assert outcome.error.field_id == "f"
        assert "missing" in str(outcome.error)

    def test_explicit_null_uses_default(self, transformer: FieldTransformer) -> None:
        rule = FieldRule(id="f", source_path="a", target_path="b", default_value="unknown")
        outcome, target = self._run(transformer, rule, {"a": None})
        assert outcome == Written("unknown")
        assert target == {"b": "unknown"}

    def test_default_from_context(self, transformer: FieldTransformer) -> None:
        rule = FieldRule(id="f", target_path="system", default_value="$ctx.settings['sys']")
        context = TransformationContext(settings={"sys": "urn:x"})
        outcome, target = self._run(transformer, rule, {}, context)
        assert target == {"system": "urn:x"}

    def test_transform_sees_default(self, transformer: FieldTransformer) -> None:
        rule = FieldRule(
            id="f",
            source_path="a",
            target_path="b",
            default_value="abc",
            transform_expr="fn.uppercase(value)",
        )
        _, target = self._run(transformer, rule, {})
        assert target == {"b": "ABC"}

    def test_transform_failure_is_fatal_when_optional(
        self, transformer: FieldTransformer
    ) -> None:
        rule = FieldRule(id="f", source_path="a", target_path="b", transform_expr="value / 0")
        outcome, target = self._run(transformer, rule, {"a": 1})
        assert isinstance(outcome, Failed)
        assert outcome.fatal
        assert isinstance(outcome.error, ExpressionError)
        assert target == {}

    def test_transform_returning_null_skips(self, transformer: FieldTransformer) -> None:
        rule = FieldRule(id="f", source_path="a", target_path="b", transform_expr="null")
        outcome, _ = self._run(transformer, rule, {"a": 1})
        assert isinstance(outcome, Skipped)

    def test_condition_failure_fatal_only_when_required(
        self, transformer: FieldTransformer
    ) -> None:
        optional = FieldRule(id="f", source_path="a", target_path="b", condition="a < 'x'")
        outcome, _ = self._run(transformer, optional, {"a": 1})
        assert isinstance(outcome, Failed)
        assert not outcome.fatal

        required = FieldRule(
            id="g", source_path="a", target_path="b", condition="a < 'x'", required=True
        )
        outcome, _ = self._run(transformer, required, {"a": 1})
        assert isinstance(outcome, Failed)
        assert outcome.fatal

    def test_forward_lookup_writes_code(self, transformer: FieldTransformer) -> None:
        rule = FieldRule(id="g", source_path="sex", target_path="gender", lookup_table_id="gender-lookup")
        outcome, target = self._run(transformer, rule, {"sex": "F"})
        assert outcome == Written("female")
        assert target == {"gender": "female"}

    def test_reverse_direction_uses_reverse_lookup(self, transformer: FieldTransformer) -> None:
        rule = FieldRule(id="g", source_path="gender", target_path="sex", lookup_table_id="gender-lookup")
        _, target = self._run(
            transformer, rule, {"gender": "male"}, direction=MappingDirection.REVERSE
        )
        assert target == {"sex": "M"}

    def test_lookup_miss_is_fatal_when_optional(self, transformer: FieldTransformer) -> None:
        rule = FieldRule(id="g", source_path="sex", target_path="gender", lookup_table_id="gender-lookup")
        outcome, target = self._run(transformer, rule, {"sex": "X"})
        assert isinstance(outcome, Failed)
        assert outcome.fatal
        assert isinstance(outcome.error, LookupMiss)
        assert target == {}

    def test_unknown_lookup_table_is_fatal(self, transformer: FieldTransformer) -> None:
        rule = FieldRule(id="g", source_path="sex", target_path="gender", lookup_table_id="nope")
        outcome, _ = self._run(transformer, rule, {"sex": "M"})
        assert isinstance(outcome, Failed)
        assert isinstance(outcome.error, LookupTableNotFound)
        assert outcome.fatal

    def test_lookup_skipped_for_missing_value(self, transformer: FieldTransformer) -> None:
        rule = FieldRule(id="g", source_path="sex", target_path="gender", lookup_table_id="gender-lookup")
        outcome, _ = self._run(transformer, rule, {})
        assert isinstance(outcome, Skipped)

    def test_coercion_after_lookup(self, transformer: FieldTransformer) -> None:
        rule = FieldRule(id="f", source_path="n", target_path="count", data_type="integer")
        _, target = self._run(transformer, rule, {"n": "12"})
        assert target == {"count": 12}

    def test_validation_failure(self, transformer: FieldTransformer) -> None:
        rule = FieldRule(id="f", source_path="a", target_path="b", validator="regex('[0-9]+')")
        outcome, target = self._run(transformer, rule, {"a": "12a"})
        assert isinstance(outcome, Failed)
        assert isinstance(outcome.error, ValidationError)
        assert not outcome.fatal
        assert target == {}

        required = FieldRule(
            id="g", source_path="a", target_path="b", validator="notEmpty()", required=True
        )
        outcome, _ = self._run(transformer, required, {"a": ""})
        assert isinstance(outcome, Failed)
        assert outcome.fatal

    def test_write_conflict(self, transformer: FieldTransformer) -> None:
        rule = FieldRule(id="f", source_path="a", target_path="b.c")
        target: dict[str, Any] = {"b": "scalar"}
        outcome = transformer.transform_field(rule, {"a": 1}, target)
        assert isinstance(outcome, Failed)
        assert isinstance(outcome.error, PathError)
        assert not outcome.fatal

    def test_field_trace_recorded(self, transformer: FieldTransformer) -> None:
        context = TransformationContext(tracing_enabled=True)
        assert context.trace is not None
        rule = FieldRule(
            id="ssn",
            source_path="ssn",
            target_path="identifier[0].value",
            transform_expr="fn.digitsOnly(value)",
        )
        self._run(transformer, rule, {"ssn": "123-45"}, context)

        (field_trace,) = context.trace.field_traces
        assert field_trace.field_id == "ssn"
        assert field_trace.source_value == "123-45"
        assert field_trace.result_value == "12345"
        assert field_trace.expression == "fn.digitsOnly(value)"
        assert field_trace.condition_passed
        assert field_trace.success
        assert field_trace.end_time is not None

    def test_trace_for_skipped_and_failed(self, transformer: FieldTransformer) -> None:
        context = TransformationContext(tracing_enabled=True)
        assert context.trace is not None
        skipped = FieldRule(id="a", source_path="x", target_path="y", condition="false")
        failed = FieldRule(id="b", source_path="x", target_path="y", required=True)
        self._run(transformer, skipped, {}, context)
        self._run(transformer, failed, {}, context)

        first, second = context.trace.field_traces
        assert first.condition_passed is False
        assert first.success
        assert second.error_message is not None
        assert not second.success
