"""Transformation engine, field pipeline and path addressing."""

from ehrmap.conversion.engine import TransformationEngine, TransformationOptions
from ehrmap.conversion.field import (
    Failed,
    FieldTransformer,
    Outcome,
    Skipped,
    Written,
    coerce_type,
    resolve_default,
)
from ehrmap.conversion.lookup import CodeLookupService
from ehrmap.conversion.paths import ABSENT, has_path, parse_path, read_path, write_path
from ehrmap.conversion.validator import FieldValidator, parse_validator

__all__ = [
    "ABSENT",
    "CodeLookupService",
    "Failed",
    "FieldTransformer",
    "FieldValidator",
    "Outcome",
    "Skipped",
    "TransformationEngine",
    "TransformationOptions",
    "Written",
    "coerce_type",
    "has_path",
    "parse_path",
    "parse_validator",
    "read_path",
    "resolve_default",
    "write_path",
]
