"""Core module for ehrmap."""

from ehrmap.core.context import TransformationContext
from ehrmap.core.exceptions import (
    DirectionMismatch,
    ExpressionError,
    ExpressionSyntaxError,
    LookupMiss,
    LookupNotSupported,
    LookupTableNotFound,
    MappingDefinitionError,
    MappingError,
    PathError,
    RequiredFieldMissing,
    SecurityVeto,
    ValidationError,
)
from ehrmap.core.trace import FieldTrace, TransformationTrace
from ehrmap.core.types import (
    CodeEntry,
    CodeMappingResult,
    CodeTranslationTable,
    FieldRule,
    MappingDirection,
    MappingSet,
)

__all__ = [
    "CodeEntry",
    "CodeMappingResult",
    "CodeTranslationTable",
    "DirectionMismatch",
    "ExpressionError",
    "ExpressionSyntaxError",
    "FieldRule",
    "FieldTrace",
    "LookupMiss",
    "LookupNotSupported",
    "LookupTableNotFound",
    "MappingDefinitionError",
    "MappingDirection",
    "MappingError",
    "MappingSet",
    "PathError",
    "RequiredFieldMissing",
    "SecurityVeto",
    "TransformationContext",
    "TransformationTrace",
    "ValidationError",
]
