"""Restricted expression language for conditions and value transforms."""

from ehrmap.expression.evaluator import (
    CompiledExpression,
    ExpressionEvaluator,
    build_environment,
    to_condition_result,
)
from ehrmap.expression.functions import FN, FUNCTIONS
from ehrmap.expression.nodes import FunctionNamespace
from ehrmap.expression.parser import parse, tokenize

__all__ = [
    "FN",
    "FUNCTIONS",
    "CompiledExpression",
    "ExpressionEvaluator",
    "FunctionNamespace",
    "build_environment",
    "parse",
    "to_condition_result",
    "tokenize",
]
