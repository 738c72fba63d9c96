"""Compiled-expression cache and per-call evaluation environment."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ehrmap.core.context import TransformationContext
from ehrmap.core.exceptions import ExpressionError, ExpressionSyntaxError
from ehrmap.expression.functions import FN
from ehrmap.expression.nodes import EvaluationFailure, Node, truthy
from ehrmap.expression.parser import parse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompiledExpression:
    """A parsed expression ready to run against many environments."""

    text: str
    node: Node

    def evaluate(self, env: Mapping[str, Any]) -> Any:
        try:
            return self.node.evaluate(env)
        except EvaluationFailure as e:
            raise ExpressionError(str(e), self.text) from e
        except (ArithmeticError, TypeError, ValueError, RecursionError) as e:
            raise ExpressionError(f"{type(e).__name__}: {e}", self.text) from e


def build_environment(
    value: Any,
    source: Mapping[str, Any] | None,
    context: TransformationContext | None,
) -> dict[str, Any]:
    """Build the variables visible to one evaluation.

    Source document keys are bound directly; ``value``, ``ctx``/``$ctx`` and
    ``fn`` are bound last so a document key cannot shadow them.
    """
    env: dict[str, Any] = dict(source) if isinstance(source, Mapping) else {}
    ctx = context.expression_namespace() if context is not None else {}
    env["value"] = value
    env["ctx"] = ctx
    env["$ctx"] = ctx
    env["fn"] = FN
    return env


class ExpressionEvaluator:
    """Compiles, caches and evaluates mapping expressions.

    The cache is a plain dict keyed by expression text. Compilation is pure,
    so two threads compiling the same text concurrently just store equal
    values.

    Example:
        >>> evaluator = ExpressionEvaluator()
        >>> evaluator.evaluate("fn.uppercase(value)", "doe")
        'DOE'
        >>> evaluator.evaluate_condition("ssn != null", {"ssn": "123"})
        True
    """

    def __init__(self, cache_enabled: bool = True) -> None:
        self.cache_enabled = cache_enabled
        self._cache: dict[str, CompiledExpression] = {}

    def compile(self, expression: str) -> CompiledExpression:
        """Compile expression text, reusing a cached result when available.

        Raises:
            ExpressionSyntaxError: If the text does not parse.
        """
        if expression is None or not expression.strip():
            raise ExpressionSyntaxError("Expression cannot be empty", expression or "", 0)

        if self.cache_enabled:
            compiled = self._cache.get(expression)
            if compiled is not None:
                return compiled

        logger.debug("Compiling expression: %s", expression)
        compiled = CompiledExpression(expression, parse(expression))
        if self.cache_enabled:
            self._cache[expression] = compiled
        return compiled

    def evaluate(
        self,
        expression: str,
        value: Any = None,
        source: Mapping[str, Any] | None = None,
        context: TransformationContext | None = None,
    ) -> Any:
        """Evaluate an expression with ``value`` bound to the working value.

        Raises:
            ExpressionSyntaxError: If the text does not parse.
            ExpressionError: If evaluation fails.
        """
        compiled = self.compile(expression)
        result = compiled.evaluate(build_environment(value, source, context))
        logger.debug("Evaluated %r -> %r", expression, result)
        return result

    def evaluate_condition(
        self,
        expression: str,
        source: Mapping[str, Any] | None = None,
        context: TransformationContext | None = None,
    ) -> bool:
        """Evaluate a condition and coerce the result to a boolean."""
        result = self.evaluate(expression, None, source, context)
        return to_condition_result(result)

    def is_valid(self, expression: str) -> bool:
        """Return True if the expression compiles."""
        try:
            self.compile(expression)
        except ExpressionSyntaxError:
            return False
        return True

    def clear_cache(self) -> None:
        self._cache.clear()

    @property
    def cache_size(self) -> int:
        return len(self._cache)


def to_condition_result(result: Any) -> bool:
    """Coerce a condition result: null is false, other non-scalars are true."""
    if result is None or isinstance(result, bool | int | float | str):
        return truthy(result)
    return True
