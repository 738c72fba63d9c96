"""Syntax tree for mapping expressions and its tree-walking evaluation."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any


class EvaluationFailure(Exception):
    """Raised by nodes; wrapped into ExpressionError with the expression text."""


class FunctionNamespace:
    """A closed, named set of callables exposed to expressions (``fn``)."""

    def __init__(self, name: str, functions: Mapping[str, Callable[..., Any]]) -> None:
        self.name = name
        self._functions = dict(functions)

    def get(self, function_name: str) -> Callable[..., Any] | None:
        return self._functions.get(function_name)

    def names(self) -> list[str]:
        return sorted(self._functions)

    def __repr__(self) -> str:
        return f"<function namespace {self.name}>"


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _type_name(value: Any) -> str:
    return "null" if value is None else type(value).__name__


def truthy(value: Any) -> bool:
    """Truthiness used by !, &&, || and the ternary operator."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if _is_number(value):
        return value != 0
    if isinstance(value, str):
        return value != "" and value.lower() != "false"
    if isinstance(value, list | dict):
        return len(value) > 0
    return True


class Node(ABC):
    """Base expression node."""

    @abstractmethod
    def evaluate(self, env: Mapping[str, Any]) -> Any:
        """Evaluate the node against a variable environment."""


@dataclass(frozen=True)
class Literal(Node):
    value: Any

    def evaluate(self, env: Mapping[str, Any]) -> Any:
        return self.value


@dataclass(frozen=True)
class Name(Node):
    identifier: str

    def evaluate(self, env: Mapping[str, Any]) -> Any:
        # Unknown variables are null, so conditions can test optional fields
        return env.get(self.identifier)


@dataclass(frozen=True)
class Member(Node):
    """``obj.name`` or ``obj[key]``."""

    target: Node
    key: Node

    def evaluate(self, env: Mapping[str, Any]) -> Any:
        container = self.target.evaluate(env)
        key = self.key.evaluate(env)
        if container is None:
            return None
        if isinstance(container, dict):
            return container.get(key) if isinstance(key, str) else None
        if isinstance(container, list):
            if not isinstance(key, int) or isinstance(key, bool):
                raise EvaluationFailure(f"List index must be an integer, got {_type_name(key)}")
            if -len(container) <= key < len(container):
                return container[key]
            return None
        raise EvaluationFailure(f"Cannot access '{key}' on {_type_name(container)}")


@dataclass(frozen=True)
class Call(Node):
    """``namespace.function(args...)``."""

    namespace: str
    function: str
    args: tuple[Node, ...]

    def evaluate(self, env: Mapping[str, Any]) -> Any:
        namespace = env.get(self.namespace)
        if not isinstance(namespace, FunctionNamespace):
            raise EvaluationFailure(f"'{self.namespace}' is not a function namespace")
        func = namespace.get(self.function)
        if func is None:
            raise EvaluationFailure(f"Unknown function: {self.namespace}.{self.function}")
        args = [arg.evaluate(env) for arg in self.args]
        try:
            return func(*args)
        except (TypeError, ValueError, AttributeError, IndexError) as e:
            raise EvaluationFailure(f"{self.namespace}.{self.function} failed: {e}") from e


@dataclass(frozen=True)
class Unary(Node):
    operator: str
    operand: Node

    def evaluate(self, env: Mapping[str, Any]) -> Any:
        value = self.operand.evaluate(env)
        if self.operator in ("!", "not"):
            return not truthy(value)
        if self.operator == "-":
            if not _is_number(value):
                raise EvaluationFailure(f"Cannot negate {_type_name(value)}")
            return -value
        raise EvaluationFailure(f"Unknown unary operator: {self.operator}")


@dataclass(frozen=True)
class Logical(Node):
    """Short-circuit ``&&`` / ``||`` returning booleans."""

    operator: str
    left: Node
    right: Node

    def evaluate(self, env: Mapping[str, Any]) -> Any:
        left = truthy(self.left.evaluate(env))
        if self.operator == "&&":
            return left and truthy(self.right.evaluate(env))
        return left or truthy(self.right.evaluate(env))


@dataclass(frozen=True)
class Coalesce(Node):
    """``left ?? right``."""

    left: Node
    right: Node

    def evaluate(self, env: Mapping[str, Any]) -> Any:
        left = self.left.evaluate(env)
        return left if left is not None else self.right.evaluate(env)


@dataclass(frozen=True)
class Conditional(Node):
    """``test ? if_true : if_false``."""

    test: Node
    if_true: Node
    if_false: Node

    def evaluate(self, env: Mapping[str, Any]) -> Any:
        if truthy(self.test.evaluate(env)):
            return self.if_true.evaluate(env)
        return self.if_false.evaluate(env)


def _equals(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return float(left) == float(right)
    return bool(left == right)


def _compare(operator: str, left: Any, right: Any) -> bool:
    comparable = (_is_number(left) and _is_number(right)) or (
        isinstance(left, str) and isinstance(right, str)
    )
    if not comparable:
        raise EvaluationFailure(
            f"Cannot compare {_type_name(left)} {operator} {_type_name(right)}"
        )
    if operator == "<":
        return bool(left < right)
    if operator == "<=":
        return bool(left <= right)
    if operator == ">":
        return bool(left > right)
    return bool(left >= right)


def _arithmetic(operator: str, left: Any, right: Any) -> Any:
    if operator == "+" and (isinstance(left, str) or isinstance(right, str)):
        return ("" if left is None else str(left)) + ("" if right is None else str(right))
    if not (_is_number(left) and _is_number(right)):
        raise EvaluationFailure(
            f"Unsupported operands for {operator}: {_type_name(left)} and {_type_name(right)}"
        )
    if operator == "+":
        return left + right
    if operator == "-":
        return left - right
    if operator == "*":
        return left * right
    if right == 0:
        raise EvaluationFailure("Division by zero")
    if operator == "/":
        result = left / right
        if isinstance(left, int) and isinstance(right, int) and result == int(result):
            return int(result)
        return result
    return left % right


@dataclass(frozen=True)
class Binary(Node):
    operator: str
    left: Node
    right: Node

    def evaluate(self, env: Mapping[str, Any]) -> Any:
        left = self.left.evaluate(env)
        right = self.right.evaluate(env)
        if self.operator == "==":
            return _equals(left, right)
        if self.operator == "!=":
            return not _equals(left, right)
        if self.operator in ("<", "<=", ">", ">="):
            return _compare(self.operator, left, right)
        return _arithmetic(self.operator, left, right)
