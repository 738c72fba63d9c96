"""Named field validators such as ``notEmpty()`` and ``regex('^\\d+$')``."""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from ehrmap.core.exceptions import ValidationError

_CALL = re.compile(r"^\s*(?P<name>[A-Za-z_]\w*)\s*\((?P<args>.*)\)\s*$", re.DOTALL)


@dataclass(frozen=True)
class ValidatorRule:
    """A parsed validator call: rule name plus literal arguments."""

    name: str
    args: tuple[Any, ...] = ()
    text: str = ""


def _strip_quotes(arg: str) -> str:
    if len(arg) >= 2 and arg[0] == arg[-1] and arg[0] in ("'", '"'):
        return arg[1:-1]
    return arg


def _numbers(rule: ValidatorRule, count: int) -> tuple[float, ...]:
    if len(rule.args) != count:
        raise ValueError(f"{rule.name}() expects {count} argument(s), got {len(rule.args)}")
    try:
        return tuple(float(a) for a in rule.args)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{rule.name}() expects numeric arguments") from e


def _check_not_empty(value: Any, rule: ValidatorRule) -> str | None:
    if value is None or str(value) == "":
        return "cannot be empty"
    return None


def _check_regex(value: Any, rule: ValidatorRule) -> str | None:
    pattern = rule.args[0]
    if value is not None and re.fullmatch(pattern, str(value)) is None:
        return f"does not match pattern: {pattern}"
    return None


def _check_min_length(value: Any, rule: ValidatorRule) -> str | None:
    (minimum,) = _numbers(rule, 1)
    if value is not None and len(str(value)) < minimum:
        return f"must be at least {int(minimum)} characters"
    return None


def _check_max_length(value: Any, rule: ValidatorRule) -> str | None:
    (maximum,) = _numbers(rule, 1)
    if value is not None and len(str(value)) > maximum:
        return f"must be at most {int(maximum)} characters"
    return None


def _check_range(value: Any, rule: ValidatorRule) -> str | None:
    low, high = _numbers(rule, 2)
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return f"is not a number: {value!r}"
    if not low <= number <= high:
        return f"must be between {rule.args[0]} and {rule.args[1]}"
    return None


VALIDATORS: dict[str, Callable[[Any, ValidatorRule], str | None]] = {
    "notEmpty": _check_not_empty,
    "regex": _check_regex,
    "minLength": _check_min_length,
    "maxLength": _check_max_length,
    "range": _check_range,
}


@lru_cache(maxsize=256)
def parse_validator(text: str) -> ValidatorRule:
    """Parse validator text into a rule.

    Args:
        text: Validator call such as ``notEmpty()`` or ``regex('^[0-9]{9}$')``.

    Raises:
        ValueError: If the text is not a call to a known validator, or its
            arguments are malformed.
    """
    match = _CALL.match(text or "")
    if match is None:
        raise ValueError(f"Invalid validator syntax: {text!r}")

    name = match.group("name")
    if name not in VALIDATORS:
        raise ValueError(f"Unknown validator function: {name}")

    raw_args = match.group("args").strip()
    if name == "regex":
        # A pattern may itself contain commas, so it is taken whole
        pattern = _strip_quotes(raw_args)
        if not pattern:
            raise ValueError("regex() requires a pattern")
        try:
            re.compile(pattern)
        except re.error as e:
            raise ValueError(f"Invalid regex pattern in validator: {e}") from e
        return ValidatorRule(name, (pattern,), text)

    args = tuple(_strip_quotes(a.strip()) for a in raw_args.split(",")) if raw_args else ()
    rule = ValidatorRule(name, args, text)
    if name == "notEmpty" and args:
        raise ValueError("notEmpty() takes no arguments")
    if name in ("minLength", "maxLength"):
        _numbers(rule, 1)
    if name == "range":
        _numbers(rule, 2)
    return rule


class FieldValidator:
    """Runs a field's declared validator against its final value."""

    def validate(self, value: Any, validator: str, field_id: str | None = None) -> None:
        """Validate a value.

        Raises:
            ValidationError: If the value is rejected or the validator is unknown.
        """
        try:
            rule = parse_validator(validator)
        except ValueError as e:
            raise ValidationError(str(e), rule=validator, value=value, field_id=field_id) from e

        problem = VALIDATORS[rule.name](value, rule)
        if problem is not None:
            raise ValidationError(
                f"Field {field_id} {problem}" if field_id else f"Value {problem}",
                rule=validator,
                value=value,
                field_id=field_id,
            )

    @staticmethod
    def is_valid_rule(validator: str) -> bool:
        """Return True if the validator text parses."""
        try:
            parse_validator(validator)
        except ValueError:
            return False
        return True
