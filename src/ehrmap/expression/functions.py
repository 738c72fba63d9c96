"""Utility functions exposed to expressions under the ``fn`` namespace.

Every function is pure apart from ``now``, ``today`` and ``uuid``, and none of
them touch the filesystem, network or interpreter internals. Most accept
``None`` and return ``None`` rather than raising, so ``fn.trim(value)`` is safe
on optional fields.
"""

from __future__ import annotations

import re
import uuid as _uuid
from collections.abc import Callable
from datetime import date, datetime, timezone
from typing import Any

from ehrmap.expression.nodes import FunctionNamespace

# Java-style date pattern tokens, longest first
_DATE_TOKENS = (
    ("yyyy", "%Y"),
    ("yy", "%y"),
    ("MMMM", "%B"),
    ("MMM", "%b"),
    ("MM", "%m"),
    ("dd", "%d"),
    ("HH", "%H"),
    ("hh", "%I"),
    ("mm", "%M"),
    ("ss", "%S"),
    ("SSS", "%f"),
    ("a", "%p"),
)

_PARSE_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%Y%m%d",
)


def to_strftime(pattern: str) -> str:
    """Translate a ``yyyy-MM-dd`` style pattern into strftime directives.

    Patterns that already contain ``%`` are returned unchanged.
    """
    if "%" in pattern:
        return pattern
    result = []
    i = 0
    while i < len(pattern):
        for token, directive in _DATE_TOKENS:
            if pattern.startswith(token, i):
                result.append(directive)
                i += len(token)
                break
        else:
            result.append(pattern[i])
            i += 1
    return "".join(result)


def _parse_temporal(value: Any) -> date | datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime | date):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    for fmt in _PARSE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    raise ValueError(f"Unrecognized date: {value!r}")


# String functions


def uppercase(value: Any) -> str | None:
    return None if value is None else str(value).upper()


def lowercase(value: Any) -> str | None:
    return None if value is None else str(value).lower()


def trim(value: Any) -> str | None:
    return None if value is None else str(value).strip()


def substring(value: Any, start: int, end: int | None = None) -> str | None:
    """Slice a string, clamping indexes to its length."""
    if value is None:
        return None
    text = str(value)
    start = max(0, min(int(start), len(text)))
    if end is None:
        return text[start:]
    end = max(start, min(int(end), len(text)))
    return text[start:end]


def replace(value: Any, target: str, replacement: str) -> str | None:
    if value is None:
        return None
    return str(value).replace(str(target), str(replacement))


def remove_hyphens(value: Any) -> str | None:
    return None if value is None else str(value).replace("-", "")


def digits_only(value: Any) -> str | None:
    return None if value is None else re.sub(r"\D", "", str(value))


def format_ssn(value: Any) -> str | None:
    """Format nine digits as ``123-45-6789``; anything else is returned as-is."""
    if value is None:
        return None
    digits = re.sub(r"\D", "", str(value))
    if len(digits) != 9:
        return str(value)
    return f"{digits[:3]}-{digits[3:5]}-{digits[5:]}"


def normalize_phone(value: Any) -> str | None:
    """Normalize a North American phone number to ``(555) 123-4567``."""
    if value is None:
        return None
    digits = re.sub(r"\D", "", str(value))
    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    if len(digits) == 11 and digits[0] == "1":
        return f"+1 ({digits[1:4]}) {digits[4:7]}-{digits[7:]}"
    return str(value)


def concat(*values: Any) -> str:
    """Join values as strings, skipping nulls."""
    return "".join(str(v) for v in values if v is not None)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, list | dict):
        return len(value) == 0
    return False


def is_not_empty(value: Any) -> bool:
    return not is_empty(value)


def contains(value: Any, part: Any) -> bool:
    if value is None or part is None:
        return False
    if isinstance(value, list):
        return part in value
    return str(part) in str(value)


def starts_with(value: Any, prefix: Any) -> bool:
    if value is None or prefix is None:
        return False
    return str(value).startswith(str(prefix))


def ends_with(value: Any, suffix: Any) -> bool:
    if value is None or suffix is None:
        return False
    return str(value).endswith(str(suffix))


def length(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, list | dict):
        return len(value)
    return len(str(value))


# Date functions


def format_date(value: Any, pattern: str = "yyyy-MM-dd") -> str | None:
    """Parse a date-like value and render it with a Java-style or strftime pattern."""
    parsed = _parse_temporal(value)
    if parsed is None:
        return None
    return parsed.strftime(to_strftime(pattern))


def format_date_time(value: Any, pattern: str = "yyyy-MM-dd'T'HH:mm:ss") -> str | None:
    parsed = _parse_temporal(value)
    if parsed is None:
        return None
    return parsed.strftime(to_strftime(pattern.replace("'T'", "T")))


def now() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def today() -> str:
    return date.today().isoformat()


def to_fhir_date(value: Any) -> str | None:
    """Render a date-like value as a FHIR ``date`` (YYYY-MM-DD)."""
    parsed = _parse_temporal(value)
    if parsed is None:
        return None
    if isinstance(parsed, datetime):
        parsed = parsed.date()
    return parsed.isoformat()


def to_fhir_date_time(value: Any) -> str | None:
    """Render a date-like value as a FHIR ``dateTime`` (ISO 8601)."""
    parsed = _parse_temporal(value)
    if parsed is None:
        return None
    return parsed.isoformat()


# Conversion functions


def to_double(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, float):
        return int(value)
    return int(str(value).strip())


def to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, int | float):
        return value != 0
    return str(value).strip().lower() in ("true", "yes", "y", "1")


def to_string(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def default_if_null(value: Any, default: Any) -> Any:
    return default if value is None else value


def coalesce(*values: Any) -> Any:
    """Return the first non-null argument."""
    for v in values:
        if v is not None:
            return v
    return None


def new_uuid() -> str:
    return str(_uuid.uuid4())


FUNCTIONS: dict[str, Callable[..., Any]] = {
    "uppercase": uppercase,
    "lowercase": lowercase,
    "trim": trim,
    "substring": substring,
    "replace": replace,
    "removeHyphens": remove_hyphens,
    "formatSSN": format_ssn,
    "digitsOnly": digits_only,
    "normalizePhone": normalize_phone,
    "concat": concat,
    "isEmpty": is_empty,
    "isNotEmpty": is_not_empty,
    "contains": contains,
    "startsWith": starts_with,
    "endsWith": ends_with,
    "length": length,
    "formatDate": format_date,
    "formatDateTime": format_date_time,
    "now": now,
    "today": today,
    "toFhirDate": to_fhir_date,
    "toFhirDateTime": to_fhir_date_time,
    "toDouble": to_double,
    "toInt": to_int,
    "toBoolean": to_boolean,
    "toString": to_string,
    "defaultIfNull": default_if_null,
    "coalesce": coalesce,
    "uuid": new_uuid,
}

FN = FunctionNamespace("fn", FUNCTIONS)
