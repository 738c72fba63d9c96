"""Exception hierarchy for ehrmap."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ehrmap.security.scanner import SecurityIssue


class MappingError(Exception):
    """Base class for all mapping errors.

    Carries the mapping set id and field rule id once the engine knows them,
    so callers can log and route failures without parsing messages.
    """

    def __init__(
        self,
        message: str,
        *,
        mapping_id: str | None = None,
        field_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.mapping_id = mapping_id
        self.field_id = field_id

    def __str__(self) -> str:
        location = []
        if self.mapping_id:
            location.append(f"mapping={self.mapping_id}")
        if self.field_id:
            location.append(f"field={self.field_id}")
        if location:
            return f"{self.message} [{', '.join(location)}]"
        return self.message


class PathError(MappingError, ValueError):
    """Malformed path, or a write through an incompatible container."""

    def __init__(self, message: str, path: str, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.path = path


class LookupMiss(MappingError):
    """A code could not be resolved against a declared translation table."""

    def __init__(
        self,
        message: str,
        table_id: str,
        code: Any = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.table_id = table_id
        self.code = code


class LookupTableNotFound(LookupMiss):
    """The referenced translation table is not registered."""


class LookupNotSupported(LookupMiss):
    """Reverse lookup requested on a table that is not bidirectional."""


class ExpressionError(MappingError):
    """Expression failed to evaluate."""

    def __init__(self, message: str, expression: str, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.expression = expression

    def __str__(self) -> str:
        return f"{super().__str__()}: {self.expression!r}"


class ExpressionSyntaxError(ExpressionError):
    """Expression failed to compile."""

    def __init__(
        self,
        message: str,
        expression: str,
        position: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, expression, **kwargs)
        self.position = position


class RequiredFieldMissing(MappingError):
    """A required field has no value after extraction, default and transform."""


class ValidationError(MappingError):
    """A declared field validator rejected the value."""

    def __init__(self, message: str, rule: str, value: Any = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.rule = rule
        self.value = value


class DirectionMismatch(MappingError):
    """Mapping set direction disagrees with the requested direction."""


class SecurityVeto(MappingError):
    """A mapping set contains an expression with a critical security signature."""

    def __init__(self, message: str, issues: list[SecurityIssue], **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.issues = issues


class MappingDefinitionError(MappingError, ValueError):
    """A mapping or lookup definition file is structurally invalid."""

    def __init__(self, message: str, source: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.source = source

    def __str__(self) -> str:
        text = super().__str__()
        return f"{text} ({self.source})" if self.source else text
