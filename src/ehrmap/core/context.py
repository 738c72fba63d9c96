"""Per-invocation transformation context."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from ehrmap.core.trace import TransformationTrace


@dataclass(frozen=True)
class TransformationContext:
    """Caller-supplied ambient values for one transformation call.

    The context is read-only once constructed. When tracing is enabled a
    fresh TransformationTrace is attached and filled in by the engine.

    Example:
        >>> context = TransformationContext(
        ...     organization_id="org-123",
        ...     settings={"identifierSystem": "urn:oid:2.16.840.1.113883.4.1"},
        ...     tracing_enabled=True,
        ... )
    """

    organization_id: str | None = None
    facility_id: str | None = None
    tenant_id: str | None = None
    settings: Mapping[str, str] = field(default_factory=dict)
    variables: Mapping[str, Any] = field(default_factory=dict)
    tracing_enabled: bool = False
    trace_id: str | None = None
    trace: TransformationTrace | None = field(default=None, init=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "settings", MappingProxyType(dict(self.settings)))
        object.__setattr__(self, "variables", MappingProxyType(dict(self.variables)))
        if self.tracing_enabled:
            trace_id = self.trace_id or str(uuid.uuid4())
            object.__setattr__(self, "trace_id", trace_id)
            object.__setattr__(self, "trace", TransformationTrace(trace_id=trace_id))

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        """Get a setting value."""
        return self.settings.get(key, default)

    def get_variable(self, key: str, default: Any = None) -> Any:
        """Get a custom variable."""
        return self.variables.get(key, default)

    def expression_namespace(self) -> dict[str, Any]:
        """Build the flat namespace exposed to expressions as ``ctx``.

        Identifiers first, then custom variables, then settings; later
        sources win on key collisions. The nested ``settings`` and
        ``variables`` maps are added unless a flat key already uses the name.
        """
        namespace: dict[str, Any] = {}
        if self.organization_id is not None:
            namespace["organizationId"] = self.organization_id
        if self.facility_id is not None:
            namespace["facilityId"] = self.facility_id
        if self.tenant_id is not None:
            namespace["tenantId"] = self.tenant_id
        namespace.update(self.variables)
        namespace.update(self.settings)
        namespace.setdefault("settings", dict(self.settings))
        namespace.setdefault("variables", dict(self.variables))
        return namespace

    def __repr__(self) -> str:
        return (
            f"TransformationContext(organization_id={self.organization_id!r}, "
            f"facility_id={self.facility_id!r}, tenant_id={self.tenant_id!r}, "
            f"settings={len(self.settings)}, variables={len(self.variables)}, "
            f"tracing_enabled={self.tracing_enabled})"
        )
