"""Per-call and per-field transformation tracing."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _duration_ms(start: datetime | None, end: datetime | None) -> float:
    if start is None or end is None:
        return 0.0
    return (end - start).total_seconds() * 1000


@dataclass
class FieldTrace:
    """What happened to a single field rule during one transformation."""

    field_id: str
    source_path: str | None = None
    target_path: str | None = None
    source_value: Any = None
    result_value: Any = None
    expression: str | None = None
    condition: str | None = None
    condition_passed: bool = True
    error_message: str | None = None
    start_time: datetime = field(default_factory=_now)
    end_time: datetime | None = None

    @property
    def success(self) -> bool:
        """Return True if the field finished without an error."""
        return self.error_message is None

    @property
    def duration_ms(self) -> float:
        """Return field processing time in milliseconds."""
        return _duration_ms(self.start_time, self.end_time)

    def finish(self, error: BaseException | None = None) -> None:
        """Stamp the end time, recording an error if one occurred."""
        if error is not None:
            self.error_message = str(error)
        self.end_time = _now()

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation."""
        return {
            "fieldId": self.field_id,
            "sourcePath": self.source_path,
            "targetPath": self.target_path,
            "sourceValue": self.source_value,
            "resultValue": self.result_value,
            "expression": self.expression,
            "condition": self.condition,
            "conditionPassed": self.condition_passed,
            "errorMessage": self.error_message,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "durationMs": self.duration_ms,
        }


@dataclass
class TransformationTrace:
    """Audit record of one transformation call.

    Created by the context when tracing is enabled, filled in by the engine,
    and read by the caller after the call returns or raises.

    Example:
        >>> context = TransformationContext(tracing_enabled=True, trace_id="t-1")
        >>> engine.transform(source, mapping, context)
        >>> print(context.trace.format_report())
    """

    trace_id: str
    mapping_id: str | None = None
    source_type: str | None = None
    target_type: str | None = None
    success: bool = False
    error_message: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    field_traces: list[FieldTrace] = field(default_factory=list)

    def begin(
        self,
        mapping_id: str,
        source_type: str | None = None,
        target_type: str | None = None,
    ) -> None:
        """Reset the trace for a new transformation call."""
        self.mapping_id = mapping_id
        self.source_type = source_type
        self.target_type = target_type
        self.success = False
        self.error_message = None
        self.start_time = _now()
        self.end_time = None
        self.field_traces = []

    def complete(self) -> None:
        """Mark the transformation as successful."""
        self.success = True
        self.error_message = None
        self.end_time = _now()

    def fail(self, error: BaseException) -> None:
        """Mark the transformation as failed."""
        self.success = False
        self.error_message = str(error)
        self.end_time = _now()

    def add_field_trace(self, field_trace: FieldTrace) -> None:
        """Append a field trace."""
        self.field_traces.append(field_trace)

    def failed_fields(self) -> list[FieldTrace]:
        """Return field traces that recorded an error."""
        return [t for t in self.field_traces if not t.success]

    @property
    def duration_ms(self) -> float:
        """Return total transformation time in milliseconds."""
        return _duration_ms(self.start_time, self.end_time)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation for audit logging."""
        return {
            "traceId": self.trace_id,
            "mappingId": self.mapping_id,
            "source": self.source_type,
            "target": self.target_type,
            "success": self.success,
            "errorMessage": self.error_message,
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "durationMs": self.duration_ms,
            "fieldTraces": [t.to_dict() for t in self.field_traces],
        }

    def format_report(self) -> str:
        """Return a human-readable summary with failure details."""
        failed = self.failed_fields()
        lines = [
            "=== Transformation Trace Report ===",
            f"Trace ID: {self.trace_id}",
            f"Mapping ID: {self.mapping_id}",
            f"Success: {self.success}",
        ]
        if not self.success and self.error_message:
            lines.append(f"Error: {self.error_message}")
        lines.extend(
            [
                f"Duration: {self.duration_ms:.2f}ms",
                f"Total fields: {len(self.field_traces)}",
                f"Successful: {len(self.field_traces) - len(failed)}",
                f"Failed: {len(failed)}",
            ]
        )
        if failed:
            lines.append("")
            lines.append("Failures:")
            for t in failed:
                lines.append(f"  [{t.field_id}] {t.source_path}")
                lines.append(f"    Error: {t.error_message}")
                if t.expression:
                    lines.append(f"    Expression: {t.expression}")
                lines.append(f"    Source value: {t.source_value!r}")
        return "\n".join(lines)
