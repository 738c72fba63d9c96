"""Command-line interface for ehrmap."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click

from ehrmap.conversion.engine import TransformationEngine
from ehrmap.conversion.lookup import CodeLookupService
from ehrmap.core.context import TransformationContext
from ehrmap.core.exceptions import LookupMiss, MappingError
from ehrmap.core.types import MappingDirection
from ehrmap.schemas.loader import MappingLoader
from ehrmap.schemas.registry import MappingRegistry


def get_default_mapping_dir() -> Path:
    """Get default mapping definitions directory."""
    return Path.cwd() / "mappings"


def _parse_pairs(
    ctx: click.Context, param: click.Parameter, values: tuple[str, ...]
) -> dict[str, str]:
    """Parse repeated KEY=VALUE options into a dict."""
    pairs: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected KEY=VALUE, got '{item}'", ctx=ctx, param=param)
        pairs[key] = value
    return pairs


def _load_registry(
    ctx: click.Context, enforce_security: bool = True, strict: bool | None = None
) -> MappingRegistry:
    loader = MappingLoader(
        ctx.obj["mapping_dir"],
        strict=ctx.obj["strict"] if strict is None else strict,
        enforce_security=enforce_security,
    )
    try:
        registry = loader.load_all()
    except MappingError as e:
        raise click.ClickException(str(e)) from e
    ctx.obj["loader"] = loader
    return registry


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--mapping-dir",
    "-d",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    envvar="EHRMAP_MAPPING_DIR",
    help="Directory with 'mappings/' and 'lookups/' subdirectories",
)
@click.option("--lenient", is_flag=True, help="Skip invalid mapping files instead of failing")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, mapping_dir: Path | None, lenient: bool, verbose: bool) -> None:
    """ehrmap - declarative healthcare document mapping."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["mapping_dir"] = mapping_dir or get_default_mapping_dir()
    ctx.obj["strict"] = not lenient


@cli.command()
@click.argument("input_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--mapping", "-m", "mapping_id", required=True, help="Mapping set id")
@click.option("--reverse", is_flag=True, help="Run a reverse (standard to source) mapping")
@click.option("--org", "organization_id", default=None, help="Organization id")
@click.option("--facility", "facility_id", default=None, help="Facility id")
@click.option("--tenant", "tenant_id", default=None, help="Tenant id")
@click.option(
    "--setting", "settings", multiple=True, callback=_parse_pairs, help="Setting KEY=VALUE"
)
@click.option(
    "--var", "variables", multiple=True, callback=_parse_pairs, help="Variable KEY=VALUE"
)
@click.option("--trace", is_flag=True, help="Print a field trace report to stderr")
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=None,
    help="Output file (default: stdout)",
)
@click.option("--pretty/--compact", default=True, help="Pretty print JSON output")
@click.pass_context
def transform(
    ctx: click.Context,
    input_file: Path,
    mapping_id: str,
    reverse: bool,
    organization_id: str | None,
    facility_id: str | None,
    tenant_id: str | None,
    settings: dict[str, str],
    variables: dict[str, str],
    trace: bool,
    output: Path | None,
    pretty: bool,
) -> None:
    """Transform a JSON document with a mapping set.

    Examples:

        ehrmap -d definitions transform -m patient-json-to-fhir-v1 patient.json

        ehrmap transform -m patient-fhir-to-json-v1 --reverse patient-fhir.json
    """
    registry = _load_registry(ctx)
    mapping = registry.find_by_id(mapping_id)
    if mapping is None:
        raise click.ClickException(
            f"Mapping not found: {mapping_id}. Use 'ehrmap list-mappings' to see available ids."
        )

    try:
        source: Any = json.loads(input_file.read_text())
    except json.JSONDecodeError as e:
        raise click.ClickException(f"Invalid JSON in {input_file}: {e}") from e

    context = TransformationContext(
        organization_id=organization_id,
        facility_id=facility_id,
        tenant_id=tenant_id,
        settings=settings,
        variables=variables,
        tracing_enabled=trace,
    )
    direction = MappingDirection.REVERSE if reverse else MappingDirection.FORWARD
    engine = TransformationEngine(registry)

    try:
        result = engine.transform(source, mapping, context, direction)
    except MappingError as e:
        raise click.ClickException(str(e)) from e
    finally:
        if context.trace is not None:
            click.echo(context.trace.format_report(), err=True)

    output_json = json.dumps(result, indent=2 if pretty else None, default=str)
    if output:
        output.write_text(output_json)
        click.echo(f"Output written to {output}")
    else:
        click.echo(output_json)


@cli.command()
@click.pass_context
def scan(ctx: click.Context) -> None:
    """Scan mapping expressions for forbidden signatures.

    Exits with status 1 if any CRITICAL issue is found.
    """
    _load_registry(ctx, enforce_security=False, strict=False)
    report = ctx.obj["loader"].last_security_report

    click.echo(report.format_report())
    if report.has_critical:
        sys.exit(1)


@cli.command("list-mappings")
@click.pass_context
def list_mappings(ctx: click.Context) -> None:
    """List loaded mapping sets and lookup tables."""
    registry = _load_registry(ctx)

    click.echo("Mapping sets:")
    for mapping in registry.mapping_sets():
        target = mapping.target_type or "-"
        click.echo(
            f"  - {mapping.id} [{mapping.direction.value}] "
            f"{mapping.source_type} -> {target} ({len(mapping.field_rules)} fields)"
        )

    tables = registry.lookup_tables()
    if tables:
        click.echo()
        click.echo("Lookup tables:")
        for table in sorted(tables, key=lambda t: t.id):
            mode = "bidirectional" if table.bidirectional else "forward only"
            click.echo(f"  - {table.id} ({len(table)} codes, {mode})")

    click.echo()
    click.echo(str(registry.stats()))


@cli.command()
@click.argument("table_id")
@click.argument("code")
@click.option("--reverse", is_flag=True, help="Translate a target code back to its source code")
@click.pass_context
def lookup(ctx: click.Context, table_id: str, code: str, reverse: bool) -> None:
    """Translate a code through a lookup table.

    Example:

        ehrmap lookup gender-lookup M
    """
    registry = _load_registry(ctx)
    service = CodeLookupService(registry.get_lookup_table)
    direction = MappingDirection.REVERSE if reverse else MappingDirection.FORWARD

    try:
        result = service.translate(table_id, code, direction)
    except LookupMiss as e:
        raise click.ClickException(str(e)) from e

    click.echo(json.dumps(result.to_coding(), indent=2))


def main() -> None:
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
