#!/usr/bin/env python3
"""Command line interface for knx2ha using Typer."""

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from . import __version__  # type: ignore
from .errors import ArchiveError, SnapshotError
from .export import (
    UNKNOWN_KEY,
    catalog_to_yaml,
    domain_key,
    domain_list_to_yaml,
    entities_to_yaml,
    entities_to_yaml_for_domain,
    parse_domain,
    report_to_json,
    summarize_entities,
)
from .parser import KnxProjectParser, ParserOptions
from .router import EntityRouter, RouterOptions
from .snapshot import build_snapshot, dump_snapshot, load_snapshot
from .types import DOMAIN_FIELDS, Domain

app = typer.Typer(
    name="knx2ha",
    help="Convert KNX project archives into Home Assistant KNX configuration.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Shared options and helpers
# ============================================================================

ArchiveArgument = Annotated[
    Path,
    typer.Argument(help="KNX project archive (.knxproj or any zip)"),
]
OutputOption = Annotated[
    Optional[Path],
    typer.Option("--output", "-o", help="Write to this file instead of stdout"),
]
DomainOption = Annotated[
    Optional[str],
    typer.Option("--domain", "-d", help=f"Only this domain (e.g. light, sensor, {UNKNOWN_KEY})", envvar="KNX2HA_DOMAIN"),
]
DropReserveOption = Annotated[
    bool,
    typer.Option("--drop-reserve", help="Drop entities named 'Reserve'", envvar="KNX2HA_DROP_RESERVE"),
]
SweepOption = Annotated[
    bool,
    typer.Option(
        "--sweep/--no-sweep",
        help="Classify addresses left unbound by device data with name/DPT heuristics",
        envvar="KNX2HA_SWEEP_UNBOUND",
    ),
]
ExtensionOption = Annotated[
    str,
    typer.Option("--extension", help="Archive members to scan", envvar="KNX2HA_EXTENSION"),
]
PrescanOption = Annotated[
    int,
    typer.Option("--prescan-bytes", help="Bytes inspected per member before full parsing", envvar="KNX2HA_PRESCAN_BYTES"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbose flag."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s" if not verbose else "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def make_parser(extension: str, prescan_bytes: int) -> KnxProjectParser:
    if prescan_bytes < 1:
        typer.echo("Error: --prescan-bytes must be positive", err=True)
        raise typer.Exit(2)
    return KnxProjectParser(ParserOptions(extension=extension, prescan_bytes=prescan_bytes))


def resolve_domain(value: Optional[str]) -> Optional[Domain]:
    """Validate --domain; exit 2 on an unknown name."""
    if value is None:
        return None
    try:
        return parse_domain(value.strip().lower())
    except ValueError:
        valid = ", ".join(domain_key(d) for d in DOMAIN_FIELDS)
        typer.echo(f"Error: Unknown domain {value!r} (expected one of: {valid})", err=True)
        raise typer.Exit(2)


def emit(text: str, output: Optional[Path]) -> None:
    """Write text to the output file, or echo it."""
    if output is None:
        typer.echo(text, nl=not text.endswith("\n"))
        return
    output.write_text(text, encoding="utf-8")
    logger.info("Wrote %d characters to %s", len(text), output)


def fail_unexpected(e: Exception, verbose: bool) -> None:
    typer.echo(f"Error: Unexpected error: {e}", err=True)
    if verbose:
        import traceback
        traceback.print_exc()
    raise typer.Exit(4)


# ============================================================================
# Commands
# ============================================================================


@app.command()
def entities(
    archive: ArchiveArgument,
    output: OutputOption = None,
    domain: DomainOption = None,
    as_list: Annotated[bool, typer.Option("--list", help="With --domain: bare YAML list without the knx root")] = False,
    drop_reserve: DropReserveOption = False,
    sweep: SweepOption = True,
    extension: ExtensionOption = ".xml",
    prescan_bytes: PrescanOption = 8192,
    verbose: VerboseOption = False,
) -> None:
    """
    Generate Home Assistant KNX YAML from a project archive.

    Without --domain the full document with one key per domain is written.
    Use --domain to restrict it, and --list for a bare list of that domain.
    """
    setup_logging(verbose)
    picked = resolve_domain(domain)
    if as_list and picked is None:
        typer.echo("Error: --list requires --domain", err=True)
        raise typer.Exit(2)

    try:
        parser = make_parser(extension, prescan_bytes)
        catalog = parser.parse(archive)
        options = RouterOptions(drop_reserve=drop_reserve, sweep_unbound=sweep)
        result = EntityRouter(options, parser.normalizer).route(catalog)

        if picked is None:
            emit(entities_to_yaml(result), output)
        elif as_list:
            emit(domain_list_to_yaml(result, picked), output)
        else:
            emit(entities_to_yaml_for_domain(result, picked), output)
    except ArchiveError as e:
        typer.echo(f"Error: Archive error: {e}", err=True)
        raise typer.Exit(3)
    except typer.Exit:
        raise
    except Exception as e:
        fail_unexpected(e, verbose)


@app.command()
def catalog(
    archive: ArchiveArgument,
    output: OutputOption = None,
    extension: ExtensionOption = ".xml",
    prescan_bytes: PrescanOption = 8192,
    verbose: VerboseOption = False,
) -> None:
    """
    Write the full catalog as YAML.

    Includes topology, the group address tree and flat list, devices with
    their communication objects, indexes, statistics and the parse report.
    """
    setup_logging(verbose)

    try:
        parsed = make_parser(extension, prescan_bytes).parse(archive)
        emit(catalog_to_yaml(parsed), output)
    except ArchiveError as e:
        typer.echo(f"Error: Archive error: {e}", err=True)
        raise typer.Exit(3)
    except typer.Exit:
        raise
    except Exception as e:
        fail_unexpected(e, verbose)


@app.command()
def report(
    archive: ArchiveArgument,
    output: OutputOption = None,
    extension: ExtensionOption = ".xml",
    prescan_bytes: PrescanOption = 8192,
    verbose: VerboseOption = False,
) -> None:
    """Write the parse report and statistics as JSON."""
    setup_logging(verbose)

    try:
        parsed = make_parser(extension, prescan_bytes).parse(archive)
        emit(report_to_json(parsed) + "\n", output)
    except ArchiveError as e:
        typer.echo(f"Error: Archive error: {e}", err=True)
        raise typer.Exit(3)
    except typer.Exit:
        raise
    except Exception as e:
        fail_unexpected(e, verbose)


@app.command()
def summary(
    archive: ArchiveArgument,
    drop_reserve: DropReserveOption = False,
    sweep: SweepOption = True,
    extension: ExtensionOption = ".xml",
    prescan_bytes: PrescanOption = 8192,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """Show entity counts per domain and sensors per type."""
    setup_logging(verbose)

    try:
        parser = make_parser(extension, prescan_bytes)
        parsed = parser.parse(archive)
        options = RouterOptions(drop_reserve=drop_reserve, sweep_unbound=sweep)
        data = summarize_entities(EntityRouter(options, parser.normalizer).route(parsed))
        data["project_name"] = parsed.project_name
    except ArchiveError as e:
        typer.echo(f"Error: Archive error: {e}", err=True)
        raise typer.Exit(3)
    except typer.Exit:
        raise
    except Exception as e:
        fail_unexpected(e, verbose)
        return

    if json_output:
        typer.echo(json.dumps(data, indent=2, ensure_ascii=False))
        return
    typer.echo(f"Project: {data['project_name']}")
    for key, count in data["counts"].items():
        if key != "total" and count:
            typer.echo(f"  {key:<15} {count}")
    typer.echo(f"  {'total':<15} {data['counts']['total']}")
    if data["sensors_by_type"]:
        typer.echo("Sensors by type:")
        for sensor_type, count in sorted(data["sensors_by_type"].items()):
            unit = data["sensor_units"].get(sensor_type)
            typer.echo(f"  {sensor_type:<15} {count}" + (f" ({unit})" if unit else ""))


@app.command()
def snapshot(
    archive: ArchiveArgument,
    output: OutputOption = None,
    drop_reserve: DropReserveOption = False,
    sweep: SweepOption = True,
    extension: ExtensionOption = ".xml",
    prescan_bytes: PrescanOption = 8192,
    verbose: VerboseOption = False,
) -> None:
    """Save the parsed catalog and routing options as a snapshot JSON."""
    setup_logging(verbose)

    try:
        parsed = make_parser(extension, prescan_bytes).parse(archive)
        options = RouterOptions(drop_reserve=drop_reserve, sweep_unbound=sweep)
        emit(dump_snapshot(build_snapshot(parsed, options)) + "\n", output)
    except ArchiveError as e:
        typer.echo(f"Error: Archive error: {e}", err=True)
        raise typer.Exit(3)
    except typer.Exit:
        raise
    except Exception as e:
        fail_unexpected(e, verbose)


@app.command(name="from-snapshot")
def from_snapshot(
    path: Annotated[Path, typer.Argument(help="Snapshot JSON written by 'knx2ha snapshot'")],
    output: OutputOption = None,
    domain: DomainOption = None,
    verbose: VerboseOption = False,
) -> None:
    """
    Generate Home Assistant KNX YAML from a saved snapshot.

    Routing options stored in the snapshot are applied.
    """
    setup_logging(verbose)
    picked = resolve_domain(domain)

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        typer.echo(f"Error: Cannot read snapshot: {e}", err=True)
        raise typer.Exit(3)

    try:
        parsed, options, _overrides = load_snapshot(text)
        result = EntityRouter(options).route(parsed)
        if picked is None:
            emit(entities_to_yaml(result), output)
        else:
            emit(entities_to_yaml_for_domain(result, picked), output)
    except SnapshotError as e:
        where = f" ({e.field})" if e.field else ""
        typer.echo(f"Error: Invalid snapshot{where}: {e}", err=True)
        raise typer.Exit(2)
    except typer.Exit:
        raise
    except Exception as e:
        fail_unexpected(e, verbose)


@app.command()
def info(
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """Show package version and supported entity domains."""
    setup_logging(verbose)

    info_data = {
        "version": __version__,
        "domains": [domain_key(d) for d in DOMAIN_FIELDS],
    }

    if json_output:
        typer.echo(json.dumps(info_data, indent=2))
    else:
        typer.echo(f"knx2ha version: {info_data['version']}")
        typer.echo(f"Domains: {', '.join(info_data['domains'])}")


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"knx2ha {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """knx2ha - Convert KNX project archives into Home Assistant KNX configuration."""
    pass


if __name__ == "__main__":
    app()
