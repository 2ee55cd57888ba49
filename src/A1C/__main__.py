"""
Command‑line interface for the A1C toolkit.
Cleans HbA1c observations into one value per patient per day (mmol/mol),
and audits how the free-text unit strings of an extract are classified.
"""

import click
import json
import logging
import pandas as pd
import pathlib
import sys
import typing

from collections import namedtuple

from .config import RunConfig
from .faults import DataQualityError
from .loader import (
    attach_unit_descriptions,
    load_code_list,
    load_patient_list,
    load_table,
    load_unit_lookup,
    restrict_to_patients,
    select_analyte,
    write_output,
)
from .observation import UNIT_DESCRIPTION
from .pipeline import AuditEntry, HbA1cPipeline
from .units import describe_unit

UnitAuditRow = namedtuple("UnitAuditRow", ["source", "unit", "rows", "category"])


@click.group()
def main():
    """A1C: HbA1c record selection and same-day reconciliation."""
    pass


def _configure_logging(verbose_logging: bool, log_file_path: typing.Optional[str], level: str) -> None:
    handlers: list[logging.Handler] = []
    if log_file_path:
        handlers.append(logging.FileHandler(log_file_path, mode="a", encoding="utf-8"))
    if verbose_logging:
        handlers.append(logging.StreamHandler(sys.stderr))
    if handlers:
        logging.basicConfig(
            level=logging.DEBUG if verbose_logging else getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            handlers=handlers,
            force=True,
        )


def _load_partition(
    path: str,
    codes: typing.Optional[set[str]],
    patients: typing.Optional[set[str]],
    unit_lookup: typing.Optional[dict[str, str]],
) -> pd.DataFrame:
    # read one observation file and apply the upstream filters
    df = load_table(path)
    if codes is not None:
        df = select_analyte(df, codes)
    if patients is not None:
        df = restrict_to_patients(df, patients)
    if unit_lookup is not None:
        df = attach_unit_descriptions(df, unit_lookup)
    logging.debug(f"Partition {path!r}: {len(df)} rows after upstream filters")
    return df


def _report_audit(entries: typing.Iterable[AuditEntry]) -> None:
    indent = "              "
    for entry in entries:
        line = f"{entry.step:20} {entry.source:25} {entry.message}"
        if entry.level == "error":
            colored = click.style(line, fg="red")
        elif entry.level in ("warn", "warning"):
            colored = click.style(line, fg="yellow")
        else:
            colored = click.style(line, fg="cyan")
        click.echo(indent + colored)


@main.command(name="clean")
@click.argument(
    "observation_paths",
    nargs=-1,
    type=click.Path(exists=True, dir_okay=False),
)
@click.option(
    "-u",
    "--unit-lookup",
    "unit_lookup_path",
    type=click.Path(exists=True, dir_okay=False),
    help="table mapping unit ids to unit descriptions",
)
@click.option(
    "-c",
    "--code-list",
    "code_list_path",
    type=click.Path(exists=True, dir_okay=False),
    help="table of codes identifying HbA1c observations",
)
@click.option(
    "-p",
    "--patients",
    "patients_path",
    type=click.Path(exists=True, dir_okay=False),
    help="table of patient ids to keep",
)
@click.option(
    "-o",
    "--output",
    "output_path",
    required=True,
    type=click.Path(dir_okay=False, writable=True),
    help="where to write the cleaned series (.csv, .tsv or .xlsx)",
)
@click.option("--date-format", default=None, help="format of the observation dates, e.g. %d/%m/%Y")
@click.option("--dayfirst/--no-dayfirst", default=None, help="parse ambiguous dates day-first")
@click.option("--verbose", is_flag=True, help="Show the per-step audit trail")
@click.option("--verbose-logging", is_flag=True, help="Also emit debug logs to stderr")
@click.option(
    "--log-file-path",
    type=click.Path(dir_okay=False, writable=True),
    help="Append timestamped logs to this file",
)
def clean(
    observation_paths: tuple[str, ...],
    unit_lookup_path: typing.Optional[str],
    code_list_path: typing.Optional[str],
    patients_path: typing.Optional[str],
    output_path: str,
    date_format: typing.Optional[str],
    dayfirst: typing.Optional[bool],
    verbose: bool,
    verbose_logging: bool,
    log_file_path: typing.Optional[str],
):
    """
    Clean one or more observation files (partitions of one extract):
      - keep HbA1c codes, included patients, resolve unit descriptions
      - classify, range-validate and convert every value to mmol/mol
      - reconcile to one value per patient per day
    """
    if not observation_paths:
        click.echo("Error: no observation files specified.", err=True)
        sys.exit(1)

    config = RunConfig.from_env().with_overrides(date_format=date_format, dayfirst=dayfirst)
    _configure_logging(verbose_logging, log_file_path, config.log_level)

    try:
        codes = load_code_list(code_list_path) if code_list_path else None
        patients = load_patient_list(patients_path) if patients_path else None
        unit_lookup = load_unit_lookup(unit_lookup_path) if unit_lookup_path else None

        partitions = (
            (pathlib.Path(path).name, _load_partition(path, codes, patients, unit_lookup))
            for path in observation_paths
        )
        pipeline = HbA1cPipeline(config)
        output = pipeline.run_partitions(partitions)
    except DataQualityError as fault:
        click.echo(f"Data-quality fault during {fault.step} ({fault.scale} scale): {fault}", err=True)
        click.echo("The input needs manual investigation; nothing was written.", err=True)
        sys.exit(1)
    except ValueError as err:
        click.echo(f"Error: {err}", err=True)
        sys.exit(1)

    if verbose:
        click.echo("")
        _report_audit(pipeline.audit)
        for aggregate in pipeline.rejected_days:
            click.echo(
                f"Rejected {aggregate.patient_ID} on {aggregate.observation_date}: "
                f"values {list(aggregate.values)} spread {aggregate.spread:g} mmol/mol"
            )
        click.echo("")

    written = write_output(output, output_path)
    click.echo(f"Read {pipeline.stats['input']} HbA1c observations from {len(observation_paths)} file(s)")
    click.echo(f"Rejected {pipeline.stats['rejected_days']} patient-days for inconsistent values")
    click.echo(f"Wrote {len(output)} HbA1c measurements to {written}")


def audit_units(tables: dict[str, pd.DataFrame]) -> list[UnitAuditRow]:
    """
    Count every distinct unit description per table and report how the
    unit classifier treats it.
    """
    rows: list[UnitAuditRow] = []
    for name, df in tables.items():
        if UNIT_DESCRIPTION not in df.columns:
            raise ValueError(f"{name!r}: missing required column: {UNIT_DESCRIPTION!r}")
        counts = df[UNIT_DESCRIPTION].fillna("").astype(str).value_counts(sort=True)
        for unit, count in counts.items():
            rows.append(UnitAuditRow(source=name, unit=unit, rows=int(count), category=describe_unit(unit)))
    return rows


@main.command(name="audit-units")
@click.argument(
    "observation_paths",
    nargs=-1,
    type=click.Path(exists=True, dir_okay=False),
)
@click.option(
    "-u",
    "--unit-lookup",
    "unit_lookup_path",
    type=click.Path(exists=True, dir_okay=False),
    help="table mapping unit ids to unit descriptions",
)
@click.option("-r", "--raw", is_flag=True, help="print JSON instead of a table")
def audit_units_command(observation_paths: tuple[str, ...], unit_lookup_path: typing.Optional[str], raw: bool):
    """
    Show how the unit strings of each observation file are classified.
    """
    if not observation_paths:
        click.echo("Error: no observation files specified.", err=True)
        sys.exit(1)

    try:
        unit_lookup = load_unit_lookup(unit_lookup_path) if unit_lookup_path else None
        tables = {}
        for path in observation_paths:
            df = load_table(path)
            if unit_lookup is not None:
                df = attach_unit_descriptions(df, unit_lookup)
            tables[pathlib.Path(path).name] = df
        rows = audit_units(tables)
    except ValueError as err:
        click.echo(f"Error: {err}", err=True)
        sys.exit(1)

    if raw:
        click.echo(json.dumps([row._asdict() for row in rows], indent=2))
        return

    click.echo(f"{'SOURCE':25}  {'UNIT':30}  {'ROWS':>8}  CATEGORY")
    for row in rows:
        unit = row.unit or "<missing>"
        click.echo(f"{row.source:25}  {unit:30}  {row.rows:>8}  {row.category}")


if __name__ == "__main__":
    main()
