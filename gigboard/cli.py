"""Maintenance commands registered on ``flask`` by :func:`gigboard.create_app`."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Iterable, Optional

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import StorageError
from .migration import import_flat_file, migrate_store
from .repositories import Repositories
from .validator import ConsistencyValidator


def _repos() -> Repositories:
    return current_app.extensions["gigboard"]


def _selected(entity_types: Iterable[str]):
    repos = _repos()
    names = list(entity_types) or list(repos.stores())
    try:
        return [repos.store(name) for name in names]
    except StorageError as exc:
        raise click.BadParameter(str(exc), param_hint="ENTITY_TYPE") from exc


@click.command("migrate-storage")
@click.argument("entity_types", nargs=-1)
@click.option(
    "--flat-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Also import a JSON array of documents into the single ENTITY_TYPE given.",
)
@with_appcontext
def migrate_storage_command(entity_types, flat_file: Optional[Path]):
    """Move legacy ENTITY_TYPE directories into date-sharded storage (all types by default)."""
    stores = _selected(entity_types)
    if flat_file is not None and len(stores) != 1:
        raise click.UsageError("--flat-file needs exactly one ENTITY_TYPE")

    failed = False
    for store in stores:
        if flat_file is not None:
            imported = import_flat_file(store, flat_file)
            click.echo(f"{store.entity_type}: imported {imported.migrated}, skipped {imported.skipped}")
            for message in imported.warnings + imported.errors:
                click.echo(f"  {message}", err=True)
            failed = failed or not imported.ok

        report = migrate_store(store)
        click.echo(
            f"{store.entity_type}: {report.indexed} indexed, {report.migrated} migrated, "
            f"{report.skipped} skipped, {report.sub_resources_migrated} sub-resources, "
            f"{report.markers_written} markers"
        )
        for message in report.warnings:
            click.echo(f"  warning: {message}", err=True)
        for message in report.errors:
            click.echo(f"  error: {message}", err=True)
        failed = failed or not report.ok

    if failed:
        sys.exit(1)


@click.command("validate-data")
@click.option("--json", "as_json", is_flag=True, help="Print the full report as JSON.")
@with_appcontext
def validate_data_command(as_json: bool):
    """Report cross-entity inconsistencies; exits non-zero when any are found."""
    report = ConsistencyValidator(_repos()).run()
    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        for item in report.inconsistencies:
            click.echo(f"[{item.severity.value}] {item.type}: {item.description}")
            click.echo(f"    fix: {item.suggested_fix}")
        click.echo(f"{len(report.inconsistencies)} inconsistencies found")
    if not report.is_valid:
        sys.exit(1)


@click.command("reindex")
@click.argument("entity_types", nargs=-1)
@with_appcontext
def reindex_command(entity_types):
    """Rebuild the id index of each ENTITY_TYPE from a full scan."""
    for store in _selected(entity_types):
        counts = store.reindex()
        click.echo(
            f"{store.entity_type}: {counts['updated']} updated, {counts['removed']} removed, {counts['total']} total"
        )


def register_commands(app) -> None:
    app.cli.add_command(migrate_storage_command)
    app.cli.add_command(validate_data_command)
    app.cli.add_command(reindex_command)


__all__ = ["register_commands"]
