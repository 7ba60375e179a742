"""
CLI commands for legacy attendance imports and identity mapping.

    flask legacy preview FILE [--json]
    flask legacy commit FILE [--resolve KEY=CHOICE ... --preview-token T] [--user-id N]
    flask legacy groups [--search S] [--mapped|--unmapped]
    flask legacy map IDENTITY USER_ID
    flask legacy unmap IDENTITY
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from flask import current_app
from flask.cli import AppGroup

from flask_app.utils.importer import is_legacy_import_enabled

from .pipeline import (
    CommitResult,
    ConflictResolution,
    IdentityResolver,
    IncompleteResolutionError,
    LegacyImportError,
    LegacyImportService,
    PreviewResult,
    RecordKey,
    ResolutionChoice,
    UnverifiedResolutionError,
)

legacy_cli = AppGroup("legacy", help="Legacy attendance import and identity mapping commands.")


def _require_enabled() -> None:
    if not is_legacy_import_enabled(current_app):
        raise click.ClickException(
            "Legacy import is disabled via LEGACY_IMPORT_ENABLED=false. Enable it to run legacy CLI commands."
        )


def _read_source(file_path: Path) -> str:
    try:
        return file_path.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as exc:
        raise click.ClickException(f"{file_path} is not valid UTF-8 text: {exc}") from exc


def _parse_resolve_option(values: tuple[str, ...]) -> list[ConflictResolution]:
    resolutions: list[ConflictResolution] = []
    for raw in values:
        key_token, separator, choice = raw.rpartition("=")
        if not separator or not key_token:
            raise click.BadParameter(f"'{raw}' must look like '<identity>|<YYYY-MM-DD>=existing|proposed'.")
        try:
            resolutions.append(
                ConflictResolution(key=RecordKey.parse(key_token), choice=ResolutionChoice.coerce(choice))
            )
        except ValueError as exc:
            raise click.BadParameter(str(exc)) from exc
    return resolutions


def _format_preview(preview: PreviewResult) -> str:
    batch = preview.batch
    report = preview.report
    skip_display = (
        ", ".join(f"{reason}={count}" for reason, count in sorted(batch.skip_reasons.items()))
        if batch.skip_reasons
        else "none"
    )
    lines = [
        f"Preview for year {batch.year} ({len(batch.date_columns)} date columns).",
        f"  processed_cells : {batch.processed_cells}",
        f"  skipped_cells   : {batch.skipped_cells}",
        f"  skip_reasons    : {skip_display}",
        f"  rows_skipped    : {batch.rows_skipped}",
        f"  duplicate_cells : {batch.duplicate_cells}",
        f"  importable      : {len(report.importable)}",
        f"  already_present : {len(report.already_present)}",
        f"  conflicts       : {len(report.conflicts)}",
    ]
    for entry in report.conflicts:
        lines.append(
            f"    {entry.key.as_token()}: existing={entry.existing_status.value} proposed={entry.proposed_status.value}"
        )
    return "\n".join(lines)


def _format_commit(result: CommitResult) -> str:
    return (
        f"Legacy import run {result.run_id} committed.\n"
        f"  imported       : {result.imported}\n"
        f"  updated        : {result.updated}\n"
        f"  unchanged      : {result.unchanged}\n"
        f"  already_present: {result.already_present}"
    )


@legacy_cli.command("preview")
@click.argument("file_path", type=click.Path(path_type=Path, exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Emit the preview payload as JSON.")
def legacy_preview(file_path: Path, as_json: bool):
    """Parse FILE and report what a commit would do. Never writes."""
    _require_enabled()
    try:
        preview = LegacyImportService().preview(_read_source(file_path))
    except LegacyImportError as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        click.echo(json.dumps(preview.to_dict(), indent=2, sort_keys=True))
    else:
        click.echo(_format_preview(preview))


@legacy_cli.command("commit")
@click.argument("file_path", type=click.Path(path_type=Path, exists=True, dir_okay=False))
@click.option(
    "--resolve",
    "resolve_values",
    multiple=True,
    metavar="KEY=CHOICE",
    help="Resolve a conflict, e.g. 'SGT Smith|2026-01-02=proposed'. Repeat for each conflict; requires --preview-token.",
)
@click.option("--user-id", type=int, help="Account recorded as the operator of the import run.")
@click.option("--preview-token", help="previewToken from an earlier preview; aborts if the store has changed since.")
def legacy_commit(file_path: Path, resolve_values: tuple[str, ...], user_id: Optional[int], preview_token: Optional[str]):
    """Apply FILE atomically once every conflict has a resolution."""
    _require_enabled()
    resolutions = _parse_resolve_option(resolve_values)
    try:
        result = LegacyImportService().commit(
            _read_source(file_path),
            resolutions,
            user_id=user_id,
            preview_token=preview_token,
        )
    except IncompleteResolutionError as exc:
        missing = "\n".join(f"  - {key.as_token()}" for key in exc.missing)
        message = str(exc)
        if missing:
            message = f"{message}\nResolve with --resolve KEY=existing|proposed for:\n{missing}"
        raise click.ClickException(message) from exc
    except UnverifiedResolutionError as exc:
        raise click.ClickException(
            f"{exc}\nRun 'flask legacy preview FILE --json' and pass its previewToken with --preview-token."
        ) from exc
    except LegacyImportError as exc:
        raise click.ClickException(str(exc)) from exc

    current_app.logger.info(
        "Legacy import committed via CLI",
        extra={"legacy_import_run_id": result.run_id, "legacy_import_file": str(file_path)},
    )
    click.echo(_format_commit(result))


@legacy_cli.command("groups")
@click.option("--search", help="Case-insensitive substring filter on the legacy identity.")
@click.option("--mapped/--unmapped", "is_mapped", default=None, help="Only show mapped or unmapped groups.")
@click.option("--json", "as_json", is_flag=True, help="Emit groups as JSON.")
def legacy_groups(search: Optional[str], is_mapped: Optional[bool], as_json: bool):
    """List legacy identity groups and their mapping status."""
    _require_enabled()
    groups = IdentityResolver().list_groups(search=search, is_mapped=is_mapped)
    if as_json:
        click.echo(json.dumps({"groups": [group.to_dict() for group in groups], "total": len(groups)}, indent=2))
        return
    if not groups:
        click.echo("No legacy identity groups found.")
        return
    for group in groups:
        target = f" -> user {group.mapped_user_id}" if group.mapped_user_id is not None else ""
        click.echo(f"{group.legacy_identity} [{group.status}] {len(group.records)} records{target}")


@legacy_cli.command("map")
@click.argument("legacy_identity")
@click.argument("user_id", type=int)
def legacy_map(legacy_identity: str, user_id: int):
    """Map every record of LEGACY_IDENTITY onto account USER_ID."""
    _require_enabled()
    try:
        result = IdentityResolver().propose_mapping(legacy_identity, user_id)
    except LegacyImportError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Mapped {result.records_updated} records of '{legacy_identity}' to user {user_id}.")


@legacy_cli.command("unmap")
@click.argument("legacy_identity")
def legacy_unmap(legacy_identity: str):
    """Clear the mapping of every record of LEGACY_IDENTITY."""
    _require_enabled()
    try:
        result = IdentityResolver().clear_mapping(legacy_identity)
    except LegacyImportError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Cleared mapping on {result.records_updated} records of '{legacy_identity}'.")
