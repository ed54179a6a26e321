"""File detection, import and replay commands."""

from pathlib import Path
from typing import Any

import click

from ledgersync.cli.context import get_controller
from ledgersync.cli.error_handling import handle_domain_error, parse_pairs
from ledgersync.domain.csv_import import CSVImportService
from ledgersync.domain.entities import IMPORT_MODES
from ledgersync.domain.errors import DomainError


def _read_file(path: str) -> str:
    return Path(path).read_text(encoding="utf-8-sig")


def _echo_result(ctx, result: dict[str, Any]) -> None:
    job = result["job"]
    if not result["success"]:
        click.echo(f"Import failed (job {job['id']}, {job['status']}): {result['error']}", err=True)
        details = result.get("details") or {}
        for error in details.get("errors", []):
            click.echo(f"  Row {error['row']}: {error['message']}", err=True)
        ctx.exit(1)

    summary = result["summary"]
    click.echo("\nImport complete:")
    click.echo(f"  Connection: {result['connection']['name']} (ID: {result['connection']['id']})")
    click.echo(f"  Job: {job['id']} ({job['status']})")
    click.echo(f"  Rows: {summary['totalRows']}")
    click.echo(f"  Imported: {summary['imported']} transactions")
    click.echo(f"  Skipped: {summary['skipped']} invalid rows")
    if summary["errors"]:
        click.echo(f"  Errors: {len(summary['errors'])}")
        for error in summary["errors"]:
            click.echo(f"    Row {error['row']}: {error['message']}", err=True)
    if summary["warnings"]:
        click.echo(f"  Warnings: {len(summary['warnings'])}")
        for warning in summary["warnings"]:
            click.echo(f"    Row {warning['row']}: {warning['message']}")


@click.command("detect")
@click.argument("csv_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--delimiter", help="Column delimiter (detected when omitted)")
@click.pass_context
def detect_file(ctx, csv_file: str, delimiter: str | None):
    """Show the columns, sample rows and suggested mapping of a file."""
    service = CSVImportService(ctx.obj["db"])
    result = service.detect(_read_file(csv_file), delimiter=delimiter)

    if not result["columns"]:
        click.echo("No columns detected.")
        return
    click.echo(f"Columns: {', '.join(result['columns'])}")
    click.echo("\nSuggested mapping:")
    if not result["suggestedMapping"]:
        click.echo("  (none)")
    for field_name, column in result["suggestedMapping"].items():
        click.echo(f"  --map {field_name}={column}")
    click.echo("\nSample rows:")
    for row in result["sampleRows"]:
        click.echo("  " + " | ".join(row.values()))


@click.command("import")
@click.argument("csv_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--name", "connection_name", required=True, help="File connection name")
@click.option("--account", "account_id", type=int, required=True, help="Target account ID")
@click.option("--tenant", "tenant_id", required=True, help="Tenant ID")
@click.option("--user", "user_id", required=True, help="Acting user ID")
@click.option(
    "--map",
    "mappings",
    multiple=True,
    required=True,
    help="FIELD=COLUMN (date, amount, description, type, reference, balance, category)",
)
@click.option("--mode", "import_mode", type=click.Choice(IMPORT_MODES), help="Import mode")
@click.option("--date-format", help="Date format, e.g. YYYY-MM-DD or %d.%m.%Y")
@click.option("--delimiter", help="Column delimiter (detected when omitted)")
@click.option("--decimal-comma", is_flag=True, help="Amounts use ',' as decimal separator")
@click.option("--day-first", is_flag=True, help="Read ambiguous dates as day first")
@click.option("--infer-type", is_flag=True, help="Derive debit/credit from the amount's sign")
@click.option(
    "--row-ids", is_flag=True, help="Use row-<n> instead of content fingerprints for rows without reference"
)
@click.pass_context
def import_file(
    ctx,
    csv_file: str,
    connection_name: str,
    account_id: int,
    tenant_id: str,
    user_id: str,
    mappings: tuple[str, ...],
    import_mode: str | None,
    date_format: str | None,
    delimiter: str | None,
    decimal_comma: bool,
    day_first: bool,
    infer_type: bool,
    row_ids: bool,
):
    """Import transactions from a delimited file.

    Examples:
        ledgersync import bank.csv --name "Bank export" --account 1 --tenant acme \\
            --user alice --map date=Date --map amount=Amount --map description=Desc
    """
    config: dict[str, Any] = {
        "date_format": date_format,
        "delimiter": delimiter,
        "decimal_separator": "," if decimal_comma else ".",
        "day_first": day_first,
        "infer_type_from_sign": infer_type,
        "external_id_strategy": "row" if row_ids else "fingerprint",
    }
    service = CSVImportService(ctx.obj["db"], controller=get_controller(ctx))
    try:
        result = service.import_file(
            tenant_id=tenant_id,
            user_id=user_id,
            connection_name=connection_name,
            account_id=account_id,
            content=_read_file(csv_file),
            column_mapping=parse_pairs(mappings, "--map"),
            config=config,
            import_mode=import_mode,
            file_name=Path(csv_file).name,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)
    _echo_result(ctx, result)


@click.command("replay")
@click.argument("job_id", type=int)
@click.option("--tenant", "tenant_id", required=True, help="Tenant ID")
@click.option("--user", "user_id", required=True, help="Acting user ID")
@click.pass_context
def replay_job(ctx, job_id: int, tenant_id: str, user_id: str):
    """Re-run a file import from the raw data stored for JOB_ID."""
    service = CSVImportService(ctx.obj["db"], controller=get_controller(ctx))
    try:
        result = service.replay_job(tenant_id, job_id, user_id)
    except DomainError as e:
        handle_domain_error(ctx, e)
    _echo_result(ctx, result)


def register_commands(cli):
    """Register import commands with main CLI."""
    cli.add_command(detect_file)
    cli.add_command(import_file)
    cli.add_command(replay_job)
