"""Provider sync commands."""

import click

from ledgersync.cli.context import get_controller
from ledgersync.cli.error_handling import handle_domain_error
from ledgersync.domain.errors import DomainError
from ledgersync.domain.scheduler import ScheduledSyncRunner


@click.command("sync")
@click.argument("connection_id", type=int)
@click.option("--tenant", "tenant_id", required=True, help="Tenant ID")
@click.option("--user", "user_id", required=True, help="Acting user ID")
@click.option("--accounts/--no-accounts", default=True, help="Sync the account list first")
@click.option(
    "--transactions/--no-transactions", default=True, help="Sync transaction deltas"
)
@click.pass_context
def sync_connection(
    ctx, connection_id: int, tenant_id: str, user_id: str, accounts: bool, transactions: bool
):
    """Run one sync job for a provider connection."""
    controller = get_controller(ctx)
    try:
        outcome = controller.run_provider_sync(
            tenant_id,
            connection_id,
            actor=user_id,
            sync_accounts=accounts,
            sync_transactions=transactions,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)

    job = outcome.job
    summary = job.summary or {}
    click.echo(f"Job {job.id}: {job.status}")
    click.echo(f"  Accounts synced: {summary.get('accountsSynced', 0)}")
    click.echo(
        f"  Transactions: {summary.get('transactionsAdded', 0)} added, "
        f"{summary.get('transactionsModified', 0)} modified, "
        f"{summary.get('transactionsRemoved', 0)} removed"
    )
    if summary.get("note"):
        click.echo(f"  Note: {summary['note']}")
    for error in summary.get("errors", []):
        click.echo(f"  {error}", err=True)
    if not outcome.success:
        click.echo(f"Error: {job.error_message}", err=True)
        ctx.exit(1)


@click.command("sync-all")
@click.option("--tenant", "tenant_id", help="Only connections of this tenant")
@click.pass_context
def sync_all(ctx, tenant_id: str | None):
    """Run a scheduled sync for every active provider connection."""
    runner = ScheduledSyncRunner(ctx.obj["db"], controller=get_controller(ctx))
    reports = runner.run_all(tenant_id=tenant_id)
    if not reports:
        click.echo("No active provider connections.")
        return

    failures = 0
    for report in reports:
        if report["success"]:
            click.echo(f"Connection {report['connectionId']} ({report['name']}): job {report['job']['id']} completed")
        else:
            failures += 1
            click.echo(
                f"Connection {report['connectionId']} ({report['name']}): {report['error']}",
                err=True,
            )
    click.echo(f"\n{len(reports) - failures} of {len(reports)} connection(s) synced")
    if failures:
        ctx.exit(1)


def register_commands(cli):
    """Register sync commands with main CLI."""
    cli.add_command(sync_connection)
    cli.add_command(sync_all)
