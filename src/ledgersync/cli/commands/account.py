"""Account management commands."""

import click

from ledgersync.cli.context import get_settings
from ledgersync.cli.error_handling import handle_domain_error
from ledgersync.domain.account import ACCOUNT_TYPES, AccountService
from ledgersync.domain.errors import DomainError
from ledgersync.utils.amount_parser import parse_amount


@click.group()
def account_group():
    """Manage accounts."""
    pass


@account_group.command("create")
@click.argument("name", metavar="ACCOUNT_NAME")
@click.option("--tenant", "tenant_id", required=True, help="Tenant ID")
@click.option("--type", "account_type", type=click.Choice(ACCOUNT_TYPES), default="checking")
@click.option("--currency", help="ISO currency code (defaults to LEDGERSYNC_DEFAULT_CURRENCY)")
@click.option("--balance", help="Opening balance snapshot")
@click.pass_context
def create_account(
    ctx, name: str, tenant_id: str, account_type: str, currency: str | None, balance: str | None
):
    """Create a manual account for file imports.

    Examples:
        ledgersync account create "Checking" --tenant acme
        ledgersync account create "Card" --tenant acme --type credit_card --currency EUR
    """
    service = AccountService(ctx.obj["db"], default_currency=get_settings(ctx).default_currency)
    try:
        account_id = service.create_account(
            tenant_id,
            name,
            account_type=account_type,
            currency=currency,
            balance=parse_amount(balance) if balance else None,
        )
    except (DomainError, ValueError) as e:
        handle_domain_error(ctx, e)
    click.echo(f"Created account '{name}' (ID: {account_id})")


@account_group.command("list")
@click.option("--tenant", "tenant_id", required=True, help="Tenant ID")
@click.option("--connection", "connection_id", type=int, help="Only accounts of this connection")
@click.pass_context
def list_accounts(ctx, tenant_id: str, connection_id: int | None):
    """List accounts of a tenant."""
    service = AccountService(ctx.obj["db"])

    accounts = service.list_accounts(tenant_id, connection_id=connection_id)
    if not accounts:
        click.echo("No accounts found.")
        return

    click.echo("\nAccounts:")
    click.echo("-" * 80)
    for acc in accounts:
        balance = f"{acc.balance}" if acc.balance is not None else "-"
        source = f"connection {acc.connection_id}" if acc.connection_id else "manual"
        click.echo(
            f"ID: {acc.id:3d} | {acc.name:20s} | {acc.account_type:11s} | "
            f"{acc.currency} {balance:>12s} | {acc.status:6s} | {source}"
        )


def register_commands(cli):
    """Register account commands with main CLI."""
    cli.add_command(account_group, name="account")
