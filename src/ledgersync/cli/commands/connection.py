"""Connection management commands."""

import click

from ledgersync.cli.error_handling import handle_domain_error, parse_pairs
from ledgersync.domain.connection import ConnectionService
from ledgersync.domain.errors import DomainError


@click.group()
def connection_group():
    """Manage connections."""
    pass


@connection_group.command("create-provider")
@click.argument("name")
@click.option("--tenant", "tenant_id", required=True, help="Tenant ID")
@click.option("--provider", required=True, help="Registered provider name, e.g. tink")
@click.option("--user", "user_id", help="Acting user ID")
@click.option("--account", "account_id", type=int, help="Default account for unmatched transactions")
@click.option(
    "--credential",
    "credentials",
    multiple=True,
    help="KEY=VALUE passed to the provider, e.g. access_token=...",
)
@click.pass_context
def create_provider(
    ctx,
    name: str,
    tenant_id: str,
    provider: str,
    user_id: str | None,
    account_id: int | None,
    credentials: tuple[str, ...],
):
    """Create a connection to an external provider.

    Examples:
        ledgersync connection create-provider "My bank" --tenant acme \\
            --provider tink --credential access_token=abc123
    """
    service = ConnectionService(ctx.obj["db"])
    try:
        connection_id = service.create_provider_connection(
            tenant_id,
            name,
            provider,
            credentials=parse_pairs(credentials, "--credential"),
            account_id=account_id,
            created_by=user_id,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)
    click.echo(f"Created {provider} connection '{name}' (ID: {connection_id})")


@connection_group.command("list")
@click.option("--tenant", "tenant_id", help="Only connections of this tenant")
@click.pass_context
def list_connections(ctx, tenant_id: str | None):
    """List connections and their last sync status."""
    service = ConnectionService(ctx.obj["db"])

    connections = service.list_connections(tenant_id)
    if not connections:
        click.echo("No connections found.")
        return

    click.echo("\nConnections:")
    click.echo("-" * 90)
    for conn in connections:
        last_sync = conn.last_sync_at.strftime("%Y-%m-%d %H:%M") if conn.last_sync_at else "never"
        click.echo(
            f"ID: {conn.id:3d} | {conn.tenant_id:10s} | {conn.name:20s} | {conn.source_kind:6s} | "
            f"{conn.status:8s} | last sync: {last_sync} ({conn.last_sync_status or '-'})"
        )
        if conn.last_error:
            click.echo(f"      last error: {conn.last_error}")


def register_commands(cli):
    """Register connection commands with main CLI."""
    cli.add_command(connection_group, name="connection")
