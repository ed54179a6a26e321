"""Tenant membership commands."""

import click

from ledgersync.cli.error_handling import handle_domain_error
from ledgersync.domain.errors import DomainError
from ledgersync.domain.tenant import TENANT_ROLES, TenantAccessService


@click.group()
def tenant_group():
    """Manage tenant membership."""
    pass


@tenant_group.command("add-member")
@click.argument("tenant_id")
@click.argument("user_id")
@click.option("--role", type=click.Choice(TENANT_ROLES), default="member", show_default=True)
@click.pass_context
def add_member(ctx, tenant_id: str, user_id: str, role: str):
    """Grant USER_ID access to TENANT_ID.

    Examples:
        ledgersync tenant add-member acme alice
        ledgersync tenant add-member acme bob --role admin
    """
    service = TenantAccessService(ctx.obj["db"])
    try:
        service.add_member(tenant_id, user_id, role)
    except DomainError as e:
        handle_domain_error(ctx, e)
    click.echo(f"Added '{user_id}' to tenant '{tenant_id}' as {role}")


def register_commands(cli):
    """Register tenant commands with main CLI."""
    cli.add_command(tenant_group, name="tenant")
