"""Job history and audit log commands."""

import json

import click

from ledgersync.cli.context import get_controller
from ledgersync.cli.error_handling import handle_domain_error
from ledgersync.domain.audit import AuditLogWriter
from ledgersync.domain.connection import ConnectionService
from ledgersync.domain.errors import DomainError


def _fmt_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


@click.group()
def jobs_group():
    """Inspect ingestion jobs."""
    pass


@jobs_group.command("list")
@click.option("--tenant", "tenant_id", required=True, help="Tenant ID")
@click.option("--connection", "connection_id", type=int, help="Only jobs of this connection")
@click.option("--limit", type=int, default=20, show_default=True)
@click.pass_context
def list_jobs(ctx, tenant_id: str, connection_id: int | None, limit: int):
    """List jobs, newest first."""
    service = ConnectionService(ctx.obj["db"])
    jobs = service.list_jobs(tenant_id, connection_id=connection_id, limit=limit)
    if not jobs:
        click.echo("No jobs found.")
        return

    click.echo("\nJobs:")
    click.echo("-" * 90)
    for job in jobs:
        click.echo(
            f"ID: {job.id:4d} | connection {job.connection_id:3d} | {job.job_kind:9s} | "
            f"{job.status:9s} | imported {job.records_imported:5d} | "
            f"started {_fmt_time(job.started_at)}"
        )


@jobs_group.command("show")
@click.argument("job_id", type=int)
@click.option("--tenant", "tenant_id", required=True, help="Tenant ID")
@click.pass_context
def show_job(ctx, job_id: int, tenant_id: str):
    """Show one job with its counts, errors and summary."""
    service = ConnectionService(ctx.obj["db"])
    try:
        job = service.get_job(tenant_id, job_id)
        snapshots = service.get_raw_data(tenant_id, job_id)
    except DomainError as e:
        handle_domain_error(ctx, e)

    click.echo(f"Job {job.id} ({job.job_kind}) on connection {job.connection_id}: {job.status}")
    click.echo(f"  Triggered by: {job.triggered_by or '-'}")
    click.echo(f"  Started: {_fmt_time(job.started_at)}  Completed: {_fmt_time(job.completed_at)}")
    click.echo(
        f"  Fetched {job.records_fetched}, processed {job.records_processed}, "
        f"imported {job.records_imported}, skipped {job.records_skipped}, "
        f"failed {job.records_failed}"
    )
    click.echo(f"  Raw snapshots: {len(snapshots)}")
    if job.error_message:
        click.echo(f"  Error: {job.error_message}")
    if job.summary:
        click.echo("  Summary:")
        click.echo(json.dumps(job.summary, indent=2, default=str))


@jobs_group.command("abort")
@click.argument("job_id", type=int)
@click.option("--tenant", "tenant_id", required=True, help="Tenant ID")
@click.option("--user", "user_id", required=True, help="Acting user ID")
@click.option("--reason", help="Why the job is being aborted")
@click.pass_context
def abort_job(ctx, job_id: int, tenant_id: str, user_id: str, reason: str | None):
    """Mark a stuck job failed and release its connection."""
    controller = get_controller(ctx)
    try:
        job = controller.abort_job(tenant_id, job_id, actor=user_id, reason=reason)
    except DomainError as e:
        handle_domain_error(ctx, e)

    click.echo(f"Job {job.id} {job.status}: {job.error_message}")


@click.group()
def audit_group():
    """Inspect the audit log."""
    pass


@audit_group.command("list")
@click.option("--tenant", "tenant_id", required=True, help="Tenant ID")
@click.option("--connection", "connection_id", type=int, help="Only entries of this connection")
@click.option("--job", "job_id", type=int, help="Only entries of this job")
@click.pass_context
def list_audit(ctx, tenant_id: str, connection_id: int | None, job_id: int | None):
    """List audit entries, oldest first."""
    writer = AuditLogWriter(ctx.obj["db"])
    entries = writer.list_entries(tenant_id, connection_id=connection_id, job_id=job_id)
    if not entries:
        click.echo("No audit entries found.")
        return

    for entry in entries:
        click.echo(
            f"{_fmt_time(entry.created_at)} | {entry.event_type:24s} | job {entry.job_id} | "
            f"actor {entry.actor or '-'} | {json.dumps(entry.event_data, default=str)}"
        )


def register_commands(cli):
    """Register job and audit commands with main CLI."""
    cli.add_command(jobs_group, name="jobs")
    cli.add_command(audit_group, name="audit")
