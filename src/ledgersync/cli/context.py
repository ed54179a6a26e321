"""Builds services from the CLI context."""

import click

from ledgersync.config import Settings
from ledgersync.domain.jobs import IngestionJobController
from ledgersync.domain.persistence import PersistenceWriter
from ledgersync.domain.sync import SyncOrchestrator


def get_settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def get_controller(ctx: click.Context) -> IngestionJobController:
    """Job controller configured from the process settings."""
    db = ctx.obj["db"]
    settings = get_settings(ctx)
    writer = PersistenceWriter(db, batch_size=settings.upsert_batch_size)
    orchestrator = SyncOrchestrator(
        db,
        writer=writer,
        max_pages=settings.sync_max_pages,
        time_budget=settings.sync_time_budget,
    )
    return IngestionJobController(
        db,
        orchestrator=orchestrator,
        writer=writer,
        stale_job_after=settings.stale_job_after,
    )
