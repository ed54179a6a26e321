"""Scheduled sync runner, invoked by an external scheduler on a fixed interval."""

import logging
from typing import Any, Optional

from ledgersync.database.base import Database
from ledgersync.domain.entities import CONNECTION_ACTIVE, JOB_SCHEDULED, SOURCE_CSV
from ledgersync.domain.errors import DomainError
from ledgersync.domain.jobs import IngestionJobController

logger = logging.getLogger(__name__)

SCHEDULER_ACTOR = "scheduler"


class ScheduledSyncRunner:
    """Runs one scheduled sync job per active provider connection."""

    def __init__(self, db: Database, controller: Optional[IngestionJobController] = None):
        self.db = db
        self.controller = controller or IngestionJobController(db)

    def run_all(self, tenant_id: Optional[str] = None) -> list[dict[str, Any]]:
        """Sync every active provider connection, optionally within one tenant.

        A connection that is rejected before its job starts (for example
        because another job is active on it) is reported and the others
        continue.

        Returns:
            One report per connection: ``{connectionId, tenantId, success,
            job, summary}`` or ``{connectionId, tenantId, success: False, error}``
        """
        connections = [
            c
            for c in self.db.list_connections(tenant_id=tenant_id, status=CONNECTION_ACTIVE)
            if c.source_kind != SOURCE_CSV
        ]
        logger.info("Scheduled sync starting for %d connection(s)", len(connections))

        reports = []
        for connection in connections:
            report: dict[str, Any] = {
                "connectionId": connection.id,
                "tenantId": connection.tenant_id,
                "name": connection.name,
            }
            try:
                outcome = self.controller.run_provider_sync(
                    connection.tenant_id,
                    connection.id,
                    actor=SCHEDULER_ACTOR,
                    job_kind=JOB_SCHEDULED,
                    authorize=False,
                )
            except DomainError as e:
                logger.warning("Scheduled sync of connection %s rejected: %s", connection.id, e)
                report.update({"success": False, "error": str(e)})
            else:
                report.update(
                    {
                        "success": outcome.success,
                        "job": {"id": outcome.job.id, "status": outcome.job.status},
                        "summary": outcome.job.summary,
                    }
                )
                if not outcome.success:
                    report["error"] = outcome.job.error_message
            reports.append(report)
        return reports
