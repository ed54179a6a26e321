"""File import entrypoint: detection, import and replay of delimited files."""

import logging
from typing import Any, Optional, Union

from ledgersync.database.base import Database
from ledgersync.domain.account import AccountService
from ledgersync.domain.batch_parser import ColumnMapping, ParserConfig
from ledgersync.domain.connection import ConnectionService, validate_import_mode
from ledgersync.domain.errors import (
    MissingFieldsError,
    NotFoundError,
    ValidationError,
    account_not_found,
)
from ledgersync.domain.jobs import IngestionJobController, JobOutcome
from ledgersync.domain.schema_detection import SchemaDetector
from ledgersync.domain.tenant import TenantAccessService

logger = logging.getLogger(__name__)

REQUIRED_PAYLOAD_FIELDS = (
    "content",
    "columnMapping",
    "connectionName",
    "accountId",
    "tenantId",
    "userId",
)


def outcome_to_response(outcome: JobOutcome) -> dict[str, Any]:
    """Shape a file import outcome as the import entrypoint's response."""
    job = outcome.job
    connection = {"id": outcome.connection.id, "name": outcome.connection.name}
    job_info = {"id": job.id, "status": job.status}
    parse = outcome.parse_result
    if not outcome.success:
        return {
            "success": False,
            "error": job.error_message,
            "details": job.error_details,
            "connection": connection,
            "job": job_info,
        }
    return {
        "success": True,
        "connection": connection,
        "job": job_info,
        "summary": {
            "totalRows": parse.summary.total_rows,
            "imported": job.records_imported,
            "skipped": job.records_skipped,
            "errors": [e.to_dict() for e in parse.errors],
            "warnings": [w.to_dict() for w in parse.warnings],
        },
    }


class CSVImportService:
    """Service for importing delimited files."""

    def __init__(self, db: Database, controller: Optional[IngestionJobController] = None):
        """Initialize CSV import service.

        Args:
            db: Database instance
            controller: Job controller (a default one over ``db`` if None)
        """
        self.db = db
        self.controller = controller or IngestionJobController(db)
        self.connection_service = ConnectionService(db)
        self.account_service = AccountService(db)
        self.access = TenantAccessService(db)
        self.detector = SchemaDetector()

    def detect(self, content: Optional[str], delimiter: Optional[str] = None) -> dict[str, Any]:
        """Return ``{columns, sampleRows, suggestedMapping}`` for user confirmation."""
        return self.detector.detect(content, delimiter=delimiter).to_dict()

    def import_file(
        self,
        tenant_id: str,
        user_id: str,
        connection_name: str,
        account_id: int,
        content: str,
        column_mapping: Union[ColumnMapping, dict[str, Any]],
        config: Union[ParserConfig, dict[str, Any], None] = None,
        import_mode: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> dict[str, Any]:
        """Import a delimited file into a named file connection.

        Args:
            tenant_id: Tenant ID
            user_id: Acting user (must be a tenant member)
            connection_name: File connection to import into (created on first use)
            account_id: Account the rows belong to
            content: Raw file content
            column_mapping: Canonical field -> column
            config: Parser formatting options
            import_mode: "append" or "override" (defaults to the connection's mode)
            file_name: Original file name

        Returns:
            ``{success, connection, job, summary}`` or ``{success: False, error, details}``

        Raises:
            AuthorizationError: If the user is not a tenant member
            ValidationError: If the mapping, config or mode is invalid
            NotFoundError: If the account is not in the tenant
            ConcurrencyError: If the connection already has an active job
        """
        self.access.require_member(tenant_id, user_id)
        mapping = (
            column_mapping
            if isinstance(column_mapping, ColumnMapping)
            else ColumnMapping.from_dict(column_mapping)
        )
        parser_config = config if isinstance(config, ParserConfig) else ParserConfig.from_dict(config)
        if import_mode is not None:
            validate_import_mode(import_mode)

        try:
            account_id = int(account_id)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid account id '{account_id}'")
        if self.account_service.get_account(tenant_id, account_id) is None:
            raise NotFoundError(account_not_found(account_id))

        connection = self.connection_service.get_or_create_file_connection(
            tenant_id,
            connection_name,
            account_id,
            created_by=user_id,
            import_mode=import_mode or "append",
        )
        outcome = self.controller.run_file_import(
            tenant_id,
            connection.id,
            content,
            mapping,
            parser_config,
            account_id=account_id,
            actor=user_id,
            import_mode=import_mode,
            file_name=file_name,
            authorize=False,
        )
        return outcome_to_response(outcome)

    def import_payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Import from an API-style payload.

        Accepts ``{content, columnMapping, config, connectionName, accountId,
        tenantId, importMode, userId, fileName}``.

        Raises:
            MissingFieldsError: If a required field is absent or empty
        """
        missing = [
            name
            for name in REQUIRED_PAYLOAD_FIELDS
            if payload.get(name) is None or payload.get(name) == "" or payload.get(name) == {}
        ]
        if missing:
            raise MissingFieldsError(missing)
        return self.import_file(
            tenant_id=payload["tenantId"],
            user_id=payload["userId"],
            connection_name=payload["connectionName"],
            account_id=payload["accountId"],
            content=payload["content"],
            column_mapping=payload["columnMapping"],
            config=payload.get("config"),
            import_mode=payload.get("importMode"),
            file_name=payload.get("fileName"),
        )

    def replay_job(self, tenant_id: str, job_id: int, user_id: str) -> dict[str, Any]:
        """Re-run a file import from the raw data of an earlier job.

        The replay is a new job; the original job is left untouched.

        Raises:
            NotFoundError: If the job or its raw data is missing
            ValidationError: If the job was not a file import
        """
        self.access.require_member(tenant_id, user_id)
        job = self.connection_service.get_job(tenant_id, job_id)
        connection = self.connection_service.require_connection(tenant_id, job.connection_id)
        if not connection.is_file_based:
            raise ValidationError(f"Job {job_id} is a provider sync; run a new sync instead")
        snapshots = self.db.list_raw_data(tenant_id, job_id)
        if not snapshots:
            raise NotFoundError(f"No raw data stored for job {job_id}")

        raw = snapshots[0].raw_data
        logger.info("Replaying job %s for connection %s", job_id, connection.id)
        outcome = self.controller.run_file_import(
            tenant_id,
            connection.id,
            raw["content"],
            ColumnMapping.from_dict(raw["columnMapping"]),
            ParserConfig.from_dict(raw.get("config")),
            account_id=raw.get("accountId"),
            actor=user_id,
            import_mode=raw.get("importMode"),
            file_name=snapshots[0].file_name,
            authorize=False,
        )
        return outcome_to_response(outcome)
