"""Domain layer for ledgersync."""

import importlib

# Services are resolved lazily: the database layer imports domain.entities,
# and services import the database layer.
_EXPORTS = {
    "AccountService": "ledgersync.domain.account",
    "AuditLogWriter": "ledgersync.domain.audit",
    "BatchParser": "ledgersync.domain.batch_parser",
    "ColumnMapping": "ledgersync.domain.batch_parser",
    "ParserConfig": "ledgersync.domain.batch_parser",
    "ConnectionService": "ledgersync.domain.connection",
    "CSVImportService": "ledgersync.domain.csv_import",
    "IngestionJobController": "ledgersync.domain.jobs",
    "PersistenceWriter": "ledgersync.domain.persistence",
    "ScheduledSyncRunner": "ledgersync.domain.scheduler",
    "SchemaDetector": "ledgersync.domain.schema_detection",
    "SyncOrchestrator": "ledgersync.domain.sync",
    "TenantAccessService": "ledgersync.domain.tenant",
}

__all__ = list(_EXPORTS)


def __getattr__(name):
    if name in _EXPORTS:
        return getattr(importlib.import_module(_EXPORTS[name]), name)
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
