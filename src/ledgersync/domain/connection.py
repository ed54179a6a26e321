"""Connection domain service and job history queries."""

import logging
from typing import Any, Optional

from ledgersync.database.base import Database
from ledgersync.domain.entities import (
    CONNECTION_ACTIVE,
    CONNECTION_DISABLED,
    IMPORT_APPEND,
    IMPORT_MODES,
    SOURCE_CSV,
    Connection as ConnectionEntity,
    ConnectionUpdate,
    IngestionJob as IngestionJobEntity,
    RawIngestionData as RawIngestionDataEntity,
)
from ledgersync.domain.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
    account_not_found,
    connection_not_found,
    job_not_found,
)

logger = logging.getLogger(__name__)


def validate_import_mode(import_mode: str) -> str:
    if import_mode not in IMPORT_MODES:
        raise ValidationError(
            f"Invalid import mode '{import_mode}'. Must be one of: {', '.join(IMPORT_MODES)}"
        )
    return import_mode


class ConnectionService:
    """Service for managing connections."""

    def __init__(self, db: Database):
        """Initialize connection service.

        Args:
            db: Database instance
        """
        self.db = db

    def _require_account(self, tenant_id: str, account_id: Optional[int]) -> None:
        if account_id is not None and self.db.get_account(tenant_id, account_id) is None:
            raise NotFoundError(account_not_found(account_id))

    def get_or_create_file_connection(
        self,
        tenant_id: str,
        name: str,
        account_id: int,
        created_by: Optional[str] = None,
        import_mode: str = IMPORT_APPEND,
    ) -> ConnectionEntity:
        """Return the tenant's file connection with this name, creating it if needed.

        Re-imports under the same name share one connection and therefore one
        dedup scope.

        Raises:
            ConflictError: If the name belongs to a provider connection
            NotFoundError: If the account is not in the tenant
        """
        if not name or not name.strip():
            raise ValidationError("Connection name is required")
        existing = self.db.get_connection_by_name(tenant_id, name)
        if existing is not None:
            if not existing.is_file_based:
                raise ConflictError(
                    f"Connection '{name}' is a {existing.source_kind} connection, not a file import"
                )
            return existing

        validate_import_mode(import_mode)
        self._require_account(tenant_id, account_id)
        connection_id = self.db.create_connection(
            tenant_id=tenant_id,
            name=name,
            source_kind=SOURCE_CSV,
            config={},
            import_mode=import_mode,
            account_id=account_id,
            created_by=created_by,
        )
        logger.info("Created file connection %s (%s) for tenant %s", connection_id, name, tenant_id)
        return self.db.get_connection(tenant_id, connection_id)

    def create_provider_connection(
        self,
        tenant_id: str,
        name: str,
        provider: str,
        credentials: Optional[dict[str, Any]] = None,
        account_id: Optional[int] = None,
        created_by: Optional[str] = None,
        settings: Optional[dict[str, Any]] = None,
    ) -> int:
        """Create a connection to a registered provider.

        Args:
            tenant_id: Tenant ID
            name: Unique connection name within the tenant
            provider: Registered adapter name (e.g. "tink")
            credentials: Passed to the adapter on every call
            account_id: Default account for transactions without a known account
            created_by: Acting user
            settings: Extra provider options stored in the configuration

        Returns:
            Connection ID

        Raises:
            ValidationError: If the provider is not registered
            ConflictError: If the name is taken
        """
        from ledgersync.providers import list_adapters

        if provider == SOURCE_CSV or provider not in list_adapters():
            raise ValidationError(
                f"Unknown provider '{provider}'. Available: {', '.join(sorted(list_adapters()))}"
            )
        if self.db.get_connection_by_name(tenant_id, name) is not None:
            raise ConflictError(f"Connection with name '{name}' already exists")
        self._require_account(tenant_id, account_id)

        config: dict[str, Any] = dict(settings or {})
        config["credentials"] = dict(credentials or {})
        return self.db.create_connection(
            tenant_id=tenant_id,
            name=name,
            source_kind=provider,
            config=config,
            account_id=account_id,
            created_by=created_by,
        )

    def get_connection(self, tenant_id: str, connection_id: int) -> Optional[ConnectionEntity]:
        """Get connection by ID.

        Returns:
            Connection entity or None if not found
        """
        return self.db.get_connection(tenant_id, connection_id)

    def require_connection(self, tenant_id: str, connection_id: int) -> ConnectionEntity:
        connection = self.db.get_connection(tenant_id, connection_id)
        if connection is None:
            raise NotFoundError(connection_not_found(connection_id))
        return connection

    def list_connections(self, tenant_id: Optional[str] = None) -> list[ConnectionEntity]:
        return self.db.list_connections(tenant_id=tenant_id)

    def set_enabled(self, tenant_id: str, connection_id: int, enabled: bool) -> None:
        """Enable or disable scheduled syncs for a connection."""
        self.require_connection(tenant_id, connection_id)
        status = CONNECTION_ACTIVE if enabled else CONNECTION_DISABLED
        self.db.update_connection(tenant_id, connection_id, ConnectionUpdate(status=status))

    # Job history
    def list_jobs(
        self, tenant_id: str, connection_id: Optional[int] = None, limit: Optional[int] = None
    ) -> list[IngestionJobEntity]:
        """List jobs newest first."""
        return self.db.list_jobs(tenant_id, connection_id=connection_id, limit=limit)

    def get_job(self, tenant_id: str, job_id: int) -> IngestionJobEntity:
        """Get a job of the tenant.

        Raises:
            NotFoundError: If the job does not exist in the tenant
        """
        job = self.db.get_job(job_id, tenant_id=tenant_id)
        if job is None:
            raise NotFoundError(job_not_found(job_id))
        return job

    def get_raw_data(self, tenant_id: str, job_id: int) -> list[RawIngestionDataEntity]:
        """Return the raw snapshots a job recorded, in page order."""
        self.get_job(tenant_id, job_id)
        return self.db.list_raw_data(tenant_id, job_id)
