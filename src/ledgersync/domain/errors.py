"""Shared domain error messages and error types."""

from typing import Optional


class DomainError(ValueError):
    """Base class for domain-level errors.

    Subclasses provide semantic categories while preserving ValueError
    compatibility for existing error handling.
    """


class ValidationError(DomainError):
    """Invalid input or failed validation in domain logic."""


class MissingFieldsError(ValidationError):
    """A request omitted one or more required fields."""

    def __init__(self, fields: list[str]):
        self.fields = list(fields)
        super().__init__(f"Missing required fields: {', '.join(self.fields)}")


class NotFoundError(DomainError):
    """Requested domain entity does not exist (or belongs to another tenant)."""


class ConflictError(DomainError):
    """Domain conflict, such as uniqueness violations."""


class ConcurrencyError(ConflictError):
    """Another ingestion job is already active on the connection."""


class AuthorizationError(DomainError):
    """Caller lacks access to the tenant, or provider credentials were rejected."""


class InvalidTransitionError(DomainError):
    """Job status change that would move backwards or leave a terminal state."""


class PersistenceError(DomainError):
    """A batch write against the canonical store failed.

    ``written`` holds the number of rows durably written by earlier batches of
    the same call, so callers can report partial progress.
    """

    def __init__(self, message: str, written: int = 0):
        self.written = written
        super().__init__(message)


class ProviderError(DomainError):
    """An external data provider call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ProviderAuthError(ProviderError, AuthorizationError):
    """The provider rejected the connection's credentials."""


def connection_not_found(connection_id: int) -> str:
    """Return message for missing connection."""
    return f"Connection {connection_id} not found"


def account_not_found(account_id: int) -> str:
    """Return message for missing account."""
    return f"Account {account_id} not found"


def job_not_found(job_id: int) -> str:
    """Return message for missing ingestion job."""
    return f"Ingestion job {job_id} not found"


def tenant_access_denied(user_id: str, tenant_id: str) -> str:
    """Return message when a user is not a member of a tenant."""
    return f"User '{user_id}' does not have access to tenant '{tenant_id}'"


def connection_busy(connection_id: int, job_id: Optional[int] = None) -> str:
    """Return message when a connection already has an active job."""
    if job_id is None:
        return f"Connection {connection_id} already has an active ingestion job"
    return f"Connection {connection_id} already has an active ingestion job ({job_id})"
