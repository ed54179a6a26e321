"""Provider adapter registry."""

from typing import Callable

from ledgersync.domain.errors import ValidationError
from ledgersync.domain.sync_adapter import SyncAdapter
from ledgersync.providers.tink import TinkSyncAdapter

# Provider name -> factory returning a ready adapter
_ADAPTER_REGISTRY: dict[str, Callable[[], SyncAdapter]] = {}


def register_adapter(name: str, factory: Callable[[], SyncAdapter]) -> None:
    """Register an adapter factory under a provider name.

    Args:
        name: Provider name, stored as the connection's source kind
        factory: Zero-argument callable returning an adapter
    """
    _ADAPTER_REGISTRY[name] = factory


def unregister_adapter(name: str) -> None:
    _ADAPTER_REGISTRY.pop(name, None)


def get_adapter(name: str) -> SyncAdapter:
    """Build the adapter registered for a provider.

    Raises:
        ValidationError: If no adapter is registered under ``name``
    """
    if name not in _ADAPTER_REGISTRY:
        available = ", ".join(sorted(_ADAPTER_REGISTRY)) or "none"
        raise ValidationError(
            f"Provider '{name}' is not registered. Available providers: {available}."
        )
    return _ADAPTER_REGISTRY[name]()


def list_adapters() -> list[str]:
    """Return the registered provider names."""
    return list(_ADAPTER_REGISTRY.keys())


register_adapter(TinkSyncAdapter.provider_name, TinkSyncAdapter)
