"""Cloud provider strategies."""

from providers.base import (
    AccountDescription,
    NetworkIdentity,
    Provider,
    ProviderError,
    ResourceNotFoundError,
)

_providers: dict[str, type] = {}


def register_provider(name: str):
    """Decorator to register a provider class under a name."""
    def decorator(cls):
        _providers[name] = cls
        return cls
    return decorator


def get_provider(name: str, config) -> Provider:
    """Build a provider instance from fleet configuration."""
    if name not in _providers:
        raise ProviderError(name, f"Unknown provider: {name}. Available: {list_providers()}", code="E512")
    return _providers[name].from_config(config)


def list_providers() -> list[str]:
    """List registered provider names."""
    return sorted(_providers.keys())


# Import providers to trigger registration
from providers import aws  # noqa: E402, F401
from providers import digitalocean  # noqa: E402, F401

__all__ = [
    'AccountDescription',
    'NetworkIdentity',
    'Provider',
    'ProviderError',
    'ResourceNotFoundError',
    'get_provider',
    'list_providers',
    'register_provider',
]
