"""Provider strategy interface.

A provider exposes the handful of cloud operations the provisioning
orchestrator sequences. Each implementation wraps its SDK or HTTP API and
raises ProviderError for every failure.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Protocol

if TYPE_CHECKING:
    from provisioning.orchestrator import ProvisionRequest


class ProviderError(Exception):
    """Cloud provider call failed."""

    def __init__(self, provider: str, message: str, code: str = "E510"):
        self.provider = provider
        self.code = code
        self.message = message
        super().__init__(f"{code}: [{provider}] {message}")


class ResourceNotFoundError(ProviderError):
    """The resource no longer exists at the provider."""

    def __init__(self, provider: str, resource_id: str):
        self.resource_id = resource_id
        super().__init__(provider, f"Resource not found: {resource_id}", code="E511")


@dataclass
class AccountDescription:
    """What the account can provision into.

    An empty list means the provider could not enumerate that category.
    """
    images: list[str] = field(default_factory=list)
    networks: list[str] = field(default_factory=list)
    keys: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class NetworkIdentity:
    """A static public address held by the account."""
    id: str
    address: str


class Provider(Protocol):
    """Provider strategy."""
    name: str
    ready_statuses: frozenset[str]
    failed_statuses: frozenset[str]

    def describe_account(self, request: 'ProvisionRequest') -> AccountDescription:
        """List images, networks and keys usable for the request."""
        ...

    def create_resource(self, request: 'ProvisionRequest') -> str:
        """Create the compute resource and return its id."""
        ...

    def get_resource_status(self, resource_id: str) -> str:
        ...

    def get_resource_address(self, resource_id: str) -> Optional[str]:
        """Public address of the resource, if it has one yet."""
        ...

    def destroy_resource(self, resource_id: str) -> None:
        """Destroy the resource. Already-gone resources are not an error."""
        ...

    def requires_network_identity(self, request: 'ProvisionRequest') -> bool:
        ...

    def allocate_network_identity(self, request: 'ProvisionRequest') -> NetworkIdentity:
        ...

    def associate_network_identity(self, identity: NetworkIdentity, resource_id: str) -> None:
        ...

    def release_network_identity(self, identity_id: str) -> None:
        ...

    def default_username(self, request: 'ProvisionRequest') -> str:
        ...
