"""Server lifecycle operations built on the channel, dispatcher and inventory.

Information gathering happens once per invocation through the server-info
playbook. Its result rides along on ServerRecord.info, and operations that
need firewall or port state read it from there instead of dispatching their
own detection playbook.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional

from config import FleetConfig
from inventory.models import ServerRecord
from inventory.repository import (
    DuplicateHostError,
    DuplicateNameError,
    RecordNotFoundError,
    ServerRepository,
    SiteRepository,
)
from inventory.store import InventoryStore
from playbooks.dispatcher import PlaybookDispatcher, PlaybookResult
from providers import Provider, ProviderError, get_provider
from provisioning.orchestrator import Provisioner
from remote.channel import RemoteChannel
from validation import validate_port, validate_server_fields

logger = logging.getLogger(__name__)

SUPPORTED_DISTROS = ('debian', 'ubuntu')
SUPPORTED_PERMISSIONS = ('root', 'sudo')


class FleetError(Exception):
    """Base exception for server lifecycle operations."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class InvalidServerError(FleetError):
    """Server fields failed validation."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("E600", '; '.join(errors))


class UnsupportedServerError(FleetError):
    """Distro or permissions not supported."""

    def __init__(self, server: str, detail: str):
        super().__init__("E601", f"Server '{server}' is not supported: {detail}")


class MissingServerInfoError(FleetError):
    """Operation needs an info snapshot that was not gathered."""

    def __init__(self, server: str, key: str = ''):
        detail = f" (missing '{key}')" if key else ''
        super().__init__("E602", f"No server info for '{server}'{detail}; gather server info first")


@dataclass
class FirewallStatus:
    """Firewall and listening-port state read from a server-info snapshot."""
    installed: bool
    active: bool
    rules: list[str] = field(default_factory=list)
    ports: dict[int, str] = field(default_factory=dict)

    @property
    def allowed_ports(self) -> list[int]:
        """Ports with an ALLOW rule, ignoring protocol."""
        ports = set()
        for rule in self.rules:
            head = str(rule).split('/', 1)[0]
            if head.isdigit():
                ports.add(int(head))
        return sorted(ports)


@dataclass
class DeleteResult:
    """What delete_server removed."""
    server: ServerRecord
    deprovisioned: bool = False
    removed_sites: list[str] = field(default_factory=list)
    provider_error: Optional[str] = None


def gather_server_info(dispatcher: PlaybookDispatcher, server: ServerRecord) -> ServerRecord:
    """Dispatch server-info and return the server carrying the snapshot.

    Raises:
        UnsupportedServerError: Distro or permissions not supported
    """
    result: PlaybookResult = dispatcher.dispatch(server, 'server-info')
    distro = result.require('distro', str)
    permissions = result.require('permissions', str)

    if distro not in SUPPORTED_DISTROS:
        raise UnsupportedServerError(server.name, f"distro '{distro}' (supported: {', '.join(SUPPORTED_DISTROS)})")
    if permissions not in SUPPORTED_PERMISSIONS:
        raise UnsupportedServerError(server.name, f"user {server.username} has neither root nor passwordless sudo")

    logger.info(f"[{server.name}] {distro}, permissions {permissions}")
    return server.with_info(result.data)


def add_server(servers: ServerRepository, channel: RemoteChannel,
               dispatcher: PlaybookDispatcher, server: ServerRecord) -> ServerRecord:
    """Register an existing server.

    Field and duplicate checks run before any remote call.
    """
    errors = validate_server_fields(server.name, server.host, server.port, server.credential_path)
    if errors:
        raise InvalidServerError(errors)
    if servers.find_by_name(server.name):
        raise DuplicateNameError('Server', server.name)
    if existing := servers.find_by_host(server.host):
        raise DuplicateHostError(server.host, existing.name)

    channel.verify_connectivity(server.ssh_target())
    server = gather_server_info(dispatcher, server)
    servers.create(server)
    logger.info(f"[{server.name}] Added {server.ssh_target()}")
    return server


def firewall_status(server: ServerRecord) -> FirewallStatus:
    """Read firewall state from the server's info snapshot. Never dispatches."""
    if not server.info:
        raise MissingServerInfoError(server.name)

    ports = {}
    for port, process in (server.info.get('ports') or {}).items():
        if str(port).isdigit():
            ports[int(port)] = str(process)

    return FirewallStatus(
        installed=bool(server.info.get('ufw_installed', False)),
        active=bool(server.info.get('ufw_active', False)),
        rules=[str(r) for r in (server.info.get('ufw_rules') or [])],
        ports=ports,
    )


def suggested_ports(server: ServerRecord) -> list[int]:
    """Ports to pre-select when configuring the firewall.

    Listening ports plus ports already allowed, plus SSH.
    """
    status = firewall_status(server)
    return sorted(set(status.ports) | set(status.allowed_ports) | {server.port})


def configure_firewall(dispatcher: PlaybookDispatcher, server: ServerRecord,
                       allow_ports: Iterable) -> PlaybookResult:
    """Reset the firewall to allow exactly allow_ports plus SSH.

    Raises:
        MissingServerInfoError: No info snapshot on the server
        InvalidServerError: A port is out of range
    """
    firewall_status(server)
    permissions = server.info.get('permissions')
    if not permissions:
        raise MissingServerInfoError(server.name, 'permissions')
    if permissions not in SUPPORTED_PERMISSIONS:
        raise UnsupportedServerError(server.name, f"permissions '{permissions}'")

    errors = []
    ports = {server.port}
    for port in allow_ports:
        ok, message = validate_port(port)
        if ok:
            ports.add(int(port))
        else:
            errors.append(message)
    if errors:
        raise InvalidServerError(errors)

    ordered = sorted(ports)
    logger.info(f"[{server.name}] Allowing ports {ordered}")
    return dispatcher.dispatch(server, 'server-firewall', {
        'FLEET_PERMS': permissions,
        'FLEET_SSH_PORT': server.port,
        'FLEET_ALLOWED_PORTS': ordered,
    })


def delete_server(servers: ServerRepository, sites: SiteRepository, name: str,
                  provider_factory: Callable[[str], Provider],
                  force: bool = False) -> DeleteResult:
    """Remove a server, destroying its cloud resources first.

    With force, provider failures are logged and the record is removed anyway.
    """
    server = servers.find_by_name(name)
    if server is None:
        raise RecordNotFoundError('Server', name)
    result = DeleteResult(server=server)

    if server.is_provisioned:
        try:
            provider = provider_factory(server.provider)
            provider.destroy_resource(server.provider_resource_id)
            if server.network_identity_id:
                provider.release_network_identity(server.network_identity_id)
            result.deprovisioned = True
        except ProviderError as e:
            if not force:
                raise
            result.provider_error = str(e)
            logger.warning(f"[{name}] Provider cleanup failed, removing record anyway: {e}")

    for site in sites.find_by_server(name):
        sites.delete(site.domain)
        result.removed_sites.append(site.domain)

    servers.delete(name)
    logger.info(f"[{name}] Deleted server"
                + (f" and {len(result.removed_sites)} site(s)" if result.removed_sites else ''))
    return result


@dataclass
class Fleet:
    """Wired-up collaborators for one command invocation."""
    config: FleetConfig
    store: InventoryStore
    servers: ServerRepository
    sites: SiteRepository
    channel: RemoteChannel
    dispatcher: PlaybookDispatcher

    @classmethod
    def open(cls, config: FleetConfig, inventory_path: Optional[Path] = None) -> 'Fleet':
        """Load the inventory and build the channel and dispatcher."""
        store = InventoryStore(inventory_path or config.inventory_path)
        store.load()
        channel = RemoteChannel(connect_timeout=config.ssh_connect_timeout,
                                command_timeout=config.command_timeout)
        return cls(
            config=config,
            store=store,
            servers=ServerRepository(store),
            sites=SiteRepository(store),
            channel=channel,
            dispatcher=PlaybookDispatcher(channel),
        )

    def provider(self, name: str) -> Provider:
        return get_provider(name, self.config)

    def provisioner(self, provider_name: str) -> Provisioner:
        return Provisioner(
            provider=self.provider(provider_name),
            channel=self.channel,
            servers=self.servers,
            dispatcher=self.dispatcher,
            poll_interval=self.config.poll_interval,
            ready_timeout=self.config.ready_timeout,
            ssh_timeout=self.config.ssh_wait_timeout,
        )

    def delete_server(self, name: str, force: bool = False) -> DeleteResult:
        return delete_server(self.servers, self.sites, name, self.provider, force=force)
