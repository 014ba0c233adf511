"""Typed repositories over the inventory store.

The store is a generic tree; uniqueness of server names, server hosts and
site domains is enforced here.
"""

import logging
from typing import Optional

from inventory.models import ServerRecord, SiteRecord
from inventory.store import InventoryError, InventoryStore

logger = logging.getLogger(__name__)

SERVERS_KEY = 'servers'
SITES_KEY = 'sites'


class DuplicateNameError(InventoryError):
    """A record with this name or domain already exists."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__("E310", f"{kind} '{name}' already exists")


class DuplicateHostError(InventoryError):
    """A server with this host already exists."""

    def __init__(self, host: str, existing: str):
        self.host = host
        self.existing = existing
        super().__init__("E311", f"Host '{host}' is already used by server '{existing}'")


class RecordNotFoundError(InventoryError):
    """No record with this name."""

    def __init__(self, kind: str, name: str):
        super().__init__("E312", f"{kind} '{name}' not found")


class ServerRepository:
    """Server records stored under the `servers` list."""

    def __init__(self, store: InventoryStore):
        self.store = store

    def _raw(self) -> list[dict]:
        return [s for s in (self.store.get(SERVERS_KEY) or []) if isinstance(s, dict)]

    def all(self) -> list[ServerRecord]:
        return [ServerRecord.from_dict(s) for s in self._raw()]

    def find_by_name(self, name: str) -> Optional[ServerRecord]:
        for raw in self._raw():
            if raw.get('name') == name:
                return ServerRecord.from_dict(raw)
        return None

    def find_by_host(self, host: str) -> Optional[ServerRecord]:
        for raw in self._raw():
            if raw.get('host') == host:
                return ServerRecord.from_dict(raw)
        return None

    def create(self, server: ServerRecord) -> None:
        """Add a server.

        Raises:
            DuplicateNameError: Name already present
            DuplicateHostError: Host already present
        """
        if self.find_by_name(server.name):
            raise DuplicateNameError('Server', server.name)
        if existing := self.find_by_host(server.host):
            raise DuplicateHostError(server.host, existing.name)

        servers = self._raw()
        servers.append(server.to_dict())
        self.store.set(SERVERS_KEY, servers)
        logger.debug(f"Added server '{server.name}' to inventory")

    def update(self, server: ServerRecord) -> None:
        """Replace the stored record with the same name."""
        servers = self._raw()
        for i, raw in enumerate(servers):
            if raw.get('name') == server.name:
                servers[i] = server.to_dict()
                self.store.set(SERVERS_KEY, servers)
                return
        raise RecordNotFoundError('Server', server.name)

    def delete(self, name: str) -> bool:
        """Remove a server by name. Returns False if it was not present."""
        servers = self._raw()
        remaining = [s for s in servers if s.get('name') != name]
        if len(remaining) == len(servers):
            return False
        self.store.set(SERVERS_KEY, remaining)
        logger.debug(f"Removed server '{name}' from inventory")
        return True


class SiteRepository:
    """Site records stored under the `sites` list, keyed by domain."""

    def __init__(self, store: InventoryStore):
        self.store = store

    def _raw(self) -> list[dict]:
        return [s for s in (self.store.get(SITES_KEY) or []) if isinstance(s, dict)]

    def all(self) -> list[SiteRecord]:
        return [SiteRecord.from_dict(s) for s in self._raw()]

    def find_by_domain(self, domain: str) -> Optional[SiteRecord]:
        for raw in self._raw():
            if raw.get('domain') == domain:
                return SiteRecord.from_dict(raw)
        return None

    def find_by_server(self, server_name: str) -> list[SiteRecord]:
        return [SiteRecord.from_dict(s) for s in self._raw() if s.get('server') == server_name]

    def create(self, site: SiteRecord) -> None:
        if self.find_by_domain(site.domain):
            raise DuplicateNameError('Site', site.domain)
        sites = self._raw()
        sites.append(site.to_dict())
        self.store.set(SITES_KEY, sites)

    def add_release(self, domain: str, release: str) -> SiteRecord:
        """Append a release and make it current."""
        sites = self._raw()
        for i, raw in enumerate(sites):
            if raw.get('domain') == domain:
                site = SiteRecord.from_dict(raw)
                site.releases.append(release)
                site.current_release = release
                sites[i] = site.to_dict()
                self.store.set(SITES_KEY, sites)
                return site
        raise RecordNotFoundError('Site', domain)

    def delete(self, domain: str) -> bool:
        sites = self._raw()
        remaining = [s for s in sites if s.get('domain') != domain]
        if len(remaining) == len(sites):
            return False
        self.store.set(SITES_KEY, remaining)
        return True
