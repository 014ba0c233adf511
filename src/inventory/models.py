"""Inventory record types.

Records are persisted with camelCase keys under the top-level `servers` and
`sites` lists of the inventory document.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Optional

from remote.channel import SSHTarget

PROVIDER_NONE = 'none'


@dataclass
class ServerRecord:
    """A server the fleet tool knows about.

    Attributes:
        name: Unique server name
        host: IP address or hostname (unique)
        port: SSH port
        username: SSH login user
        credential_path: Private key path (may start with ~)
        provider: 'none' for servers added by hand, else the provider name
        provider_resource_id: Instance or droplet id, when provisioned
        network_identity_id: Static address allocation id, when one was allocated
        info: Latest server-info snapshot for this invocation (not persisted)
    """
    name: str
    host: str
    port: int = 22
    username: str = 'root'
    credential_path: str = ''
    provider: str = PROVIDER_NONE
    provider_resource_id: Optional[str] = None
    network_identity_id: Optional[str] = None
    info: Optional[dict] = field(default=None, compare=False)

    @property
    def is_provisioned(self) -> bool:
        return self.provider != PROVIDER_NONE and bool(self.provider_resource_id)

    def with_info(self, info: dict) -> 'ServerRecord':
        """Return a copy carrying an info snapshot."""
        return replace(self, info=dict(info))

    def ssh_target(self) -> SSHTarget:
        return SSHTarget(host=self.host, port=self.port,
                         username=self.username, key_path=self.credential_path)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'name': self.name,
            'host': self.host,
            'port': self.port,
            'username': self.username,
            'credentialPath': self.credential_path,
            'provider': self.provider,
        }
        if self.provider_resource_id is not None:
            d['providerResourceId'] = self.provider_resource_id
        if self.network_identity_id is not None:
            d['networkIdentityId'] = self.network_identity_id
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'ServerRecord':
        resource_id = data.get('providerResourceId')
        identity_id = data.get('networkIdentityId')
        return cls(
            name=str(data['name']),
            host=str(data['host']),
            port=int(data.get('port', 22)),
            username=data.get('username', 'root'),
            credential_path=data.get('credentialPath', ''),
            provider=data.get('provider', PROVIDER_NONE),
            provider_resource_id=str(resource_id) if resource_id is not None else None,
            network_identity_id=str(identity_id) if identity_id is not None else None,
        )


@dataclass
class SiteRecord:
    """A site deployed to a server."""
    domain: str
    server: str
    php_version: str = ''
    repo: str = ''
    branch: str = 'main'
    releases: list[str] = field(default_factory=list)
    current_release: Optional[str] = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'domain': self.domain,
            'server': self.server,
            'phpVersion': self.php_version,
            'repo': self.repo,
            'branch': self.branch,
            'releases': list(self.releases),
        }
        if self.current_release is not None:
            d['currentRelease'] = self.current_release
        return d

    @classmethod
    def from_dict(cls, data: dict) -> 'SiteRecord':
        return cls(
            domain=str(data['domain']),
            server=str(data['server']),
            php_version=str(data.get('phpVersion') or ''),
            repo=data.get('repo') or '',
            branch=data.get('branch') or 'main',
            releases=list(data.get('releases') or []),
            current_release=data.get('currentRelease'),
        )
