"""DigitalOcean provider.

Droplets are addressed by their own public IPv4 address unless the request
asks for a reserved IP (options['reserved_ip']).
"""

import logging
from typing import Any, Optional

import requests

from providers import register_provider
from providers.base import AccountDescription, NetworkIdentity, ProviderError, ResourceNotFoundError

logger = logging.getLogger(__name__)

API_BASE = 'https://api.digitalocean.com/v2'
REQUEST_TIMEOUT = 30
MANAGED_TAG = 'fleet-driver'


@register_provider('digitalocean')
class DigitalOceanProvider:
    """Droplets with optional reserved IPs."""
    name = 'digitalocean'
    ready_statuses = frozenset({'active'})
    failed_statuses = frozenset({'archive', 'off'})

    def __init__(self, token: str, api_base: str = API_BASE):
        self.token = token
        self.api_base = api_base.rstrip('/')

    @classmethod
    def from_config(cls, config) -> 'DigitalOceanProvider':
        return cls(token=config.get_secret('providers.digitalocean.token'))

    def _request(self, method: str, path: str, ok_missing: bool = False,
                 **kwargs) -> Optional[dict]:
        """Call the API and return the decoded body.

        Returns None for 404 when ok_missing is set, and for empty bodies.
        """
        url = f"{self.api_base}{path}"
        try:
            resp = requests.request(
                method,
                url,
                headers={
                    'Authorization': f'Bearer {self.token}',
                    'Content-Type': 'application/json',
                },
                timeout=REQUEST_TIMEOUT,
                **kwargs,
            )
        except requests.exceptions.Timeout as e:
            raise ProviderError(self.name, f"{method} {path} timed out") from e
        except requests.exceptions.RequestException as e:
            raise ProviderError(self.name, f"{method} {path} failed: {e}") from e

        if resp.status_code == 404 and ok_missing:
            return None
        if resp.status_code == 401:
            raise ProviderError(self.name, "API token rejected (401)")
        if resp.status_code >= 400:
            raise ProviderError(self.name, f"{method} {path} returned {resp.status_code}: {resp.text[:200]}")
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise ProviderError(self.name, f"{method} {path} returned invalid JSON") from e

    def describe_account(self, request) -> AccountDescription:
        images = self._request('GET', '/images', params={'type': 'distribution', 'per_page': 200}) or {}
        keys = self._request('GET', '/account/keys', params={'per_page': 200}) or {}
        vpcs = self._request('GET', '/vpcs', params={'per_page': 200}) or {}

        image_ids: list[str] = []
        for image in images.get('images', []):
            if image.get('slug'):
                image_ids.append(image['slug'])
            image_ids.append(str(image['id']))

        key_ids: list[str] = []
        for key in keys.get('ssh_keys', []):
            key_ids.append(str(key['id']))
            if key.get('fingerprint'):
                key_ids.append(key['fingerprint'])

        networks = [vpc['id'] for vpc in vpcs.get('vpcs', [])
                    if not request.region or vpc.get('region') == request.region]
        return AccountDescription(images=image_ids, networks=networks, keys=key_ids)

    def create_resource(self, request) -> str:
        body: dict[str, Any] = {
            'name': request.name,
            'region': request.region,
            'size': request.size,
            'image': request.image,
            'ssh_keys': [request.key_id] if request.key_id else [],
            'backups': bool(request.options.get('backups', False)),
            'ipv6': bool(request.options.get('ipv6', False)),
            'monitoring': bool(request.options.get('monitoring', False)),
            'tags': [MANAGED_TAG],
        }
        if request.network:
            body['vpc_uuid'] = request.network

        result = self._request('POST', '/droplets', json=body) or {}
        droplet = result.get('droplet') or {}
        if 'id' not in droplet:
            raise ProviderError(self.name, "Create droplet returned no id")
        return str(droplet['id'])

    def _get_droplet(self, resource_id: str) -> dict:
        result = self._request('GET', f'/droplets/{resource_id}', ok_missing=True)
        if result is None:
            raise ResourceNotFoundError(self.name, resource_id)
        return result.get('droplet') or {}

    def get_resource_status(self, resource_id: str) -> str:
        return self._get_droplet(resource_id).get('status', '')

    def get_resource_address(self, resource_id: str) -> Optional[str]:
        networks = self._get_droplet(resource_id).get('networks') or {}
        for net in networks.get('v4', []):
            if net.get('type') == 'public':
                return net.get('ip_address')
        return None

    def destroy_resource(self, resource_id: str) -> None:
        self._request('DELETE', f'/droplets/{resource_id}', ok_missing=True)
        logger.info(f"[digitalocean] Destroyed droplet {resource_id}")

    def requires_network_identity(self, request) -> bool:
        return bool(request.options.get('reserved_ip', False))

    def allocate_network_identity(self, request) -> NetworkIdentity:
        result = self._request('POST', '/reserved_ips', json={'region': request.region}) or {}
        ip = (result.get('reserved_ip') or {}).get('ip')
        if not ip:
            raise ProviderError(self.name, "Reserve IP returned no address")
        # Reserved IPs are identified by their address
        return NetworkIdentity(id=ip, address=ip)

    def associate_network_identity(self, identity: NetworkIdentity, resource_id: str) -> None:
        self._request('POST', f'/reserved_ips/{identity.id}/actions',
                      json={'type': 'assign', 'droplet_id': int(resource_id)})

    def release_network_identity(self, identity_id: str) -> None:
        self._request('DELETE', f'/reserved_ips/{identity_id}', ok_missing=True)
        logger.info(f"[digitalocean] Released reserved IP {identity_id}")

    def default_username(self, request) -> str:
        return 'root'
