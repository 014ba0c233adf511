"""Provider-parameterized provisioning state machine.

States run strictly in order. A step that creates an external resource
records its undo step on the compensation stack as soon as the resource
exists. Any failure drains the stack newest-first, then re-raises the
original error annotated with the compensations that themselves failed.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from common import format_duration
from inventory.models import ServerRecord
from inventory.repository import DuplicateHostError, DuplicateNameError, ServerRepository
from inventory.store import InventoryError
from playbooks.dispatcher import PlaybookDispatcher
from playbooks.registry import PlaybookError
from providers.base import NetworkIdentity, Provider, ProviderError
from provisioning.errors import (
    ConnectivityError,
    NetworkIdentityError,
    ProvisioningError,
    ReadinessTimeoutError,
    RegistrationError,
    ResourceCreationError,
    StateError,
    ValidationError,
)
from provisioning.report import ProvisionReport
from provisioning.transaction import CompensationStack
from remote.channel import (
    AuthenticationError,
    RemoteChannel,
    RemoteConnectionError,
    RemoteError,
    SSHTarget,
)
from validation import validate_key_path, validate_port, validate_server_name

logger = logging.getLogger(__name__)


class ProvisioningState(Enum):
    VALIDATING = 'validating'
    CREATING_RESOURCE = 'creating_resource'
    AWAITING_READY = 'awaiting_ready'
    ALLOCATING_NETWORK_IDENTITY = 'allocating_network_identity'
    ASSOCIATING_NETWORK_IDENTITY = 'associating_network_identity'
    VERIFYING_CONNECTIVITY = 'verifying_connectivity'
    REGISTERING_IN_INVENTORY = 'registering_in_inventory'
    DONE = 'done'
    ROLLING_BACK = 'rolling_back'
    FAILED = 'failed'


_NETWORK_IDENTITY_STATES = (
    ProvisioningState.ALLOCATING_NETWORK_IDENTITY,
    ProvisioningState.ASSOCIATING_NETWORK_IDENTITY,
)


@dataclass
class ProvisionRequest:
    """What to provision.

    Attributes:
        name: Server name for the inventory and provider tags
        credential_path: Local private key used to reach the new host
        image: Provider image (AMI id, droplet image slug)
        size: Instance type or droplet size
        region: Provider region
        network: Subnet id (aws) or VPC uuid (digitalocean)
        key_id: Provider-side key pair name or key id
        port: SSH port
        username: SSH user; provider default when None
        options: Provider-specific flags (elastic_ip, reserved_ip, monitoring, ...)
    """
    name: str
    credential_path: str
    image: str = ''
    size: str = ''
    region: str = ''
    network: str = ''
    key_id: str = ''
    port: int = 22
    username: Optional[str] = None
    options: dict = field(default_factory=dict)


@dataclass
class _Run:
    """Mutable state of one provisioning run."""
    resource_id: Optional[str] = None
    identity: Optional[NetworkIdentity] = None
    address: Optional[str] = None
    username: str = ''
    server: Optional[ServerRecord] = None

    def resources(self) -> dict[str, str]:
        found = {}
        if self.resource_id:
            found['resource_id'] = self.resource_id
        if self.identity:
            found['network_identity_id'] = self.identity.id
        return found


class Provisioner:
    """Provision one server at a provider and register it in the inventory."""

    def __init__(
        self,
        provider: Provider,
        channel: RemoteChannel,
        servers: ServerRepository,
        dispatcher: Optional[PlaybookDispatcher] = None,
        poll_interval: float = 5.0,
        ready_timeout: float = 300.0,
        ssh_timeout: float = 120.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.channel = channel
        self.servers = servers
        self.dispatcher = dispatcher
        self.poll_interval = poll_interval
        self.ready_timeout = ready_timeout
        self.ssh_timeout = ssh_timeout
        self._sleep = sleep
        self._clock = clock
        self.state: Optional[ProvisioningState] = None
        self.history: list[ProvisioningState] = []
        self.report: Optional[ProvisionReport] = None

    def _steps(self) -> list[tuple[ProvisioningState, Callable]]:
        return [
            (ProvisioningState.VALIDATING, self._validate),
            (ProvisioningState.CREATING_RESOURCE, self._create_resource),
            (ProvisioningState.AWAITING_READY, self._await_ready),
            (ProvisioningState.ALLOCATING_NETWORK_IDENTITY, self._allocate_network_identity),
            (ProvisioningState.ASSOCIATING_NETWORK_IDENTITY, self._associate_network_identity),
            (ProvisioningState.VERIFYING_CONNECTIVITY, self._verify_connectivity),
            (ProvisioningState.REGISTERING_IN_INVENTORY, self._register),
        ]

    def _enter(self, state: ProvisioningState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug(f"[{self.provider.name}] -> {state.value}")

    def provision(self, request: ProvisionRequest) -> ServerRecord:
        """Run the state machine.

        Returns:
            The registered ServerRecord, with an info snapshot when a
            dispatcher is configured

        Raises:
            ProvisioningError: Any failure, after rollback
        """
        self.history = []
        self.report = ProvisionReport(server=request.name, provider=self.provider.name)
        self.report.start()
        stack = CompensationStack()
        run = _Run()
        needs_identity = False

        logger.info(f"[{request.name}] Provisioning at {self.provider.name}")
        for state, step in self._steps():
            if state in _NETWORK_IDENTITY_STATES and not needs_identity:
                continue
            self._enter(state)
            started = self._clock()
            try:
                message = step(request, run, stack)
            except Exception as e:
                duration = self._clock() - started
                error = e if isinstance(e, ProvisioningError) else ProvisioningError(
                    f"{type(e).__name__}: {e}", state=state.value)
                self.report.fail_state(state.value, str(e), duration)
                logger.error(f"[{request.name}] {state.value} failed: {e}")
                self._roll_back(request, run, stack, error, state)
                if error is e:
                    raise
                raise error from e
            self.report.pass_state(state.value, message or '', self._clock() - started)
            logger.info(f"[{request.name}] {state.value}: {message}")

            if state == ProvisioningState.VALIDATING:
                needs_identity = self.provider.requires_network_identity(request)

        self._enter(ProvisioningState.DONE)
        self.report.finish(success=True)
        logger.info(f"[{request.name}] Provisioned {run.server.host} ({run.resource_id}) "
                    f"in {format_duration(self.report.total_duration)}")
        return run.server

    def _roll_back(self, request: ProvisionRequest, run: _Run, stack: CompensationStack,
                   error: ProvisioningError, failed_state: ProvisioningState) -> None:
        error.state = error.state or failed_state.value
        error.resources = run.resources()

        if stack:
            self._enter(ProvisioningState.ROLLING_BACK)
            started = self._clock()
            logger.warning(f"[{request.name}] Rolling back {len(stack)} step(s)")
            failures = stack.unwind()
            self.report.compensated(
                f"{len(failures)} compensation(s) failed" if failures else 'all compensations succeeded',
                self._clock() - started,
            )
            self.report.cleanup_failures = [str(f) for f in failures]
            error.cleanup_failures = failures
            for failure in failures:
                logger.error(f"[{request.name}] Manual cleanup needed: {failure}")

        self._enter(ProvisioningState.FAILED)
        self.report.finish(success=False)

    def _validate(self, request: ProvisionRequest, run: _Run, stack: CompensationStack) -> str:
        errors = []
        for ok, message in (validate_server_name(request.name),
                            validate_port(request.port),
                            validate_key_path(request.credential_path)):
            if not ok:
                errors.append(message)
        if request.name and self.servers.find_by_name(request.name):
            errors.append(f"Server '{request.name}' already exists")
        if errors:
            raise ValidationError('; '.join(errors))

        try:
            account = self.provider.describe_account(request)
        except ProviderError as e:
            raise ValidationError(f"Cannot read account data: {e}") from e

        if not account.images:
            errors.append("No images available" if not request.image
                          else f"Image not available: {request.image}")
        elif request.image and request.image not in account.images:
            errors.append(f"Image not available: {request.image}")
        if not account.networks:
            errors.append("No networks available")
        elif request.network and request.network not in account.networks:
            errors.append(f"Network not available: {request.network}")
        if not account.keys:
            errors.append("No provider keys available")
        elif request.key_id and request.key_id not in account.keys:
            errors.append(f"Key not available: {request.key_id}")
        if errors:
            raise ValidationError('; '.join(errors))

        run.username = request.username or self.provider.default_username(request)
        return f"account data present, ssh user {run.username}"

    def _create_resource(self, request: ProvisionRequest, run: _Run, stack: CompensationStack) -> str:
        try:
            resource_id = self.provider.create_resource(request)
        except ProviderError as e:
            raise ResourceCreationError(str(e)) from e

        run.resource_id = resource_id
        stack.record(f"destroy resource {resource_id}",
                     lambda: self.provider.destroy_resource(resource_id),
                     resource_id)
        return f"created {resource_id}"

    def _await_ready(self, request: ProvisionRequest, run: _Run, stack: CompensationStack) -> str:
        deadline = self._clock() + self.ready_timeout
        last_status = ''
        while True:
            try:
                last_status = self.provider.get_resource_status(run.resource_id)
            except ProviderError as e:
                raise StateError(f"Cannot read status of {run.resource_id}: {e}") from e

            if last_status in self.provider.ready_statuses:
                return f"{run.resource_id} is {last_status}"
            if last_status in self.provider.failed_statuses:
                raise StateError(f"{run.resource_id} entered terminal status '{last_status}'")
            if self._clock() >= deadline:
                raise ReadinessTimeoutError(
                    f"{run.resource_id} not ready after {self.ready_timeout}s (last status '{last_status}')")
            logger.debug(f"[{request.name}] {run.resource_id} status {last_status}, waiting")
            self._sleep(self.poll_interval)

    def _allocate_network_identity(self, request: ProvisionRequest, run: _Run,
                                   stack: CompensationStack) -> str:
        try:
            identity = self.provider.allocate_network_identity(request)
        except ProviderError as e:
            raise NetworkIdentityError(f"Allocate failed: {e}") from e

        run.identity = identity
        stack.record(f"release network identity {identity.id}",
                     lambda: self.provider.release_network_identity(identity.id),
                     identity.id)
        return f"allocated {identity.address}"

    def _associate_network_identity(self, request: ProvisionRequest, run: _Run,
                                    stack: CompensationStack) -> str:
        try:
            self.provider.associate_network_identity(run.identity, run.resource_id)
        except ProviderError as e:
            raise NetworkIdentityError(f"Associate failed: {e}") from e
        run.address = run.identity.address
        return f"{run.identity.address} -> {run.resource_id}"

    def _verify_connectivity(self, request: ProvisionRequest, run: _Run,
                             stack: CompensationStack) -> str:
        if not run.address:
            try:
                run.address = self.provider.get_resource_address(run.resource_id)
            except ProviderError as e:
                raise ConnectivityError(f"Cannot resolve address of {run.resource_id}: {e}") from e
            if not run.address:
                raise ConnectivityError(f"{run.resource_id} has no public address")

        target = SSHTarget(host=run.address, port=request.port,
                           username=run.username, key_path=request.credential_path)
        self._wait_for_ssh(target)

        run.server = ServerRecord(
            name=request.name,
            host=run.address,
            port=request.port,
            username=run.username,
            credential_path=request.credential_path,
            provider=self.provider.name,
            provider_resource_id=run.resource_id,
            network_identity_id=run.identity.id if run.identity else None,
        )

        if self.dispatcher is not None:
            try:
                result = self.dispatcher.dispatch(run.server, 'server-info')
            except (PlaybookError, RemoteError) as e:
                raise ConnectivityError(f"server-info failed on {target}: {e}") from e
            run.server = run.server.with_info(result.data)
            return f"{target} reachable, {run.server.info.get('distro', 'unknown')} detected"
        return f"{target} reachable"

    def _wait_for_ssh(self, target: SSHTarget) -> None:
        """Poll until SSH accepts the key. Rejected credentials fail at once."""
        deadline = self._clock() + self.ssh_timeout
        while True:
            try:
                self.channel.verify_connectivity(target)
                return
            except AuthenticationError as e:
                raise ConnectivityError(f"SSH authentication failed: {e}") from e
            except RemoteConnectionError as e:
                if self._clock() >= deadline:
                    raise ConnectivityError(f"SSH not reachable after {self.ssh_timeout}s: {e}") from e
                logger.debug(f"Waiting for SSH on {target}: {e}")
            self._sleep(self.poll_interval)

    def _register(self, request: ProvisionRequest, run: _Run, stack: CompensationStack) -> str:
        try:
            self.servers.create(run.server)
        except (DuplicateNameError, DuplicateHostError) as e:
            raise RegistrationError(str(e)) from e
        except InventoryError as e:
            raise RegistrationError(f"Cannot write inventory: {e}") from e
        return f"registered {run.server.name}"
