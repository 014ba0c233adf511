"""Server provisioning with compensating rollback."""

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
from provisioning.orchestrator import ProvisioningState, ProvisionRequest, Provisioner
from provisioning.report import ProvisionReport, StateResult
from provisioning.transaction import Compensation, CompensationFailure, CompensationStack

__all__ = [
    'Compensation',
    'CompensationFailure',
    'CompensationStack',
    'ConnectivityError',
    'NetworkIdentityError',
    'ProvisionReport',
    'ProvisionRequest',
    'Provisioner',
    'ProvisioningError',
    'ProvisioningState',
    'ReadinessTimeoutError',
    'RegistrationError',
    'ResourceCreationError',
    'StateError',
    'StateResult',
    'ValidationError',
]
