"""Provisioning errors.

Every error records the state it was raised in, the external resources that
existed at that point, and any compensations that failed while rolling back.
"""

from typing import Optional


class ProvisioningError(Exception):
    """Base exception for provisioning failures."""
    code = "E400"

    def __init__(self, message: str, state: Optional[str] = None):
        self.message = message
        self.state = state
        self.resources: dict[str, str] = {}
        self.cleanup_failures: list = []
        super().__init__(message)

    def __str__(self) -> str:
        text = f"{self.code}: {self.message}"
        if self.state:
            text += f" (during {self.state})"
        if self.cleanup_failures:
            lines = [f"  - {failure}" for failure in self.cleanup_failures]
            text += "\nRollback incomplete, manual cleanup needed:\n" + "\n".join(lines)
        return text


class ValidationError(ProvisioningError):
    """Request rejected before anything was created."""
    code = "E401"


class ResourceCreationError(ProvisioningError):
    """Provider refused to create the resource."""
    code = "E402"


class ReadinessTimeoutError(ProvisioningError, TimeoutError):
    """Resource did not reach a ready status in time."""
    code = "E403"


class StateError(ProvisioningError):
    """Resource entered a terminal failure status."""
    code = "E404"


class NetworkIdentityError(ProvisioningError):
    """Static address could not be allocated or associated."""
    code = "E405"


class ConnectivityError(ProvisioningError):
    """The new host never accepted SSH."""
    code = "E406"


class RegistrationError(ProvisioningError):
    """The server could not be recorded in the inventory."""
    code = "E407"
