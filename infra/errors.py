"""Exceptions raised by the provisioning, teardown and bootstrap layers."""

from typing import Optional

from botocore.exceptions import ClientError

# Error codes AWS returns when the object a call refers to no longer exists
NOT_FOUND_ERROR_CODES = {
    "InvalidVpcID.NotFound",
    "InvalidSubnetID.NotFound",
    "InvalidInternetGatewayID.NotFound",
    "InvalidGroup.NotFound",
    "InvalidInstanceID.NotFound",
    "InvalidRouteTableID.NotFound",
    "NoSuchBucket",
    "NoSuchEntity",
    "NoSuchKey",
}


class BootctlError(Exception):
    """Base class for all bootctl failures."""


class ResourceNotFoundError(BootctlError):
    """A resource referenced by id does not exist on the provider side."""

    def __init__(self, kind: str, resource_id: str):
        self.kind = kind
        self.resource_id = resource_id
        super().__init__(f"{kind} {resource_id} not found")


class ProvisioningError(BootctlError):
    """A create step failed; compensation has already been attempted."""

    def __init__(self, role: str, cause: BaseException, rollback_failures: Optional[list[str]] = None):
        self.role = role
        self.cause = cause
        self.rollback_failures = rollback_failures or []
        message = f"Failed to create {role}: {cause}"
        if self.rollback_failures:
            message += f" (rollback incomplete for: {', '.join(self.rollback_failures)})"
        super().__init__(message)


class TeardownError(BootctlError):
    """A delete step failed and the teardown was aborted."""

    def __init__(self, role: str, cause: BaseException):
        self.role = role
        self.cause = cause
        super().__init__(f"Failed to delete {role}: {cause}")


class ReadinessTimeoutError(BootctlError):
    """A resource did not reach the expected state in time."""

    def __init__(self, kind: str, resource_id: str, expected: str, timeout: float):
        self.kind = kind
        self.resource_id = resource_id
        self.expected = expected
        self.timeout = timeout
        super().__init__(
            f"{kind} {resource_id} did not reach state '{expected}' within {timeout:g}s"
        )


class InventoryOrderError(BootctlError):
    """An inventory role was recorded before the roles it depends on."""


class ArtifactNotFoundError(BootctlError):
    """The join artifact has not been deposited yet."""


class NodeBootstrapError(BootctlError):
    """An external bootstrap command (kubeadm, kubectl) failed."""

    def __init__(self, command: list[str], returncode: int, output: str = ""):
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(f"Command {' '.join(command)} exited with status {returncode}")


def is_not_found(error: ClientError) -> bool:
    """Check if a botocore ClientError means the target resource is gone."""
    code = error.response.get("Error", {}).get("Code", "")
    return code in NOT_FOUND_ERROR_CODES


# Codes meaning an association (attachment, membership) was already undone
NOT_ATTACHED_ERROR_CODES = {"Gateway.NotAttached"}


def is_already_detached(error: ClientError) -> bool:
    """Check if a detach/remove call failed only because there was nothing left to detach."""
    code = error.response.get("Error", {}).get("Code", "")
    return code in NOT_ATTACHED_ERROR_CODES or code in NOT_FOUND_ERROR_CODES
