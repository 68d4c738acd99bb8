"""Reverse-order teardown of everything recorded in an inventory."""

import logging
import time
from typing import Callable

from api.models import ROLE_ORDER, Inventory, InventoryRole
from infra.clients import AwsClients
from infra.components import (
    Bucket,
    IamGroup,
    IamPolicy,
    IamRole,
    IamUser,
    Instance,
    InstanceProfile,
    InternetGateway,
    ResourceHandle,
    RouteTable,
    SecurityGroup,
    Subnet,
    Vpc,
)
from infra.errors import ReadinessTimeoutError, ResourceNotFoundError, TeardownError

logger = logging.getLogger(__name__)

TERMINATED_STATE = "terminated"


def handle_for_role(role: InventoryRole, inventory: Inventory, clients: AwsClients) -> ResourceHandle:
    """Rebuild the handle for a recorded role with what its delete needs."""
    resource_id = inventory.get(role)

    if role == InventoryRole.INSTANCE:
        return Instance(clients, resource_id=resource_id)
    if role == InventoryRole.CONTROLLER_USER:
        return IamUser(
            clients,
            group_name=inventory.controller_iam_group_id,
            access_key_id=inventory.access_key_id,
            resource_id=resource_id,
        )
    if role == InventoryRole.CONTROLLER_GROUP:
        return IamGroup(clients, policy_arn=inventory.controller_iam_policy_id, resource_id=resource_id)
    if role in (InventoryRole.CONTROLLER_POLICY, InventoryRole.NODE_POLICY):
        return IamPolicy(clients, resource_id=resource_id)
    if role == InventoryRole.INSTANCE_PROFILE:
        return InstanceProfile(clients, role_name=inventory.node_iam_role_id, resource_id=resource_id)
    if role == InventoryRole.NODE_ROLE:
        return IamRole(clients, policy_arn=inventory.node_iam_policy_id, resource_id=resource_id)
    if role == InventoryRole.ARTIFACT_BUCKET:
        return Bucket(clients, resource_id=resource_id)
    if role == InventoryRole.SECURITY_GROUP:
        return SecurityGroup(clients, resource_id=resource_id)
    if role == InventoryRole.INTERNET_GATEWAY:
        return InternetGateway(clients, vpc_id=inventory.vpc_id, resource_id=resource_id)
    if role == InventoryRole.SUBNET:
        return Subnet(clients, resource_id=resource_id)
    if role == InventoryRole.ROUTE_TABLE:
        return RouteTable(clients, vpc_id=inventory.vpc_id, resource_id=resource_id)
    if role == InventoryRole.VPC:
        return Vpc(clients, resource_id=resource_id)
    raise ValueError(f"Unknown inventory role: {role}")


class TeardownPipeline:
    """Delete inventory roles in reverse creation order, stopping at the first failure."""

    def __init__(
        self,
        inventory: Inventory,
        clients: AwsClients,
        poll_interval: float = 5,
        timeout: float = 600,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        handle_factory: Callable[[InventoryRole, Inventory, AwsClients], ResourceHandle] = handle_for_role,
    ):
        self.inventory = inventory
        self.clients = clients
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock
        self._handle_factory = handle_factory

    def run(self) -> list[InventoryRole]:
        """Tear everything down and return the roles that were deleted."""
        deleted: list[InventoryRole] = []

        for role in reversed(ROLE_ORDER):
            if not self.inventory.get(role):
                logger.info("No %s recorded, skipping", role.value)
                continue

            handle = self._handle_factory(role, self.inventory, self.clients)
            logger.info("Deleting %s %s", handle.kind, handle.id)
            try:
                handle.delete()
                if role == InventoryRole.INSTANCE:
                    self.wait_for_state(handle, TERMINATED_STATE)
            except ResourceNotFoundError:
                logger.warning("%s %s is already gone", handle.kind.capitalize(), handle.id)
            except ReadinessTimeoutError:
                logger.error("Gave up waiting for %s %s to terminate", handle.kind, handle.id)
                raise
            except Exception as e:
                logger.error("Failed to delete %s %s: %s", handle.kind, handle.id, e)
                raise TeardownError(role.value, e) from e

            deleted.append(role)
            logger.info("Deleted %s %s", handle.kind, handle.id)

        return deleted

    def wait_for_state(self, handle: ResourceHandle, expected: str) -> None:
        """Poll ``describe`` until the handle reports ``expected`` or the timeout expires."""
        deadline = self._clock() + self.timeout
        while True:
            state = handle.describe()
            if state == expected:
                return
            if self._clock() >= deadline:
                raise ReadinessTimeoutError(handle.kind, handle.id, expected, self.timeout)
            logger.info("Waiting for %s %s to be %s (currently %s)", handle.kind, handle.id, expected, state)
            self._sleep(self.poll_interval)
