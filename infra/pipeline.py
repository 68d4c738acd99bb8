"""Ordered create pipeline with best-effort reverse compensation.

Each ``CreateStep`` builds a resource handle from what earlier steps produced,
creates it and records its id into the inventory. When any step fails, every
handle created so far is deleted, most recent first, and the original error
is raised as ``ProvisioningError``.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from api.models import Inventory, InventoryRole
from infra.components.base import ResourceHandle
from infra.errors import ProvisioningError

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    """State shared by the steps of one pipeline run."""

    inventory: Inventory
    handles: dict[InventoryRole, ResourceHandle] = field(default_factory=dict)
    secrets: dict[str, str] = field(default_factory=dict)

    def id_of(self, role: InventoryRole) -> str:
        """Id of a resource created by an earlier step of this run (or already in the inventory)."""
        handle = self.handles.get(role)
        if handle is not None and handle.id:
            return handle.id
        resource_id = self.inventory.get(role)
        if not resource_id:
            raise KeyError(f"{role.value} has not been created in this run")
        return resource_id

    def handle(self, role: InventoryRole) -> ResourceHandle:
        return self.handles[role]


@dataclass
class CreateStep:
    """Create one resource and record it under ``role``."""

    role: InventoryRole
    build: Callable[[PipelineContext], ResourceHandle]
    record: bool = True


@dataclass
class WaitStep:
    """Fixed settling delay for resources that expose no readiness signal."""

    seconds: float
    reason: str = ""


Step = Union[CreateStep, WaitStep]


@dataclass
class PipelineResult:
    inventory: Inventory
    secrets: dict[str, str]
    handles: dict[InventoryRole, ResourceHandle]


class CreatePipeline:
    """Run steps in order, compensating in reverse on the first failure."""

    def __init__(
        self,
        steps: list[Step],
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.steps = steps
        self._sleep = sleep

    def run(self, inventory: Inventory, context: Optional[PipelineContext] = None) -> PipelineResult:
        ctx = context or PipelineContext(inventory=inventory)
        rollback: list[tuple[InventoryRole, ResourceHandle]] = []

        for step in self.steps:
            if isinstance(step, WaitStep):
                logger.info("Pausing %gs: %s", step.seconds, step.reason or "settling")
                self._sleep(step.seconds)
                continue

            role = step.role
            handle: Optional[ResourceHandle] = None
            try:
                handle = step.build(ctx)
                logger.info("Creating %s...", handle.kind)
                resource_id = handle.create()
                rollback.append((role, handle))
                if step.record:
                    inventory.record(role, resource_id)
            except Exception as e:
                logger.error("Failed to create %s: %s", role.value, e)
                if handle is not None and handle.id and not any(h is handle for _, h in rollback):
                    logger.warning(
                        "%s %s was partially created and may need manual cleanup",
                        handle.kind,
                        handle.id,
                    )
                failures = self._compensate(rollback)
                raise ProvisioningError(role.value, e, failures) from e

            ctx.handles[role] = handle
            ctx.secrets.update(handle.secrets())
            logger.info("%s ID: %s", handle.kind.capitalize(), resource_id)

        return PipelineResult(inventory=inventory, secrets=dict(ctx.secrets), handles=dict(ctx.handles))

    def _compensate(self, rollback: list[tuple[InventoryRole, ResourceHandle]]) -> list[str]:
        """Delete created resources most recent first; never stops on a failure."""
        if not rollback:
            return []

        logger.info("Deleting infrastructure that was created")
        failures: list[str] = []
        while rollback:
            role, handle = rollback.pop()
            try:
                handle.delete()
                logger.info("Deleted %s %s", handle.kind, handle.id)
            except Exception as e:
                logger.error("Failed to delete %s %s: %s", handle.kind, handle.id, e)
                failures.append(role.value)
        return failures
