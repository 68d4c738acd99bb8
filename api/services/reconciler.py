"""Machine pool reconciliation: converge the live instance count on the desired replicas."""

import logging
from typing import Optional

from api.models import (
    Inventory,
    InventoryRole,
    MachinePoolSpec,
    ObservedPool,
    ReconcileAction,
    ReconcileResult,
)
from api.storage import FileMachinePoolStorage
from infra.artifacts import ArtifactStore
from infra.clients import AwsClients
from infra.cluster import MASTER_MACHINE_TYPE, worker_user_data
from infra.components import Instance, list_pool_instances
from infra.pipeline import CreatePipeline, CreateStep

logger = logging.getLogger(__name__)

WORKER_MACHINE_TYPES = {"worker"}


class MachinePoolReconciler:
    """Scale a cluster's machine pools up to their desired replica count.

    The observed count is recomputed from tagged instances on every pass, so
    re-running a pass after its instances are visible creates nothing. Scaling
    down is not supported and is reported rather than acted on.
    """

    def __init__(
        self,
        inventory: Inventory,
        clients: AwsClients,
        artifacts: Optional[ArtifactStore] = None,
        pools: Optional[FileMachinePoolStorage] = None,
    ):
        self.inventory = inventory
        self.clients = clients
        self.artifacts = artifacts
        self.pools = pools

    @property
    def cluster_name(self) -> str:
        return self.inventory.cluster_name

    def observe(self, spec: MachinePoolSpec) -> ObservedPool:
        instance_ids = list_pool_instances(self.clients, self.cluster_name, spec.machine_type)
        return ObservedPool(
            cluster=self.cluster_name,
            machine_type=spec.machine_type,
            instance_ids=instance_ids,
        )

    def reconcile(self, spec: MachinePoolSpec) -> ReconcileResult:
        logger.info("Reconciling for machine %s, type %s", spec.name, spec.machine_type)

        if spec.machine_type == MASTER_MACHINE_TYPE:
            return ReconcileResult(pool=spec.name, desired=spec.replicas, actual=0, action=ReconcileAction.IGNORED)
        if spec.machine_type not in WORKER_MACHINE_TYPES:
            logger.info("Do not recognize machine type %s", spec.machine_type)
            return ReconcileResult(pool=spec.name, desired=spec.replicas, actual=0, action=ReconcileAction.IGNORED)

        try:
            observed = self.observe(spec)
        except Exception as e:
            logger.error("Failed to get machines for pool %s: %s", spec.name, e)
            return ReconcileResult(
                pool=spec.name,
                desired=spec.replicas,
                actual=0,
                action=ReconcileAction.FAILED,
                error=str(e),
            )

        result = ReconcileResult(
            pool=spec.name,
            desired=spec.replicas,
            actual=observed.count,
            action=ReconcileAction.IN_SYNC,
        )

        if spec.replicas < observed.count:
            logger.warning(
                "Fewer machines requested for pool %s (%d < %d); scaling down is not supported",
                spec.name,
                spec.replicas,
                observed.count,
            )
            result.action = ReconcileAction.SCALE_DOWN_UNSUPPORTED
            return result

        if spec.replicas == observed.count:
            logger.info("Desired number of machines running for pool %s", spec.name)
            return result

        delta = spec.replicas - observed.count
        logger.info("More machines requested for pool %s: creating %d", spec.name, delta)
        try:
            user_data = self._user_data()
            for _ in range(delta):
                result.created_instance_ids.append(self._launch(spec, user_data))
        except Exception as e:
            logger.error("Failed to provision instances for pool %s: %s", spec.name, e)
            result.action = ReconcileAction.FAILED
            result.error = str(e)
            return result

        result.action = ReconcileAction.SCALED_UP
        return result

    def _user_data(self) -> str:
        if self.artifacts is None:
            return worker_user_data(bucket=self.inventory.bucket_id, region=self.inventory.region)
        # the join token expires, so always fetch the current one
        return worker_user_data(join_command=self.artifacts.retrieve())

    def _launch(self, spec: MachinePoolSpec, user_data: str) -> str:
        def build(ctx):
            return Instance(
                self.clients,
                image_id=spec.image_id,
                subnet_id=self.inventory.subnet_id,
                security_group_id=self.inventory.security_group_id,
                instance_profile=self.inventory.instance_profile_id,
                cluster_name=self.cluster_name,
                machine_type=spec.machine_type,
                name=f"{self.cluster_name}-{spec.name}",
                key_name=spec.key_name,
                user_data=user_data,
                instance_type=spec.instance_type,
            )

        # workers are tracked by tag, not by the cluster inventory
        pipeline = CreatePipeline([CreateStep(InventoryRole.INSTANCE, build, record=False)])
        result = pipeline.run(self.inventory.model_copy())
        return result.handles[InventoryRole.INSTANCE].id

    def on_desired_state_changed(self, pool_name: str) -> Optional[ReconcileResult]:
        """Entry point for desired-state change notifications."""
        if self.pools is None:
            raise ValueError("No machine pool storage configured")

        spec = self.pools.get(self.cluster_name, pool_name)
        if spec is None:
            logger.info("Machine pool %s/%s no longer exists", self.cluster_name, pool_name)
            return None

        return self.reconcile(spec)
