"""Background cluster operations and pool reconciliation for the controller service."""

import asyncio
import logging
from collections import defaultdict
from functools import lru_cache
from typing import Callable, Optional

from api.database import Database
from api.models import ClusterConfig, ClusterStatus, Inventory, MachinePoolSpec, ReconcileResult
from api.services.reconciler import MachinePoolReconciler
from api.settings import Settings, get_settings
from api.storage import FileMachinePoolStorage, InventoryStorage
from infra.artifacts import ArtifactStore
from infra.clients import AwsClients
from infra.cluster import create_cluster
from infra.teardown import TeardownPipeline

logger = logging.getLogger(__name__)

ClientsFactory = Callable[[str], AwsClients]


def clients_factory(settings: Settings) -> ClientsFactory:
    """Build AWS clients per region using the configured (optional) assume-role."""

    def build(region: str) -> AwsClients:
        return AwsClients(region, role_arn=settings.aws_role_arn, external_id=settings.aws_external_id)

    return build


@lru_cache
def get_clients_factory() -> ClientsFactory:
    return clients_factory(get_settings())


class PoolLocks:
    """One lock per (cluster, pool) so reconciles of a pool never overlap."""

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    def get(self, cluster: str, pool: str) -> asyncio.Lock:
        return self._locks[(cluster, pool)]


@lru_cache
def get_pool_locks() -> PoolLocks:
    return PoolLocks()


def run_create(
    db: Database,
    storage: InventoryStorage,
    settings: Settings,
    make_clients: ClientsFactory,
    config: ClusterConfig,
    machine: MachinePoolSpec,
) -> Optional[Inventory]:
    """Create a cluster and record the outcome; never raises."""
    db.update_cluster_status(config.name, ClusterStatus.CREATING)
    try:
        result = create_cluster(
            config,
            machine,
            make_clients(config.region),
            profile_propagation_seconds=settings.profile_propagation_seconds,
            instance_type=settings.instance_type,
        )
        inventory = result.inventory
        storage.save(config.name, inventory)
    except Exception as e:
        logger.error("Create of cluster %s failed: %s", config.name, e)
        db.update_cluster_status(config.name, ClusterStatus.FAILED, error_message=str(e))
        return None

    db.update_cluster_status(
        config.name,
        ClusterStatus.READY,
        inventory=inventory.to_json(),
        error_message="",
    )
    logger.info("Cluster %s is ready", config.name)
    return inventory


def run_destroy(
    db: Database,
    storage: InventoryStorage,
    settings: Settings,
    make_clients: ClientsFactory,
    inventory: Inventory,
) -> bool:
    """Tear a cluster down and record the outcome; never raises."""
    name = inventory.cluster_name
    try:
        TeardownPipeline(
            inventory,
            make_clients(inventory.region),
            poll_interval=settings.termination_poll_seconds,
            timeout=settings.termination_timeout_seconds,
        ).run()
        storage.delete(name)
    except Exception as e:
        logger.error("Destroy of cluster %s failed: %s", name, e)
        db.update_cluster_status(name, ClusterStatus.FAILED, error_message=f"Destroy failed: {e}")
        return False

    db.update_cluster_status(name, ClusterStatus.DESTROYED, inventory="", error_message="")
    logger.info("Cluster %s destroyed", name)
    return True


async def reconcile_pool(
    inventory: Inventory,
    pool_name: str,
    pools: FileMachinePoolStorage,
    make_clients: ClientsFactory,
    locks: PoolLocks,
) -> Optional[ReconcileResult]:
    """Run the desired-state-changed callback for one pool, serialized per pool."""
    clients = make_clients(inventory.region)
    reconciler = MachinePoolReconciler(
        inventory,
        clients,
        artifacts=ArtifactStore(clients, inventory.bucket_id) if inventory.bucket_id else None,
        pools=pools,
    )
    async with locks.get(inventory.cluster_name, pool_name):
        return await asyncio.to_thread(reconciler.on_desired_state_changed, pool_name)
