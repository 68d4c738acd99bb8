"""Desired-state endpoints for worker machine pools."""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from api.models import Inventory, MachinePoolListResponse, MachinePoolResponse, MachinePoolSpec
from api.services.clusters import (
    ClientsFactory,
    PoolLocks,
    get_clients_factory,
    get_pool_locks,
    reconcile_pool,
)
from api.services.reconciler import MachinePoolReconciler
from api.storage import FileMachinePoolStorage, InventoryStorage, get_inventory_storage, get_pool_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/clusters", tags=["machine pools"])


def _require_inventory(storage: InventoryStorage, name: str) -> Inventory:
    inventory = storage.get(name)
    if inventory is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Cluster '{name}' not found",
        )
    return inventory


@router.get(
    "/{name}/pools",
    response_model=MachinePoolListResponse,
    summary="List machine pools",
    description="Desired specs of every machine pool stored for the cluster.",
)
async def list_machine_pools(
    name: str,
    storage: InventoryStorage = Depends(get_inventory_storage),
    pools: FileMachinePoolStorage = Depends(get_pool_storage),
) -> MachinePoolListResponse:
    _require_inventory(storage, name)
    specs = pools.list_pools(name)
    return MachinePoolListResponse(cluster=name, pools=specs, total=len(specs))


@router.put(
    "/{name}/pools/{pool}",
    response_model=MachinePoolResponse,
    summary="Set machine pool desired state",
    description="Store the desired pool spec and reconcile the pool against it.",
)
async def put_machine_pool(
    name: str,
    pool: str,
    spec: MachinePoolSpec,
    storage: InventoryStorage = Depends(get_inventory_storage),
    pools: FileMachinePoolStorage = Depends(get_pool_storage),
    make_clients: ClientsFactory = Depends(get_clients_factory),
    locks: PoolLocks = Depends(get_pool_locks),
) -> MachinePoolResponse:
    if spec.name != pool:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Pool name in body ('{spec.name}') does not match path ('{pool}')",
        )

    inventory = _require_inventory(storage, name)
    pools.save(name, spec)
    logger.info("Desired state of pool %s/%s set to %d replicas", name, pool, spec.replicas)

    result = await reconcile_pool(inventory, pool, pools, make_clients, locks)
    return MachinePoolResponse(cluster=name, spec=spec, reconcile=result)


@router.get(
    "/{name}/pools/{pool}",
    response_model=MachinePoolResponse,
    summary="Get machine pool",
    description="Desired pool spec plus the live count of tagged pending/running instances.",
)
async def get_machine_pool(
    name: str,
    pool: str,
    storage: InventoryStorage = Depends(get_inventory_storage),
    pools: FileMachinePoolStorage = Depends(get_pool_storage),
    make_clients: ClientsFactory = Depends(get_clients_factory),
) -> MachinePoolResponse:
    inventory = _require_inventory(storage, name)
    spec = pools.get(name, pool)
    if spec is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Machine pool '{name}/{pool}' not found",
        )

    reconciler = MachinePoolReconciler(inventory, make_clients(inventory.region))
    try:
        observed = await asyncio.to_thread(reconciler.observe, spec)
    except Exception as e:
        logger.exception("Failed to list instances for pool %s/%s: %s", name, pool, e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to list instances: {e}",
        )

    return MachinePoolResponse(cluster=name, spec=spec, observed=observed)
