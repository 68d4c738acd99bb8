"""Cluster create/destroy endpoints."""

import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from api.database import ClusterRecord, Database, get_database
from api.models import ClusterCreateRequest, ClusterListResponse, ClusterResponse, ClusterStatus, DestroyRequest
from api.services.clusters import ClientsFactory, get_clients_factory, run_create, run_destroy
from api.settings import Settings, get_settings
from api.storage import InventoryStorage, get_inventory_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/clusters", tags=["clusters"])


def _to_response(record: ClusterRecord, message: str = "") -> ClusterResponse:
    return ClusterResponse(
        name=record.name,
        region=record.region,
        status=record.status,
        message=message,
        inventory=json.loads(record.inventory) if record.inventory else None,
        error_message=record.error_message or None,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


@router.post(
    "",
    response_model=ClusterResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Create cluster",
    description="Provision the network, IAM, artifact bucket and master instance for a cluster. "
    "Runs in the background; poll GET /api/v1/clusters/{name} for the outcome.",
    responses={
        202: {"description": "Create started"},
        409: {"description": "Cluster exists or an operation is already running"},
    },
)
async def create_cluster(
    request: ClusterCreateRequest,
    background_tasks: BackgroundTasks,
    db: Database = Depends(get_database),
    storage: InventoryStorage = Depends(get_inventory_storage),
    settings: Settings = Depends(get_settings),
    make_clients: ClientsFactory = Depends(get_clients_factory),
) -> ClusterResponse:
    """Start creating a cluster."""
    name = request.cluster.name

    existing = db.get_cluster(name)
    if existing and existing.status == ClusterStatus.READY:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cluster '{name}' already exists. Destroy it first.",
        )

    try:
        record = db.start_operation(name, request.cluster.region, ClusterStatus.PENDING)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    background_tasks.add_task(
        run_create, db, storage, settings, make_clients, request.cluster, request.machine
    )
    logger.info("Create of cluster %s accepted", name)
    return _to_response(record, message="Cluster creation started")


@router.get(
    "",
    response_model=ClusterListResponse,
    summary="List clusters",
    description="Every cluster the service has created or destroyed, with its last known status.",
)
async def list_clusters(db: Database = Depends(get_database)) -> ClusterListResponse:
    records = db.list_clusters()
    return ClusterListResponse(clusters=[_to_response(r) for r in records], total=len(records))


@router.get(
    "/{name}",
    response_model=ClusterResponse,
    summary="Get cluster status",
)
async def get_cluster(
    name: str,
    db: Database = Depends(get_database),
) -> ClusterResponse:
    record = db.get_cluster(name)
    if not record:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Cluster '{name}' not found",
        )
    return _to_response(record)


@router.delete(
    "/{name}",
    response_model=ClusterResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Destroy cluster",
    description="Delete every resource recorded in the cluster inventory, in reverse creation order.",
    responses={
        202: {"description": "Destroy started"},
        404: {"description": "No inventory for this cluster"},
        409: {"description": "An operation is already running"},
    },
)
async def destroy_cluster(
    name: str,
    request: DestroyRequest,
    background_tasks: BackgroundTasks,
    db: Database = Depends(get_database),
    storage: InventoryStorage = Depends(get_inventory_storage),
    settings: Settings = Depends(get_settings),
    make_clients: ClientsFactory = Depends(get_clients_factory),
) -> ClusterResponse:
    """Start destroying a cluster."""
    inventory = storage.get(name)
    if inventory is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No inventory found for cluster '{name}'",
        )

    try:
        record = db.start_operation(name, inventory.region, ClusterStatus.DESTROYING)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    background_tasks.add_task(run_destroy, db, storage, settings, make_clients, inventory)
    logger.info("Destroy of cluster %s accepted", name)
    return _to_response(record, message="Cluster destruction started")
