"""Webhook endpoints for external desired-state watchers."""

import hashlib
import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError

from api.models import MachinePoolEvent
from api.services.clusters import ClientsFactory, PoolLocks, get_clients_factory, get_pool_locks, reconcile_pool
from api.settings import Settings, get_settings
from api.storage import FileMachinePoolStorage, InventoryStorage, get_inventory_storage, get_pool_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


def _verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Verify webhook signature using HMAC-SHA256."""
    if not secret:
        return True

    expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()

    if signature.startswith("sha256="):
        return hmac.compare_digest(f"sha256={expected}", signature)
    return hmac.compare_digest(expected, signature)


@router.post(
    "/machine-pools",
    summary="Machine pool changed",
    description="Receives desired-state change events for a machine pool and reconciles it.",
)
async def machine_pool_webhook(
    request: Request,
    signature: str = Header(default="", alias="X-Bootctl-Signature"),
    settings: Settings = Depends(get_settings),
    storage: InventoryStorage = Depends(get_inventory_storage),
    pools: FileMachinePoolStorage = Depends(get_pool_storage),
    make_clients: ClientsFactory = Depends(get_clients_factory),
    locks: PoolLocks = Depends(get_pool_locks),
) -> dict:
    payload = await request.body()

    if not _verify_signature(payload, signature, settings.webhook_secret):
        logger.warning("Invalid webhook signature received")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )

    try:
        event = MachinePoolEvent.model_validate_json(payload)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    inventory = storage.get(event.cluster)
    if inventory is None:
        logger.info("Ignoring event for unknown cluster %s", event.cluster)
        return {"processed": False, "reason": f"unknown cluster {event.cluster}"}

    result = await reconcile_pool(inventory, event.pool, pools, make_clients, locks)
    if result is None:
        return {"processed": False, "reason": f"unknown pool {event.pool}"}

    logger.info("Pool %s/%s reconciled: %s", event.cluster, event.pool, result.action.value)
    return {"processed": True, "result": result.model_dump(mode="json")}
