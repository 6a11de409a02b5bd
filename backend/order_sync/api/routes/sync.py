"""Sync routes: connectivity, reconciliation and the pending queue."""

from fastapi import APIRouter, Query

from order_sync.api.deps import Orchestrator
from order_sync.schemas.api import ConnectivityUpdate, PendingSyncResponse
from order_sync.schemas.sync import NetworkStatus, ReconcileResult

router = APIRouter()


@router.get("/status", response_model=NetworkStatus)
def get_sync_status(orchestrator: Orchestrator):
    """Connectivity and unsynced-work indicator for the UI."""
    return orchestrator.network_status()


@router.post("/reconcile", response_model=ReconcileResult)
async def reconcile(orchestrator: Orchestrator):
    """Run a reconciliation pass now."""
    return await orchestrator.sync_now()


@router.post("/connectivity", response_model=NetworkStatus)
async def report_connectivity(body: ConnectivityUpdate, orchestrator: Orchestrator):
    """Online/offline event from the host platform."""
    return await orchestrator.monitor.set_online(body.is_online)


@router.get("/pending", response_model=PendingSyncResponse)
def get_pending(
    orchestrator: Orchestrator,
    include_synced: bool = Query(False, description="Include already synced entries (audit trail)"),
):
    queue = orchestrator.queue
    offline_orders = orchestrator.offline_orders
    return PendingSyncResponse(
        tasks=queue.list_all() if include_synced else queue.list_unsynced(),
        offline_orders=offline_orders.list_all() if include_synced else offline_orders.list_unsynced(),
        failures=orchestrator.queue.failures(),
    )
