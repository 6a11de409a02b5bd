"""Order routes: place, modify, charge to account and read changes."""

from fastapi import APIRouter, HTTPException, Response

from order_sync.api.deps import Orchestrator, operation_response
from order_sync.schemas.api import (
    AccountChargeRequest,
    KitchenTicketRequest,
    KitchenTicketResponse,
    ModifyOrderRequest,
    OrderChangesResponse,
    PlaceOrderRequest,
)
from order_sync.schemas.order import LedgerCharge, OperationResult, OrderSnapshot
from order_sync.services.kitchen_changes import annotate_items_for_kitchen

router = APIRouter()


@router.post("", response_model=OperationResult)
async def place_order(body: PlaceOrderRequest, response: Response, orchestrator: Orchestrator):
    result = await orchestrator.place_order(body.order_fields, body.items, body.ledger)
    return operation_response(result, response)


@router.put("/{order_id}", response_model=OperationResult)
async def modify_order(
    order_id: str,
    body: ModifyOrderRequest,
    response: Response,
    orchestrator: Orchestrator,
):
    """Save an edit, described either by both carts or by a UI modification event."""
    if body.event is not None:
        result = await orchestrator.record_modification_event(
            order_id,
            body.order_number,
            body.event,
            items=body.current or None,
            order_fields=body.order_fields,
            ledger=body.ledger,
        )
    elif body.previous is not None:
        result = await orchestrator.modify_order(
            order_id,
            body.order_number,
            OrderSnapshot.capture(body.previous, total=body.previous_total),
            OrderSnapshot.capture(body.current, total=body.current_total),
            order_fields=body.order_fields,
            ledger=body.ledger,
        )
    else:
        raise HTTPException(status_code=422, detail="Provide either 'event' or 'previous' and 'current'")
    return operation_response(result, response)


@router.post("/{order_id}/account-charge", response_model=OperationResult)
async def charge_to_account(
    order_id: str,
    body: AccountChargeRequest,
    response: Response,
    orchestrator: Orchestrator,
):
    charge = LedgerCharge(**body.model_dump(exclude={"order_number"}))
    result = await orchestrator.record_account_charge(order_id, body.order_number, charge)
    return operation_response(result, response)


@router.get("/{order_id}/changes", response_model=OrderChangesResponse)
async def get_order_changes(order_id: str, orchestrator: Orchestrator):
    """Latest changes of an order, from the backend or the local cache."""
    changes = await orchestrator.get_order_changes(order_id)
    return OrderChangesResponse(order_id=order_id, has_changes=bool(changes), changes=changes)


@router.post("/{order_id}/kitchen-ticket", response_model=KitchenTicketResponse)
async def kitchen_ticket(order_id: str, body: KitchenTicketRequest, orchestrator: Orchestrator):
    """Current cart annotated with its latest changes, for a kitchen re-print."""
    changes = await orchestrator.get_order_changes(order_id)
    return KitchenTicketResponse(
        order_id=order_id,
        lines=annotate_items_for_kitchen(body.items, changes),
    )
