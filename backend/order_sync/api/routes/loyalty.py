"""Loyalty point routes."""

from fastapi import APIRouter, Response

from order_sync.api.deps import Orchestrator, operation_response
from order_sync.schemas.api import LoyaltyRequest
from order_sync.schemas.order import OperationResult

router = APIRouter()


@router.post("/award", response_model=OperationResult)
async def award_points(body: LoyaltyRequest, response: Response, orchestrator: Orchestrator):
    result = await orchestrator.award_loyalty_points(body.customer_id, body.order_id, body.points)
    return operation_response(result, response)


@router.post("/redeem", response_model=OperationResult)
async def redeem_points(body: LoyaltyRequest, response: Response, orchestrator: Orchestrator):
    result = await orchestrator.redeem_loyalty_points(body.customer_id, body.order_id, body.points)
    return operation_response(result, response)
