"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, Response

from order_sync.schemas.order import OperationResult, OperationStatus
from order_sync.services.orchestrator import OrderLifecycleOrchestrator


def get_orchestrator(request: Request) -> OrderLifecycleOrchestrator:
    return request.app.state.orchestrator


Orchestrator = Annotated[OrderLifecycleOrchestrator, Depends(get_orchestrator)]


def operation_response(result: OperationResult, response: Response) -> OperationResult:
    """Rejected -> 422, accepted-for-later -> 202, everything else 200."""
    if result.status == OperationStatus.REJECTED:
        raise HTTPException(status_code=422, detail=result.message)
    if result.offline:
        response.status_code = 202
    return result
