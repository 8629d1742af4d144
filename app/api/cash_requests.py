"""
app/api/cash_requests.py

Purpose: Cash request HTTP endpoints

- List open requests (soft-deleted excluded unless showDeleted=true)
- Full history
- Create, fetch, soft delete
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder

from app.api.dependencies import get_registry
from app.core.logging import get_logger
from app.realtime.registry import ConnectionRegistry
from app.schemas.api import CreateCashRequest
from app.schemas.events import OutboundEvent
from app.schemas.response import SuccessResponse
from app.services import cash_request_service

logger = get_logger(__name__)
router = APIRouter(prefix="/cash-requests")


@router.get("")
async def list_cash_requests(show_deleted: bool = Query(False, alias="showDeleted")):
    requests = await cash_request_service.list_requests(include_deleted=show_deleted)
    return SuccessResponse(message="Requests fetched", data=requests)


@router.get("/history")
async def cash_request_history():
    """All requests including soft-deleted ones (statistics/history)."""
    requests = await cash_request_service.list_history()
    return SuccessResponse(message="Request history fetched", data=requests)


@router.post("", status_code=201)
async def create_cash_request(body: CreateCashRequest):
    request = await cash_request_service.create_request(body.requesterId, body.amount, body.reason)
    return JSONResponse(
        status_code=201,
        content=jsonable_encoder(SuccessResponse(message="Request created", data=request))
    )


@router.get("/{request_id}")
async def get_cash_request(request_id: str):
    request = await cash_request_service.get_request(request_id)
    return SuccessResponse(message="Request fetched", data=request)


@router.delete("/{request_id}")
async def delete_cash_request(request_id: str, registry: ConnectionRegistry = Depends(get_registry)):
    """
    Soft-deletes a request and tells every connected client to drop it.
    """
    request = await cash_request_service.soft_delete_request(request_id)
    await registry.broadcast(OutboundEvent.REQUEST_DELETED, {"requestId": request["_id"]})
    return SuccessResponse(message="Request deleted (soft delete) successfully", data=request)
