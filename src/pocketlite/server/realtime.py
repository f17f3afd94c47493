"""
realtime.py - SSE stream and subscription endpoints.
"""

from typing import List

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from pocketlite.server.deps import Services, get_services

router = APIRouter(prefix="/api/realtime", tags=["realtime"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class SubscriptionRequest(BaseModel):
    clientId: str
    subscriptions: List[str] = []


@router.get("")
async def connect(services: Services = Depends(get_services)):
    """Open the event stream; the first frame carries the client id."""
    conn = services.registry.open_connection()
    return StreamingResponse(
        services.registry.stream(conn.client_id),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("", status_code=status.HTTP_204_NO_CONTENT)
async def set_subscriptions(
    request: SubscriptionRequest,
    services: Services = Depends(get_services),
):
    services.registry.update_subscriptions(request.clientId, request.subscriptions)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
