"""Events API router for the negotiation SSE stream."""

import json
from typing import Optional

from fastapi import APIRouter, Query, Request
from sse_starlette.sse import EventSourceResponse

from vehiclemarket.core.events import event_bus

router = APIRouter()


@router.get("/events")
async def event_stream(
    request: Request,
    conversation_id: Optional[str] = Query(None, description="Only stream events of this conversation")
):
    """
    Server-Sent Events (SSE) stream of negotiation transitions.

    Usage:
        const eventSource = new EventSource('/api/events?conversation_id=...');
        eventSource.addEventListener('proposal_countered', (e) => {
            console.log(JSON.parse(e.data));
        });
    """
    async def generate():
        async for event in event_bus.subscribe(conversation_id):
            # Check if client disconnected
            if await request.is_disconnected():
                break

            yield {
                "event": event["type"],
                "data": json.dumps(event["data"])
            }

    return EventSourceResponse(generate())
