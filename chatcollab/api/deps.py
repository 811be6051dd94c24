import json
from typing import AsyncIterator

from fastapi import Request
from fastapi.responses import StreamingResponse

from chatcollab.services.memory import StoredMemoryProvider
from chatcollab.services.orchestrator import ChatSessionOrchestrator, Turn


def get_orchestrator(request: Request) -> ChatSessionOrchestrator:
    return request.app.state.orchestrator


def sse_event(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def stream_turn(orchestrator: ChatSessionOrchestrator, turn: Turn) -> StreamingResponse:
    async def event_generator() -> AsyncIterator[str]:
        events = orchestrator.run_turn(turn)
        try:
            async for event in events:
                yield sse_event(event.type, event.data)
        finally:
            await events.aclose()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


def get_memory_store(request: Request) -> StoredMemoryProvider:
    return request.app.state.memory
