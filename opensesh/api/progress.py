"""Progress API - snapshots and a live SSE feed per thread."""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from opensesh.engine import ExecutionEngine

from .deps import get_engine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/threads", tags=["progress"])


@router.get("/{thread_id}/progress")
async def get_progress(thread_id: str, engine: ExecutionEngine = Depends(get_engine)):
    progress = engine.progress(thread_id)
    plan = engine.lifecycle.current_plan_for_thread(thread_id)
    return {
        "thread_id": thread_id,
        "mode": engine.get_mode(thread_id).value,
        **progress.to_dict(),
        "plan": plan.to_dict() if plan else None,
    }


@router.get("/{thread_id}/events")
async def stream_events(
    thread_id: str,
    request: Request,
    engine: ExecutionEngine = Depends(get_engine),
):
    """Server-Sent Events stream of progress snapshots and audit entries."""
    progress = engine.on_progress(thread_id)
    audit = engine.on_audit_append(thread_id)

    async def _forward(subscription, event_type: str, out: asyncio.Queue) -> None:
        async for event in subscription:
            await out.put((event_type, event.to_dict()))

    async def _generate():
        out: asyncio.Queue = asyncio.Queue()
        tasks = [
            asyncio.create_task(_forward(progress, "progress", out)),
            asyncio.create_task(_forward(audit, "audit", out)),
        ]
        try:
            snapshot = engine.progress(thread_id).to_dict()
            yield f"event: progress\ndata: {json.dumps(snapshot)}\n\n"
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event_type, payload = await asyncio.wait_for(out.get(), timeout=15)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"event: {event_type}\ndata: {json.dumps(payload)}\n\n"
        except asyncio.CancelledError:
            logger.debug(f"[EventStream] Client for thread {thread_id} disconnected")
        finally:
            for task in tasks:
                task.cancel()
            progress.close()
            audit.close()

    return StreamingResponse(
        _generate(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
