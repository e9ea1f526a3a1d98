"""Actions API - queue, confirm and control execution per thread.

Endpoints:
- POST /api/actions - Submit a standalone action
- GET /api/actions/{id} - Get an action
- POST /api/actions/{id}/confirm - Approve, reject or edit-and-approve
- POST /api/actions/{id}/cancel - Cancel a queued or running action
- GET /api/threads/{id}/actions - All actions of a thread
- GET /api/threads/{id}/confirmation - The prompt a thread is blocked on
- POST /api/threads/{id}/actions/approve-all - Approve every waiting action
- POST /api/threads/{id}/actions/reject-all - Reject every waiting action
- POST /api/threads/{id}/pause, /resume - Stop or restart draining
- GET/PUT /api/threads/{id}/mode - Execution mode of a thread
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from opensesh.engine import ExecutionEngine
from opensesh.errors import OrchestrationError
from opensesh.execution.models import (
    ActionSubmitRequest,
    ConfirmActionRequest,
    ModeRequest,
)

from .deps import get_engine, http_error

router = APIRouter(prefix="/api/actions", tags=["actions"])
thread_router = APIRouter(prefix="/api/threads", tags=["actions"])


class BulkDecisionRequest(BaseModel):
    note: str | None = None


@router.post("")
async def submit_action(
    request: ActionSubmitRequest,
    engine: ExecutionEngine = Depends(get_engine),
):
    try:
        action = engine.submit_action(
            request.thread_id,
            request.type,
            request.title,
            request.details,
            description=request.description,
            risk=request.risk,
        )
    except (OrchestrationError, ValueError) as e:
        raise http_error(e)
    return action.to_dict()


@router.get("/{action_id}")
async def get_action(action_id: str, engine: ExecutionEngine = Depends(get_engine)):
    try:
        action = engine.get_action(action_id)
    except OrchestrationError as e:
        raise http_error(e)
    return {**action.to_dict(), "edit_diff": action.edit_diff()}


@router.post("/{action_id}/confirm")
async def confirm_action(
    action_id: str,
    request: ConfirmActionRequest,
    engine: ExecutionEngine = Depends(get_engine),
):
    """Answer a confirmation prompt.

    The decision is applied by the thread's worker; poll the action or
    subscribe to progress to see the outcome.
    """
    try:
        action = engine.confirm_action(
            action_id,
            request.decision,
            edited_details=request.edited_details,
            note=request.note,
        )
    except (OrchestrationError, ValueError) as e:
        raise http_error(e)
    return action.to_dict()


@router.post("/{action_id}/cancel")
async def cancel_action(action_id: str, engine: ExecutionEngine = Depends(get_engine)):
    try:
        action = engine.cancel_action(action_id)
    except OrchestrationError as e:
        raise http_error(e)
    return action.to_dict()


# ============================================================================
# Per-thread queue control
# ============================================================================

@thread_router.get("/{thread_id}/actions")
async def list_thread_actions(thread_id: str, engine: ExecutionEngine = Depends(get_engine)):
    actions = engine.actions_for_thread(thread_id)
    queue = engine.queue_for(thread_id)
    return {
        "count": len(actions),
        "paused": queue.paused,
        "queued": [a.id for a in queue.queued_actions()],
        "actions": [action.to_dict() for action in actions],
    }


@thread_router.get("/{thread_id}/confirmation")
async def get_pending_confirmation(thread_id: str, engine: ExecutionEngine = Depends(get_engine)):
    request = engine.pending_confirmation(thread_id)
    if request is None:
        raise HTTPException(status_code=404, detail=f"No confirmation pending for thread {thread_id}")
    return request.to_dict()


@thread_router.post("/{thread_id}/actions/approve-all")
async def approve_all_pending(thread_id: str, engine: ExecutionEngine = Depends(get_engine)):
    try:
        approved = engine.queue_for(thread_id).approve_all_pending()
    except OrchestrationError as e:
        raise http_error(e)
    return {"count": len(approved), "action_ids": [a.id for a in approved]}


@thread_router.post("/{thread_id}/actions/reject-all")
async def reject_all_pending(
    thread_id: str,
    request: BulkDecisionRequest | None = None,
    engine: ExecutionEngine = Depends(get_engine),
):
    try:
        rejected = engine.queue_for(thread_id).reject_all_pending(request.note if request else None)
    except OrchestrationError as e:
        raise http_error(e)
    return {"count": len(rejected), "action_ids": [a.id for a in rejected]}


@thread_router.post("/{thread_id}/pause")
async def pause_thread(thread_id: str, engine: ExecutionEngine = Depends(get_engine)):
    engine.pause(thread_id)
    return {"thread_id": thread_id, "paused": True}


@thread_router.post("/{thread_id}/resume")
async def resume_thread(thread_id: str, engine: ExecutionEngine = Depends(get_engine)):
    engine.resume(thread_id)
    return {"thread_id": thread_id, "paused": False}


@thread_router.get("/{thread_id}/mode")
async def get_mode(thread_id: str, engine: ExecutionEngine = Depends(get_engine)):
    return {"thread_id": thread_id, "mode": engine.get_mode(thread_id).value}


@thread_router.put("/{thread_id}/mode")
async def set_mode(
    thread_id: str,
    request: ModeRequest,
    engine: ExecutionEngine = Depends(get_engine),
):
    engine.set_mode(thread_id, request.mode)
    return {"thread_id": thread_id, "mode": engine.get_mode(thread_id).value}
