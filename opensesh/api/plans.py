"""API for submitting and steering plans."""

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from opensesh.engine import ExecutionEngine
from opensesh.errors import OrchestrationError
from opensesh.plans import PlanSchema

from .deps import get_engine, http_error

router = APIRouter(prefix="/api/plans", tags=["plans"])


class NoteRequest(BaseModel):
    note: str | None = None


def _plan_response(engine: ExecutionEngine, plan_id: str) -> dict[str, Any]:
    plan = engine.get_plan(plan_id)
    return {**plan.to_dict(), "progress": engine.lifecycle.progress(plan_id)}


@router.post("")
async def submit_plan(
    plan: PlanSchema,
    start: bool = Query(True, description="Start draining the plan immediately"),
    engine: ExecutionEngine = Depends(get_engine),
):
    """Submit a fully materialized plan."""
    try:
        submitted = engine.submit_plan(plan, start=start)
    except (OrchestrationError, ValueError) as e:
        raise http_error(e)
    return _plan_response(engine, submitted.id)


@router.get("")
async def list_plans(
    thread_id: str | None = Query(None),
    engine: ExecutionEngine = Depends(get_engine),
):
    """List plans, optionally for one thread."""
    if thread_id:
        plans = engine.lifecycle.plans_for_thread(thread_id)
    else:
        plans = engine.lifecycle.list_plans()
    return {
        "count": len(plans),
        "plans": [plan.to_dict() for plan in plans],
    }


@router.get("/{plan_id}")
async def get_plan(plan_id: str, engine: ExecutionEngine = Depends(get_engine)):
    try:
        return _plan_response(engine, plan_id)
    except OrchestrationError as e:
        raise http_error(e)


@router.post("/{plan_id}/execute")
async def execute_plan(plan_id: str, engine: ExecutionEngine = Depends(get_engine)):
    """Start draining a plan submitted with start=false."""
    try:
        engine.execute_plan(plan_id)
    except OrchestrationError as e:
        raise http_error(e)
    return _plan_response(engine, plan_id)


@router.post("/{plan_id}/approve")
async def approve_plan(plan_id: str, engine: ExecutionEngine = Depends(get_engine)):
    """Approve every pending step of a plan."""
    try:
        engine.approve_plan(plan_id)
    except OrchestrationError as e:
        raise http_error(e)
    return _plan_response(engine, plan_id)


@router.post("/{plan_id}/reject")
async def reject_plan(
    plan_id: str,
    request: NoteRequest | None = None,
    engine: ExecutionEngine = Depends(get_engine),
):
    try:
        engine.reject_plan(plan_id, request.note if request else None)
    except OrchestrationError as e:
        raise http_error(e)
    return _plan_response(engine, plan_id)


@router.post("/{plan_id}/cancel")
async def cancel_plan(plan_id: str, engine: ExecutionEngine = Depends(get_engine)):
    try:
        engine.cancel_plan(plan_id)
    except OrchestrationError as e:
        raise http_error(e)
    return _plan_response(engine, plan_id)


@router.post("/steps/{step_id}/approve")
async def approve_step(
    step_id: str,
    request: NoteRequest | None = None,
    engine: ExecutionEngine = Depends(get_engine),
):
    try:
        engine.approve_step(step_id, request.note if request else None)
        plan, step = engine.lifecycle.find_step(step_id)
    except OrchestrationError as e:
        raise http_error(e)
    return step.to_dict()


@router.post("/steps/{step_id}/reject")
async def reject_step(
    step_id: str,
    request: NoteRequest | None = None,
    engine: ExecutionEngine = Depends(get_engine),
):
    """Reject a step; steps depending on it are skipped."""
    try:
        engine.reject_step(step_id, request.note if request else None)
        plan, step = engine.lifecycle.find_step(step_id)
    except OrchestrationError as e:
        raise http_error(e)
    return step.to_dict()
