"""Execution audit API endpoints."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from opensesh.engine import ExecutionEngine

from .deps import get_engine

router = APIRouter(prefix="/api/audit", tags=["audit"])


class ChainVerificationResponse(BaseModel):
    valid: bool
    total_entries: int
    violations: list[dict[str, Any]]


@router.get("")
async def list_audit_entries(
    thread_id: str | None = Query(None),
    plan_id: str | None = Query(None),
    start: datetime | None = Query(None, description="Executed at or after"),
    end: datetime | None = Query(None, description="Executed at or before"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    engine: ExecutionEngine = Depends(get_engine),
):
    """Audit entries in sequence order with optional filtering."""
    entries = engine.audit.between(start, end)
    if thread_id:
        entries = [e for e in entries if e.thread_id == thread_id]
    if plan_id:
        entries = [e for e in entries if e.plan_id == plan_id]
    page = entries[offset:offset + limit]
    return {
        "total": len(entries),
        "entries": [e.to_dict() for e in page],
    }


@router.get("/verify", response_model=ChainVerificationResponse)
async def verify_audit_chain(
    persisted: bool = Query(False, description="Verify the database copy instead of memory"),
    engine: ExecutionEngine = Depends(get_engine),
):
    """Walk the hash chain and report every break."""
    if persisted:
        valid, violations = await engine.audit.verify_persisted_chain()
    else:
        valid, violations = engine.audit.verify_chain()
    return ChainVerificationResponse(
        valid=valid,
        total_entries=len(engine.audit),
        violations=violations,
    )


@router.get("/stats")
async def get_audit_stats(engine: ExecutionEngine = Depends(get_engine)):
    return engine.audit.stats()
