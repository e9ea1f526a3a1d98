"""Skills API - browse the skill catalog and manage enablement.

Endpoints:
- GET /api/skills - List skills
- GET /api/skills/global - Global default and require-confirmation sets
- PUT /api/skills/global - Replace global skill settings
- POST /api/skills/global/toggle - Toggle a skill in the global default set
- POST /api/skills/global/require-confirmation/toggle - Toggle forced confirmation
- GET /api/skills/{id} - Get a skill with its dependency closure
- GET /api/threads/{id}/skills - Effective skill config for a thread
- POST /api/threads/{id}/skills/toggle - Toggle a skill for a thread
- POST /api/threads/{id}/skills/reset - Reset a thread to the global default
- POST /api/threads/{id}/skills/custom - Switch custom config on or off
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from opensesh.engine import ExecutionEngine
from opensesh.errors import UnknownSkillError
from opensesh.skills import SkillCategory, SkillRisk
from opensesh.skills.models import (
    GlobalSkillSettingsPayload,
    SkillListResponse,
    SkillResponse,
    SkillToggleRequest,
    ThreadSkillConfig,
    ThreadSkillConfigResponse,
    UseCustomConfigRequest,
)

from .deps import get_engine, http_error

router = APIRouter(prefix="/api/skills", tags=["skills"])
thread_router = APIRouter(prefix="/api/threads", tags=["skills"])


def _thread_response(engine: ExecutionEngine, config: ThreadSkillConfig) -> ThreadSkillConfigResponse:
    enabled = engine.skills.resolve_effective_enabled(config)
    return ThreadSkillConfigResponse(
        thread_id=config.thread_id,
        use_custom_config=config.use_custom_config,
        enabled_skill_ids=sorted(enabled),
        tools=engine.skills.tools_for(enabled),
    )


@router.get("", response_model=SkillListResponse)
async def list_skills(
    category: str | None = Query(None, description="Filter by category"),
    risk: str | None = Query(None, description="Filter by risk level"),
    engine: ExecutionEngine = Depends(get_engine),
):
    """List all skills with optional filtering."""
    skills = engine.skills.graph.list_all()

    if category:
        try:
            cat_enum = SkillCategory(category)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid category: {category}")
        skills = [s for s in engine.skills.graph.by_category(cat_enum) if s in skills]

    if risk:
        try:
            risk_enum = SkillRisk(risk)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid risk level: {risk}")
        skills = [s for s in engine.skills.graph.by_risk(risk_enum) if s in skills]

    responses = [
        SkillResponse.from_definition(s, engine.skills.requires_confirmation(s.id))
        for s in skills
    ]
    return SkillListResponse(skills=responses, total=len(responses))


@router.get("/global", response_model=GlobalSkillSettingsPayload)
async def get_global_skill_settings(engine: ExecutionEngine = Depends(get_engine)):
    return GlobalSkillSettingsPayload.from_settings(engine.skills.global_settings)


@router.put("/global", response_model=GlobalSkillSettingsPayload)
async def update_global_skill_settings(
    payload: GlobalSkillSettingsPayload,
    engine: ExecutionEngine = Depends(get_engine),
):
    """Replace both global skill sets. Unknown skill ids are rejected."""
    try:
        engine.skills.update_default_enabled(payload.default_enabled_skill_ids)
        settings = engine.skills.update_require_confirmation(payload.require_confirmation_skill_ids)
    except UnknownSkillError as e:
        raise http_error(e)
    return GlobalSkillSettingsPayload.from_settings(settings)


@router.post("/global/toggle", response_model=GlobalSkillSettingsPayload)
async def toggle_default_skill(
    request: SkillToggleRequest,
    engine: ExecutionEngine = Depends(get_engine),
):
    try:
        settings = engine.skills.toggle_default_skill(request.skill_id)
    except UnknownSkillError as e:
        raise http_error(e)
    return GlobalSkillSettingsPayload.from_settings(settings)


@router.post("/global/require-confirmation/toggle", response_model=GlobalSkillSettingsPayload)
async def toggle_require_confirmation(
    request: SkillToggleRequest,
    engine: ExecutionEngine = Depends(get_engine),
):
    try:
        settings = engine.skills.toggle_require_confirmation(request.skill_id)
    except UnknownSkillError as e:
        raise http_error(e)
    return GlobalSkillSettingsPayload.from_settings(settings)


@router.get("/{skill_id}")
async def get_skill(skill_id: str, engine: ExecutionEngine = Depends(get_engine)) -> dict[str, Any]:
    """Get a skill plus what it needs and what needs it."""
    skill = engine.skills.graph.get(skill_id)
    if not skill:
        raise HTTPException(status_code=404, detail=f"Skill not found: {skill_id}")

    response = SkillResponse.from_definition(skill, engine.skills.requires_confirmation(skill_id))
    return {
        **response.model_dump(),
        "dependency_closure": sorted(engine.skills.graph.dependency_closure(skill_id)),
        "dependents": sorted(engine.skills.graph.dependents_closure(skill_id)),
    }


# ============================================================================
# Per-thread configuration
# ============================================================================

@thread_router.get("/{thread_id}/skills", response_model=ThreadSkillConfigResponse)
async def get_thread_skills(thread_id: str, engine: ExecutionEngine = Depends(get_engine)):
    return _thread_response(engine, engine.skills.get_thread_config(thread_id))


@thread_router.post("/{thread_id}/skills/toggle", response_model=ThreadSkillConfigResponse)
async def toggle_thread_skill(
    thread_id: str,
    request: SkillToggleRequest,
    engine: ExecutionEngine = Depends(get_engine),
):
    """Enable or disable a skill for one thread.

    Enabling pulls in dependencies; disabling drops dependents.
    """
    try:
        config = engine.skills.toggle_thread_skill(thread_id, request.skill_id)
    except UnknownSkillError as e:
        raise http_error(e)
    return _thread_response(engine, config)


@thread_router.post("/{thread_id}/skills/reset", response_model=ThreadSkillConfigResponse)
async def reset_thread_skills(thread_id: str, engine: ExecutionEngine = Depends(get_engine)):
    return _thread_response(engine, engine.skills.reset_thread_to_defaults(thread_id))


@thread_router.post("/{thread_id}/skills/custom", response_model=ThreadSkillConfigResponse)
async def set_use_custom_config(
    thread_id: str,
    request: UseCustomConfigRequest,
    engine: ExecutionEngine = Depends(get_engine),
):
    config = engine.skills.set_use_custom_config(thread_id, request.use_custom_config)
    return _thread_response(engine, config)
