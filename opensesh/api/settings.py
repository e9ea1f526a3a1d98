"""API for process-wide execution settings."""

from fastapi import APIRouter, Depends
from pydantic import ValidationError

from opensesh.engine import ExecutionEngine
from opensesh.execution.models import ExecutionSettings, ExecutionSettingsUpdate

from .deps import get_engine, http_error

router = APIRouter(prefix="/api/execution/settings", tags=["settings"])


@router.get("", response_model=ExecutionSettings)
async def get_execution_settings(engine: ExecutionEngine = Depends(get_engine)):
    return engine.settings_store.get_execution_settings()


@router.patch("", response_model=ExecutionSettings)
async def update_execution_settings(
    update: ExecutionSettingsUpdate,
    engine: ExecutionEngine = Depends(get_engine),
):
    """Change some settings. Takes effect for the next action processed."""
    try:
        return engine.update_settings(**update.model_dump(exclude_unset=True))
    except ValidationError as e:
        raise http_error(e)
