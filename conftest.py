# conftest.py - Global pytest configuration
"""
Global pytest configuration and shared fixtures.

Every test gets fresh settings, a fresh mock executor and a fresh engine, so
nothing leaks between tests through process-wide state.
"""
import uuid

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from opensesh.engine import ExecutionEngine
from opensesh.execution.mock import MockToolExecutor
from opensesh.execution.models import ExecutionMode, ExecutionSettings
from opensesh.settings_store import SettingsStore
from opensesh.storage.database import build_engine, build_session_maker, init_db


@pytest.fixture
def settings_store():
    """Assisted mode, default overrides, no state file."""
    return SettingsStore()


@pytest.fixture
def autonomous_store():
    """Autonomous mode with every always-confirm override on."""
    return SettingsStore(ExecutionSettings(default_execution_mode=ExecutionMode.autonomous))


@pytest.fixture
def mock_executor():
    return MockToolExecutor()


@pytest_asyncio.fixture
async def engine(mock_executor, settings_store):
    """Engine in assisted mode backed by the mock executor."""
    engine = ExecutionEngine(mock_executor, settings_store=settings_store)
    yield engine
    await engine.shutdown()


@pytest_asyncio.fixture
async def autonomous_engine(mock_executor, autonomous_store):
    engine = ExecutionEngine(mock_executor, settings_store=autonomous_store)
    yield engine
    await engine.shutdown()


@pytest_asyncio.fixture
async def session_maker():
    """
    In-memory SQLite database with the audit tables created.

    StaticPool keeps the single connection alive so every session sees the
    same database.
    """
    db_engine = build_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(db_engine)
    yield build_session_maker(db_engine)
    await db_engine.dispose()


@pytest.fixture
def plan_payload():
    """Factory for plan generator payloads.

    Each step is ``(step_id, type, depends_on)``; details are filled in per type.
    """
    details_by_type = {
        "file_edit": {"file_path": "src/app.py", "proposed_content": "print('hi')\n"},
        "file_create": {"file_path": "src/new.py", "proposed_content": ""},
        "file_delete": {"file_path": "src/old.py"},
        "terminal_command": {"command": "pytest -q"},
        "git_operation": {"operation": "commit", "commit_message": "Update app"},
        "information": {"note": "Nothing to run"},
    }

    def _build(steps, thread_id="thread-1", plan_id=None):
        return {
            "id": plan_id or f"plan-{uuid.uuid4()}",
            "thread_id": thread_id,
            "message_id": "msg-1",
            "title": "Test plan",
            "summary": "A plan built for tests",
            "user_request": "Do the thing",
            "steps": [
                {
                    "id": step_id,
                    "step_number": number,
                    "type": step_type,
                    "title": f"Step {number}",
                    "details": {"type": step_type, **details_by_type[step_type]},
                    "depends_on": list(depends_on),
                }
                for number, (step_id, step_type, depends_on) in enumerate(steps, start=1)
            ],
        }

    return _build
