"""Process-wide settings store.

Holds the current ``ExecutionSettings`` and ``GlobalSkillSettings`` as
immutable snapshots. Writers build a new snapshot and swap it in under a
single lock; readers get whatever snapshot is current, never a half-applied
update.
"""

import json
import logging
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from opensesh.execution.models import ExecutionSettings
from opensesh.skills.catalog import default_global_skill_settings
from opensesh.skills.models import GlobalSkillSettings

logger = logging.getLogger(__name__)


class SettingsStore:
    def __init__(
        self,
        execution_settings: ExecutionSettings | None = None,
        global_skill_settings: GlobalSkillSettings | None = None,
        state_file: str | Path | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._state_file = Path(state_file) if state_file else None
        self._execution = execution_settings or ExecutionSettings()
        self._skills = global_skill_settings or default_global_skill_settings()
        if self._state_file and self._state_file.exists():
            self._load()

    # Reads

    def get_execution_settings(self) -> ExecutionSettings:
        return self._execution

    def get_global_skill_settings(self) -> GlobalSkillSettings:
        return self._skills

    # Writes

    def update_execution_settings(self, **changes: Any) -> ExecutionSettings:
        """Apply field changes atomically. Unknown fields or bad values raise."""
        with self._lock:
            merged = {**self._execution.model_dump(), **changes}
            updated = ExecutionSettings.model_validate(merged)
            self._execution = updated
            self._save()
        logger.info(f"[SettingsStore] Execution settings updated: {sorted(changes)}")
        return updated

    def update_global_skill_settings(
        self,
        fn: Callable[[GlobalSkillSettings], GlobalSkillSettings],
    ) -> GlobalSkillSettings:
        """Replace the skill settings with ``fn(current)`` under the writer lock."""
        with self._lock:
            updated = fn(self._skills)
            self._skills = updated
            self._save()
        logger.info(
            f"[SettingsStore] Skill defaults: enabled={sorted(updated.default_enabled_skill_ids)} "
            f"confirm={sorted(updated.require_confirmation_skill_ids)}"
        )
        return updated

    def replace_global_skill_settings(self, settings: GlobalSkillSettings) -> GlobalSkillSettings:
        return self.update_global_skill_settings(lambda _current: settings)

    # Persistence

    def to_dict(self) -> dict[str, Any]:
        skills = asdict(self._skills)
        return {
            "execution": self._execution.model_dump(mode="json"),
            "skills": {key: sorted(value) for key, value in skills.items()},
        }

    def _save(self) -> None:
        if not self._state_file:
            return
        self._state_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._state_file.with_suffix(self._state_file.suffix + ".tmp")
        tmp.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        tmp.replace(self._state_file)

    def _load(self) -> None:
        """Restore persisted settings. A bad file leaves the defaults in place."""
        try:
            data = json.loads(self._state_file.read_text(encoding="utf-8"))
            execution = self._execution
            if "execution" in data:
                execution = ExecutionSettings.model_validate(data["execution"])
            skills = self._skills
            if "skills" in data:
                raw = data["skills"]
                skills = GlobalSkillSettings(
                    default_enabled_skill_ids=frozenset(raw.get("default_enabled_skill_ids", [])),
                    require_confirmation_skill_ids=frozenset(raw.get("require_confirmation_skill_ids", [])),
                )
        except (OSError, json.JSONDecodeError, ValidationError, TypeError, AttributeError) as e:
            logger.warning(f"[SettingsStore] Ignoring unreadable state file {self._state_file}: {e}")
            return
        self._execution = execution
        self._skills = skills
        logger.info(f"[SettingsStore] Loaded settings from {self._state_file}")
