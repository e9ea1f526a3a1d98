"""Per-thread and global skill enablement layered on the skill graph."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import replace
from typing import TYPE_CHECKING

from opensesh.errors import UnknownSkillError
from opensesh.skills.graph import SkillGraph
from opensesh.skills.models import GlobalSkillSettings, SkillDefinition, ThreadSkillConfig

if TYPE_CHECKING:
    from opensesh.settings_store import SettingsStore

logger = logging.getLogger(__name__)


def resolve_effective_enabled(
    thread_config: ThreadSkillConfig,
    global_settings: GlobalSkillSettings,
) -> frozenset[str]:
    """Enabled skill ids for a thread.

    Without a custom config the stored ids are ignored and the current
    global default is returned.
    """
    if not thread_config.use_custom_config:
        return frozenset(global_settings.default_enabled_skill_ids)
    return frozenset(thread_config.enabled_skill_ids)


class SkillConfigStore:
    """Resolves which skills and tools are enabled for each thread.

    Thread configs are immutable values replaced under a lock. Global skill
    settings live in the shared SettingsStore and are read live on every call.
    """

    def __init__(self, graph: SkillGraph, settings_store: SettingsStore) -> None:
        self.graph = graph
        self.settings_store = settings_store
        self._thread_configs: dict[str, ThreadSkillConfig] = {}
        self._lock = threading.Lock()

    @property
    def global_settings(self) -> GlobalSkillSettings:
        return self.settings_store.get_global_skill_settings()

    # Pure operations

    def toggle(
        self,
        thread_config: ThreadSkillConfig,
        skill_id: str,
        global_settings: GlobalSkillSettings | None = None,
    ) -> ThreadSkillConfig:
        """Return a new config with ``skill_id`` flipped.

        Enabling pulls in the dependency closure, disabling cascades to every
        dependent. The result always has ``use_custom_config=True``.
        """
        if skill_id not in self.graph:
            raise UnknownSkillError(skill_id)
        current = resolve_effective_enabled(thread_config, global_settings or self.global_settings)
        if skill_id in current:
            enabled = self.graph.disable(current, skill_id)
        else:
            enabled = self.graph.enable(current, skill_id)
        return replace(thread_config, enabled_skill_ids=enabled, use_custom_config=True)

    def resolve_effective_enabled(self, thread_config: ThreadSkillConfig) -> frozenset[str]:
        return resolve_effective_enabled(thread_config, self.global_settings)

    def tools_for(self, enabled_skill_ids: Iterable[str]) -> list[str]:
        return self.graph.tools_for(enabled_skill_ids)

    # Thread configuration

    def get_thread_config(self, thread_id: str) -> ThreadSkillConfig:
        config = self._thread_configs.get(thread_id)
        if config is not None:
            return config
        return ThreadSkillConfig(
            thread_id=thread_id,
            enabled_skill_ids=frozenset(self.global_settings.default_enabled_skill_ids),
            use_custom_config=False,
        )

    def set_thread_config(
        self,
        thread_id: str,
        *,
        enabled_skill_ids: Iterable[str] | None = None,
        use_custom_config: bool | None = None,
    ) -> ThreadSkillConfig:
        """Overwrite fields of a thread config. Unknown skill ids are rejected."""
        with self._lock:
            config = self.get_thread_config(thread_id)
            if enabled_skill_ids is not None:
                ids = frozenset(enabled_skill_ids)
                for skill_id in ids:
                    if skill_id not in self.graph:
                        raise UnknownSkillError(skill_id)
                config = replace(config, enabled_skill_ids=ids)
            if use_custom_config is not None:
                config = replace(config, use_custom_config=use_custom_config)
            self._thread_configs[thread_id] = config
            return config

    def toggle_thread_skill(self, thread_id: str, skill_id: str) -> ThreadSkillConfig:
        with self._lock:
            config = self.toggle(self.get_thread_config(thread_id), skill_id)
            self._thread_configs[thread_id] = config
        logger.info(
            f"[SkillConfigStore] Thread {thread_id} toggled {skill_id} -> {sorted(config.enabled_skill_ids)}"
        )
        return config

    def reset_thread_to_defaults(self, thread_id: str) -> ThreadSkillConfig:
        with self._lock:
            config = ThreadSkillConfig(
                thread_id=thread_id,
                enabled_skill_ids=frozenset(self.global_settings.default_enabled_skill_ids),
                use_custom_config=False,
            )
            self._thread_configs[thread_id] = config
            return config

    def set_use_custom_config(self, thread_id: str, use_custom: bool) -> ThreadSkillConfig:
        """Switch a thread between custom and inherited skills.

        Switching back to inherited discards overrides and snapshots the
        default set at this moment into ``enabled_skill_ids``.
        """
        with self._lock:
            config = self.get_thread_config(thread_id)
            if use_custom:
                config = replace(
                    config,
                    enabled_skill_ids=resolve_effective_enabled(config, self.global_settings),
                    use_custom_config=True,
                )
            else:
                config = replace(
                    config,
                    enabled_skill_ids=frozenset(self.global_settings.default_enabled_skill_ids),
                    use_custom_config=False,
                )
            self._thread_configs[thread_id] = config
            return config

    # Queries

    def is_enabled(self, thread_id: str, skill_id: str) -> bool:
        return skill_id in self.resolve_effective_enabled(self.get_thread_config(thread_id))

    def enabled_skills_for_thread(self, thread_id: str) -> list[SkillDefinition]:
        enabled = self.resolve_effective_enabled(self.get_thread_config(thread_id))
        return [skill for skill in self.graph.list_all() if skill.id in enabled]

    def tools_for_thread(self, thread_id: str) -> list[str]:
        return self.tools_for(self.resolve_effective_enabled(self.get_thread_config(thread_id)))

    def requires_confirmation(self, skill_id: str) -> bool:
        return skill_id in self.global_settings.require_confirmation_skill_ids

    # Global settings

    def _check_known(self, skill_ids: Iterable[str]) -> frozenset[str]:
        ids = frozenset(skill_ids)
        for skill_id in ids:
            if skill_id not in self.graph:
                raise UnknownSkillError(skill_id)
        return ids

    def update_default_enabled(self, skill_ids: Iterable[str]) -> GlobalSkillSettings:
        ids = self._check_known(skill_ids)
        return self.settings_store.update_global_skill_settings(
            lambda current: replace(current, default_enabled_skill_ids=ids)
        )

    def toggle_default_skill(self, skill_id: str) -> GlobalSkillSettings:
        self._check_known([skill_id])
        return self.settings_store.update_global_skill_settings(
            lambda current: replace(
                current,
                default_enabled_skill_ids=current.default_enabled_skill_ids ^ {skill_id},
            )
        )

    def update_require_confirmation(self, skill_ids: Iterable[str]) -> GlobalSkillSettings:
        ids = self._check_known(skill_ids)
        return self.settings_store.update_global_skill_settings(
            lambda current: replace(current, require_confirmation_skill_ids=ids)
        )

    def toggle_require_confirmation(self, skill_id: str) -> GlobalSkillSettings:
        self._check_known([skill_id])
        return self.settings_store.update_global_skill_settings(
            lambda current: replace(
                current,
                require_confirmation_skill_ids=current.require_confirmation_skill_ids ^ {skill_id},
            )
        )
