"""Skills Module - capability bundles granted to the assistant per thread.

Skills form a dependency graph:

- Enabling a skill enables everything it depends on (transitively)
- Disabling a skill disables everything that depends on it (transitively)
- Threads inherit the live global default until they customize

Each skill carries a risk level (safe / moderate / dangerous) and the tool
names it exposes to the model.
"""

from .models import (
    GlobalSkillSettings,
    SkillCategory,
    SkillDefinition,
    SkillRisk,
    SkillTool,
    ThreadSkillConfig,
)
from .graph import SkillGraph
from .catalog import (
    DEFAULT_ENABLED_SKILLS,
    DEFAULT_REQUIRE_CONFIRMATION,
    SKILL_DEFINITIONS,
    default_global_skill_settings,
)
from .loader import SkillCatalogError, build_skill_graph, load_skill_catalog
from .config_store import SkillConfigStore, resolve_effective_enabled

__all__ = [
    "GlobalSkillSettings",
    "SkillCategory",
    "SkillDefinition",
    "SkillRisk",
    "SkillTool",
    "ThreadSkillConfig",
    "SkillGraph",
    "DEFAULT_ENABLED_SKILLS",
    "DEFAULT_REQUIRE_CONFIRMATION",
    "SKILL_DEFINITIONS",
    "default_global_skill_settings",
    "SkillCatalogError",
    "build_skill_graph",
    "load_skill_catalog",
    "SkillConfigStore",
    "resolve_effective_enabled",
]
