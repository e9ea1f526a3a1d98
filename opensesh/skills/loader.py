from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from opensesh.errors import OrchestrationError
from opensesh.skills.catalog import SKILL_DEFINITIONS
from opensesh.skills.graph import SkillGraph
from opensesh.skills.models import SkillCategory, SkillDefinition, SkillRisk, SkillTool

REQUIRED_FIELDS = {"id", "name", "category", "risk"}


class SkillCatalogError(OrchestrationError):
    """Raised when a skill catalog file is malformed."""


def build_skill_definition(raw: Any) -> SkillDefinition:
    if not isinstance(raw, dict):
        raise SkillCatalogError(f"Skill entry must be a mapping, got {raw!r}")
    missing = REQUIRED_FIELDS - set(raw.keys())
    if missing:
        raise SkillCatalogError(f"Missing required fields: {', '.join(sorted(missing))}")

    try:
        category = SkillCategory(raw["category"])
        risk = SkillRisk(raw["risk"])
    except ValueError as exc:
        raise SkillCatalogError(f"Skill {raw['id']}: {exc}") from exc

    tools: list[SkillTool] = []
    for item in raw.get("tools") or []:
        if isinstance(item, str):
            tools.append(SkillTool(name=item))
        elif isinstance(item, dict) and item.get("name"):
            tools.append(SkillTool(name=item["name"], description=item.get("description", "")))
        else:
            raise SkillCatalogError(f"Skill {raw['id']}: invalid tool entry {item!r}")

    return SkillDefinition(
        id=str(raw["id"]),
        name=str(raw["name"]),
        description=str(raw.get("description", "")),
        category=category,
        risk=risk,
        tools=tuple(tools),
        dependencies=tuple(raw.get("dependencies") or ()),
        icon=raw.get("icon"),
    )


def parse_skill_catalog(content: str) -> list[SkillDefinition]:
    data = yaml.safe_load(content) or {}
    entries = data.get("skills") if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise SkillCatalogError("Catalog must be a list of skills or a mapping with a 'skills' list")
    return [build_skill_definition(entry) for entry in entries]


def load_skill_catalog(path: Path) -> SkillGraph:
    """Load a YAML catalog and build its graph.

    Unknown dependency ids and cycles surface here, at load time, as
    UnknownSkillError and CyclicDependencyError.
    """
    content = path.read_text(encoding="utf-8")
    return SkillGraph(parse_skill_catalog(content))


def build_skill_graph(catalog_path: str | None = None) -> SkillGraph:
    if catalog_path:
        return load_skill_catalog(Path(catalog_path))
    return SkillGraph(SKILL_DEFINITIONS)
