"""Skill models and enums."""

from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SkillCategory(str, Enum):
    """Categories of skills, used for grouping."""
    file = "file"
    terminal = "terminal"
    git = "git"
    web = "web"
    code = "code"


class SkillRisk(str, Enum):
    """Risk levels for skills and actions, driving confirmation policy."""
    safe = "safe"            # Read-only or non-impactful
    moderate = "moderate"    # Modifies files or state within bounds
    dangerous = "dangerous"  # Arbitrary commands or wide-ranging effects


@dataclass(frozen=True)
class SkillTool:
    """A named tool exposed by a skill."""
    name: str
    description: str = ""


@dataclass(frozen=True)
class SkillDefinition:
    """Static metadata about a skill. Immutable once the catalog is loaded."""
    id: str
    name: str
    description: str
    category: SkillCategory
    risk: SkillRisk
    tools: tuple[SkillTool, ...] = ()
    dependencies: tuple[str, ...] = ()
    icon: str | None = None

    @property
    def tool_names(self) -> list[str]:
        return [tool.name for tool in self.tools]

    def get_risk_badge(self) -> str:
        """Get a human-readable risk badge."""
        badges = {
            SkillRisk.safe: "Safe (read-only)",
            SkillRisk.moderate: "Moderate (modifies project state)",
            SkillRisk.dangerous: "Dangerous (arbitrary commands)",
        }
        return badges.get(self.risk, "Unknown")


@dataclass(frozen=True)
class GlobalSkillSettings:
    """Process-wide skill settings. Replaced wholesale, never mutated."""
    default_enabled_skill_ids: frozenset[str] = field(default_factory=frozenset)
    require_confirmation_skill_ids: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class ThreadSkillConfig:
    """Per-thread skill override.

    When ``use_custom_config`` is False the stored ``enabled_skill_ids`` are
    ignored and the live global default applies.
    """
    thread_id: str
    enabled_skill_ids: frozenset[str] = field(default_factory=frozenset)
    use_custom_config: bool = False


# Pydantic models for API serialization

class SkillToolResponse(BaseModel):
    name: str
    description: str


class SkillResponse(BaseModel):
    """API response model for a skill definition."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str
    category: str
    risk: str
    risk_badge: str
    tools: list[SkillToolResponse]
    dependencies: list[str]
    requires_confirmation: bool = False

    @classmethod
    def from_definition(cls, skill: SkillDefinition, requires_confirmation: bool = False) -> "SkillResponse":
        return cls(
            id=skill.id,
            name=skill.name,
            description=skill.description,
            category=skill.category.value,
            risk=skill.risk.value,
            risk_badge=skill.get_risk_badge(),
            tools=[SkillToolResponse(name=t.name, description=t.description) for t in skill.tools],
            dependencies=list(skill.dependencies),
            requires_confirmation=requires_confirmation,
        )


class SkillListResponse(BaseModel):
    """API response for listing skills."""
    skills: list[SkillResponse]
    total: int


class ThreadSkillConfigResponse(BaseModel):
    """Effective skill configuration for a thread."""
    thread_id: str
    use_custom_config: bool
    enabled_skill_ids: list[str]
    tools: list[str]


class SkillToggleRequest(BaseModel):
    skill_id: str = Field(..., min_length=1)


class UseCustomConfigRequest(BaseModel):
    use_custom_config: bool


class GlobalSkillSettingsPayload(BaseModel):
    """Serialized form of GlobalSkillSettings (API and state file)."""
    default_enabled_skill_ids: list[str] = Field(default_factory=list)
    require_confirmation_skill_ids: list[str] = Field(default_factory=list)

    @classmethod
    def from_settings(cls, settings: GlobalSkillSettings) -> "GlobalSkillSettingsPayload":
        return cls(
            default_enabled_skill_ids=sorted(settings.default_enabled_skill_ids),
            require_confirmation_skill_ids=sorted(settings.require_confirmation_skill_ids),
        )

    def to_settings(self) -> GlobalSkillSettings:
        return GlobalSkillSettings(
            default_enabled_skill_ids=frozenset(self.default_enabled_skill_ids),
            require_confirmation_skill_ids=frozenset(self.require_confirmation_skill_ids),
        )
