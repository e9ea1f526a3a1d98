"""Skill dependency graph.

The graph is built once from an immutable catalog. Adjacency is explicit
(skill id -> dependency ids, plus the reverse edge set), and every closure is
computed iteratively with a visited set so a malformed catalog can never loop
forever. Cycles are rejected at construction time with CyclicDependencyError.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable

from opensesh.errors import CyclicDependencyError, UnknownSkillError
from opensesh.skills.models import SkillCategory, SkillDefinition, SkillRisk

logger = logging.getLogger(__name__)


class SkillGraph:
    """Registry of skill definitions with dependency-closure queries."""

    def __init__(self, skills: Iterable[SkillDefinition]) -> None:
        self._skills: dict[str, SkillDefinition] = {}
        for skill in skills:
            if skill.id in self._skills:
                raise ValueError(f"Duplicate skill id: {skill.id}")
            self._skills[skill.id] = skill

        self._dependencies: dict[str, frozenset[str]] = {}
        self._dependents: dict[str, set[str]] = {skill_id: set() for skill_id in self._skills}
        for skill in self._skills.values():
            for dep_id in skill.dependencies:
                if dep_id not in self._skills:
                    raise UnknownSkillError(dep_id)
                self._dependents[dep_id].add(skill.id)
            self._dependencies[skill.id] = frozenset(skill.dependencies)

        self._check_acyclic()
        logger.debug(f"[SkillGraph] Loaded {len(self._skills)} skills")

    def _check_acyclic(self) -> None:
        """Iterative three-colour DFS; raises on the first back edge found."""
        white, grey, black = 0, 1, 2
        colour = {skill_id: white for skill_id in self._skills}

        for root in self._skills:
            if colour[root] != white:
                continue
            path: list[str] = [root]
            stack: list[tuple[str, list[str]]] = [(root, sorted(self._dependencies[root]))]
            colour[root] = grey
            while stack:
                node, pending = stack[-1]
                if not pending:
                    colour[node] = black
                    stack.pop()
                    path.pop()
                    continue
                nxt = pending.pop()
                if colour[nxt] == grey:
                    start = path.index(nxt)
                    raise CyclicDependencyError(path[start:] + [nxt])
                if colour[nxt] == white:
                    colour[nxt] = grey
                    path.append(nxt)
                    stack.append((nxt, sorted(self._dependencies[nxt])))

    # Lookups

    def __contains__(self, skill_id: object) -> bool:
        return skill_id in self._skills

    def __len__(self) -> int:
        return len(self._skills)

    def get(self, skill_id: str) -> SkillDefinition | None:
        return self._skills.get(skill_id)

    def require(self, skill_id: str) -> SkillDefinition:
        """Get a skill or raise UnknownSkillError."""
        skill = self._skills.get(skill_id)
        if skill is None:
            raise UnknownSkillError(skill_id)
        return skill

    def list_all(self) -> list[SkillDefinition]:
        """All skills in catalog order."""
        return list(self._skills.values())

    def by_category(self, category: SkillCategory) -> list[SkillDefinition]:
        return [s for s in self._skills.values() if s.category == category]

    def by_risk(self, risk: SkillRisk) -> list[SkillDefinition]:
        return [s for s in self._skills.values() if s.risk == risk]

    # Graph queries

    def dependencies_of(self, skill_id: str) -> frozenset[str]:
        self.require(skill_id)
        return self._dependencies[skill_id]

    def dependency_closure(self, skill_id: str) -> frozenset[str]:
        """Every skill reachable through dependency edges, excluding ``skill_id``."""
        self.require(skill_id)
        return self._walk(skill_id, self._dependencies)

    def dependents_closure(self, skill_id: str) -> frozenset[str]:
        """Every skill that directly or transitively depends on ``skill_id``."""
        self.require(skill_id)
        return self._walk(skill_id, self._dependents)

    def _walk(self, start: str, edges: dict[str, frozenset[str]] | dict[str, set[str]]) -> frozenset[str]:
        visited: set[str] = set()
        queue = deque(edges[start])
        while queue:
            node = queue.popleft()
            if node in visited or node == start:
                continue
            visited.add(node)
            queue.extend(edges[node])
        return frozenset(visited)

    # Enable / disable

    def enable(self, enabled: Iterable[str], skill_id: str) -> frozenset[str]:
        """Add ``skill_id`` and its full dependency closure."""
        self.require(skill_id)
        return frozenset(enabled) | {skill_id} | self.dependency_closure(skill_id)

    def disable(self, enabled: Iterable[str], skill_id: str) -> frozenset[str]:
        """Remove ``skill_id`` and, to fixpoint, every enabled skill depending on a removed one."""
        self.require(skill_id)
        result = set(enabled)
        result.discard(skill_id)
        frontier = [skill_id]
        while frontier:
            removed = frontier.pop()
            for dependent in self._dependents[removed]:
                if dependent in result:
                    result.remove(dependent)
                    frontier.append(dependent)
        return frozenset(result)

    def tools_for(self, enabled_skill_ids: Iterable[str]) -> list[str]:
        """Tool names exposed by the enabled skills, de-duplicated in first-seen order.

        Skills are visited in catalog order; unknown ids are ignored.
        """
        enabled = set(enabled_skill_ids)
        tools: list[str] = []
        seen: set[str] = set()
        for skill in self._skills.values():
            if skill.id not in enabled:
                continue
            for tool in skill.tools:
                if tool.name not in seen:
                    seen.add(tool.name)
                    tools.append(tool.name)
        return tools
