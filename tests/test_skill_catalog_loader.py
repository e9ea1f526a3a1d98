"""Tests for loading skill catalogs from YAML."""

import pytest

from opensesh.errors import CyclicDependencyError, OrchestrationError, UnknownSkillError
from opensesh.skills import SkillCatalogError, build_skill_graph, load_skill_catalog
from opensesh.skills.loader import parse_skill_catalog


CATALOG = """
skills:
  - id: docs_read
    name: Read Docs
    category: file
    risk: safe
    tools:
      - read_doc
      - name: search_docs
        description: Full-text search
  - id: docs_write
    name: Write Docs
    category: file
    risk: moderate
    dependencies: [docs_read]
    tools: [write_doc]
"""


class TestCatalogParsing:
    def test_parses_skills_mapping(self):
        skills = parse_skill_catalog(CATALOG)
        assert [s.id for s in skills] == ["docs_read", "docs_write"]
        assert skills[0].tools[1].description == "Full-text search"
        assert skills[1].dependencies == ("docs_read",)

    def test_accepts_bare_list(self):
        skills = parse_skill_catalog("- {id: a, name: A, category: code, risk: safe}\n")
        assert skills[0].id == "a"

    def test_missing_fields(self):
        with pytest.raises(SkillCatalogError, match="risk"):
            parse_skill_catalog("- {id: a, name: A, category: code}\n")

    def test_invalid_risk(self):
        with pytest.raises(SkillCatalogError):
            parse_skill_catalog("- {id: a, name: A, category: code, risk: spicy}\n")

    def test_invalid_tool_entry(self):
        with pytest.raises(SkillCatalogError):
            parse_skill_catalog("- {id: a, name: A, category: code, risk: safe, tools: [42]}\n")

    def test_not_a_list(self):
        with pytest.raises(SkillCatalogError):
            parse_skill_catalog("skills: nope\n")

    def test_entry_not_a_mapping(self):
        with pytest.raises(SkillCatalogError, match="mapping"):
            parse_skill_catalog("skills:\n  - web_search\n")

    def test_catalog_errors_are_orchestration_errors(self):
        with pytest.raises(OrchestrationError):
            parse_skill_catalog("- [a, b]\n")


class TestCatalogFiles:
    def test_load_from_path(self, tmp_path):
        path = tmp_path / "skills.yaml"
        path.write_text(CATALOG, encoding="utf-8")
        graph = build_skill_graph(str(path))
        assert graph.dependency_closure("docs_write") == {"docs_read"}

    def test_unknown_dependency_in_file(self, tmp_path):
        path = tmp_path / "skills.yaml"
        path.write_text(
            "- {id: a, name: A, category: code, risk: safe, dependencies: [ghost]}\n",
            encoding="utf-8",
        )
        with pytest.raises(UnknownSkillError):
            load_skill_catalog(path)

    def test_cycle_in_file(self, tmp_path):
        path = tmp_path / "skills.yaml"
        path.write_text(
            "- {id: a, name: A, category: code, risk: safe, dependencies: [b]}\n"
            "- {id: b, name: B, category: code, risk: safe, dependencies: [a]}\n",
            encoding="utf-8",
        )
        with pytest.raises(CyclicDependencyError):
            load_skill_catalog(path)

    def test_default_catalog_without_path(self):
        assert "terminal" in build_skill_graph()
