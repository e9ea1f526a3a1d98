"""Built-in skill catalog.

Registers the capabilities the assistant can be granted per thread:
1. Read-only: file reads, git status/history, web search, code generation
2. Write: file writes and git commits (each depends on its read skill)
3. Terminal: arbitrary shell commands (dangerous)
"""

from opensesh.skills.models import (
    GlobalSkillSettings,
    SkillCategory,
    SkillDefinition,
    SkillRisk,
    SkillTool,
)


SKILL_DEFINITIONS: tuple[SkillDefinition, ...] = (
    SkillDefinition(
        id="file_read",
        name="Read Files",
        description="Read and view file contents from the project",
        category=SkillCategory.file,
        risk=SkillRisk.safe,
        tools=(
            SkillTool("read_file", "Read file contents"),
            SkillTool("list_directory", "List directory contents"),
            SkillTool("search_files", "Search for files by pattern"),
            SkillTool("grep_files", "Search text within files"),
        ),
    ),
    SkillDefinition(
        id="file_write",
        name="Write Files",
        description="Create, edit, and delete files in the project",
        category=SkillCategory.file,
        risk=SkillRisk.moderate,
        dependencies=("file_read",),
        tools=(
            SkillTool("write_file", "Write content to a file"),
            SkillTool("create_file", "Create a new file"),
            SkillTool("delete_file", "Delete a file"),
            SkillTool("rename_file", "Rename or move a file"),
        ),
    ),
    SkillDefinition(
        id="terminal",
        name="Terminal Commands",
        description="Execute shell commands in the terminal",
        category=SkillCategory.terminal,
        risk=SkillRisk.dangerous,
        tools=(
            SkillTool("execute_command", "Run a shell command"),
            SkillTool("run_script", "Execute a script file"),
        ),
    ),
    SkillDefinition(
        id="git_read",
        name="Git Read",
        description="View git status, history, and diffs",
        category=SkillCategory.git,
        risk=SkillRisk.safe,
        tools=(
            SkillTool("git_status", "Get repository status"),
            SkillTool("git_diff", "View file changes"),
            SkillTool("git_log", "View commit history"),
            SkillTool("git_branch", "List branches"),
        ),
    ),
    SkillDefinition(
        id="git_write",
        name="Git Write",
        description="Stage, commit, and push changes",
        category=SkillCategory.git,
        risk=SkillRisk.moderate,
        dependencies=("git_read",),
        tools=(
            SkillTool("git_add", "Stage files for commit"),
            SkillTool("git_commit", "Create a commit"),
            SkillTool("git_push", "Push to remote"),
            SkillTool("git_checkout", "Switch branches"),
        ),
    ),
    SkillDefinition(
        id="web_search",
        name="Web Search",
        description="Search the web for information",
        category=SkillCategory.web,
        risk=SkillRisk.safe,
        tools=(
            SkillTool("web_search", "Search the web"),
            SkillTool("fetch_url", "Fetch content from a URL"),
        ),
    ),
    SkillDefinition(
        id="code_generation",
        name="Code Generation",
        description="Generate code suggestions and snippets",
        category=SkillCategory.code,
        risk=SkillRisk.safe,
        tools=(
            SkillTool("generate_code", "Generate code based on description"),
            SkillTool("explain_code", "Explain code functionality"),
            SkillTool("refactor_code", "Suggest code refactoring"),
        ),
    ),
)

# Enabled for new threads
DEFAULT_ENABLED_SKILLS = frozenset({"file_read", "git_read", "web_search", "code_generation"})

# Require confirmation by default
DEFAULT_REQUIRE_CONFIRMATION = frozenset({"file_write", "terminal", "git_write"})


def default_global_skill_settings() -> GlobalSkillSettings:
    return GlobalSkillSettings(
        default_enabled_skill_ids=DEFAULT_ENABLED_SKILLS,
        require_confirmation_skill_ids=DEFAULT_REQUIRE_CONFIRMATION,
    )
