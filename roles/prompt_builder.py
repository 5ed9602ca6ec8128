"""
Prompt Builder for the stage roles.

Each role has a persona file under ``roles/prompts/`` holding its system
instructions, principles and task list. The builder combines it with the
issue details and the earlier role responses the role depends on.
"""

import logging
from functools import lru_cache
from pathlib import Path

import yaml

from tools.github_tools import IssueInfo

logger = logging.getLogger(__name__)

# Path to prompts directory
PROMPTS_DIR = Path(__file__).parent / "prompts"


@lru_cache
def load_persona(role_name: str) -> dict:
    """Load a role persona YAML file from the prompts directory."""
    file_path = PROMPTS_DIR / f"{role_name}.yaml"
    if not file_path.exists():
        logger.warning(f"[PROMPT] Persona file not found: {file_path}")
        return {}
    try:
        with open(file_path) as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"[PROMPT] Failed to load {file_path}: {e}")
        return {}


class PromptBuilder:
    """Builds the system prompt and the task prompt of one role."""

    def __init__(self, role_name: str, repository: str = ""):
        self.role_name = role_name
        self.repository = repository
        self.persona = load_persona(role_name)

    def system_prompt(self) -> str:
        instructions = self.persona.get("instructions")
        if instructions:
            return instructions.strip()
        return f"You are the {self.role_name} role in the Stone software factory."

    def build_prompt(self, issue: IssueInfo, context: dict[str, str] | None = None) -> str:
        """
        Build the complete prompt for Claude.

        Args:
            issue: Issue being processed
            context: Earlier role responses keyed by role name

        Returns:
            Complete prompt string for Claude
        """
        sections = [self._build_issue_section(issue)]

        for role, response in (context or {}).items():
            sections.append(f"## {role.upper()} Role Output\n\n{response.strip()}")

        principles = self._build_principles_section()
        if principles:
            sections.append(principles)

        sections.append(self._build_task_section())
        return "\n\n".join(sections)

    def _build_issue_section(self, issue: IssueInfo) -> str:
        """Build the issue details section."""
        lines = [f"## Issue #{issue.number}: {issue.title}", "", issue.body or "No description provided."]
        if issue.labels:
            lines += ["", f"Labels: {', '.join(issue.labels)}"]
        if self.repository:
            lines += ["", f"Repository: {self.repository}"]
        return "\n".join(lines)

    def _build_principles_section(self) -> str:
        principles = self.persona.get("principles", [])
        if not principles:
            return ""
        return "## Principles\n" + "\n".join(f"- {p}" for p in principles)

    def _build_task_section(self) -> str:
        """Build the task instructions section."""
        tasks = self.persona.get("tasks", [])
        lines = ["## Your Task"]
        lines += [f"{i}. {task}" for i, task in enumerate(tasks, 1)]
        closing = self.persona.get("closing")
        if closing:
            lines += ["", closing.strip()]
        else:
            lines += ["", 'List specific action items at the end of your response under an "Actions:" heading.']
        return "\n".join(lines)
