"""Actions role: wires the QA tests into GitHub Actions."""

import logging

from roles.base_role import BaseRole
from tools.github_tools import IssueInfo
from workflow.stages import Stage

logger = logging.getLogger(__name__)

WORKFLOW_FILES = (".github/workflows/ci.yml", ".github/workflows/test.yml")


class ActionsRole(BaseRole):
    name = "actions"
    description = "Creates or updates the CI workflows that run the tests"
    stage = Stage.ACTIONS
    context_roles = ("qa",)

    def gather_context(self, issue: IssueInfo) -> dict[str, str]:
        context = super().gather_context(issue)
        existing = []
        for path in WORKFLOW_FILES:
            content = self.github.get_file_content(path, ref=self.settings.main_branch)
            if content:
                existing.append(f"`{path}`:\n```yaml\n{content}\n```")
        context["existing workflows"] = (
            "\n\n".join(existing) if existing else "No existing workflow files found. Create them from scratch."
        )
        return context

    def next_labels(self, issue: IssueInfo, response: str) -> list[Stage]:
        return [Stage.FEATURE_IMPLEMENT]
