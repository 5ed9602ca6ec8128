"""Docs role: writes the user-facing documentation."""

from roles.base_role import BaseRole
from tools.github_tools import IssueInfo
from workflow.stages import Stage

DOCS_DIR = "docs/features"


class DocsRole(BaseRole):
    name = "docs"
    description = "Documents the feature once tests pass"
    stage = Stage.DOCS
    context_roles = ("pm", "feature")

    def post_response(self, issue_number: int, response: str) -> None:
        super().post_response(issue_number, response)
        self.publish(issue_number, response)

    def publish(self, issue_number: int, content: str) -> str:
        """Commit the documentation to the issue branch, creating the branch if needed."""
        branch = f"{self.settings.branch_prefix}{issue_number}"
        path = f"{DOCS_DIR}/issue-{issue_number}.md"
        if self.github.create_branch(branch, self.settings.main_branch):
            self.log(f"Created branch {branch}")
        action = self.github.create_or_update_file(
            path, content.rstrip() + "\n", f"Update documentation for issue #{issue_number}", branch=branch
        )
        self.log(f"Documentation {action}: {path} on {branch}")
        return path

    def next_labels(self, issue: IssueInfo, response: str) -> list[Stage]:
        return [Stage.PR]
