"""QA role: writes tests from the PM specification."""

from roles.base_role import BaseRole
from tools.github_tools import IssueInfo
from workflow.stages import Stage


class QARole(BaseRole):
    name = "qa"
    description = "Creates test files from the Gherkin specification"
    stage = Stage.QA
    context_roles = ("pm",)

    def next_labels(self, issue: IssueInfo, response: str) -> list[Stage]:
        return [Stage.ACTIONS]
