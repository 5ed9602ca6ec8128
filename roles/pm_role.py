"""PM role: turns the issue into a Gherkin specification."""

from roles.base_role import BaseRole
from tools.github_tools import IssueInfo
from workflow.stages import Stage


class PMRole(BaseRole):
    name = "pm"
    description = "Writes the Gherkin specification for a new issue"
    stage = Stage.PROCESS

    def next_labels(self, issue: IssueInfo, response: str) -> list[Stage]:
        return [Stage.QA]
