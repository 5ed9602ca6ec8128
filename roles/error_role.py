"""Error role: resumes an issue after a human has dealt with an escalated failure."""

from roles.base_role import BaseRole, RoleResult
from tools.github_tools import IssueInfo
from workflow.stages import MANUAL_INTERVENTION_LABEL, Stage, resolve_active_stage


class ErrorRole(BaseRole):
    """Clears ``stone-error`` once ``stone-manual-intervention`` is gone.

    Escalation adds both labels. While the manual-intervention label is still
    on the issue a run only logs and leaves every label in place, so the
    failed stage is never re-run without a human. After it is removed the
    workflow resumes at the remaining in-flight stage, or starts over at
    ``stone-process`` when none remains.
    """

    name = "error"
    description = "Resumes the workflow after an error"
    stage = Stage.ERROR

    def run(self, issue_number: int) -> RoleResult:
        issue = self.github.get_issue(issue_number)
        if MANUAL_INTERVENTION_LABEL in issue.labels:
            self.log(f"Issue #{issue_number} awaits manual intervention; leaving labels unchanged")
            return self.create_result(issue_number, True, "Waiting for manual intervention", [])

        next_labels = self.next_labels(issue, "")
        resume = next_labels[0] if next_labels else resolve_active_stage(
            label for label in issue.labels if label != Stage.ERROR.value
        )

        self.github.create_comment(
            issue_number,
            f"## Recovery Process\n\nResuming the workflow at `{resume.value}`.",
        )
        self.transition(issue_number, next_labels)
        return self.create_result(issue_number, True, f"Resumed at {resume.value}", next_labels)

    def next_labels(self, issue: IssueInfo, response: str) -> list[Stage]:
        remaining = resolve_active_stage(label for label in issue.labels if label != Stage.ERROR.value)
        # The remaining stage label is already present, so nothing is added
        return [] if remaining is not None else [Stage.PROCESS]
