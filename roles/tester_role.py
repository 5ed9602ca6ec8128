"""Tester role: checks the CI run of the issue branch."""

from roles.base_role import BaseRole
from tools.github_tools import IssueInfo
from workflow.stages import Stage

TEST_PASS = "TEST RESULT: PASS"
TEST_FAIL = "TEST RESULT: FAIL"


class TesterRole(BaseRole):
    name = "tester"
    description = "Judges the test run and routes failures back to the Feature Team"
    stage = Stage.READY_FOR_TESTS
    context_roles = ("qa",)

    def gather_context(self, issue: IssueInfo) -> dict[str, str]:
        context = super().gather_context(issue)
        branch = f"{self.settings.branch_prefix}{issue.number}"
        run = self.github.get_latest_workflow_run(branch=branch)
        if run is None:
            context["ci status"] = f"No GitHub Actions run found for branch `{branch}`."
        else:
            context["ci status"] = (
                f"Workflow `{run.name}` on `{run.branch}`: status={run.status}, "
                f"conclusion={run.conclusion or 'pending'} ({run.url})"
            )
        return context

    def next_labels(self, issue: IssueInfo, response: str) -> list[Stage]:
        if TEST_FAIL in response.upper():
            return [Stage.TEST_FAILURE, Stage.FEATURE_FIX]
        return [Stage.DOCS]
