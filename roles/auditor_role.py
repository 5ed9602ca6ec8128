"""Auditor role: passes the implementation on to testing or sends it back."""

from roles.base_role import BaseRole
from tools.github_tools import IssueInfo
from workflow.stages import Stage

PASS_INDICATORS = (
    "AUDIT: PASS",
    "AUDIT RESULT: PASS",
    "AUDIT STATUS: PASS",
    "The audit has passed",
    "All audit checks have passed",
)

FAIL_INDICATORS = (
    "AUDIT: FAIL",
    "AUDIT RESULT: FAIL",
    "AUDIT STATUS: FAIL",
    "The audit has failed",
    "The implementation has issues",
)

# A list of findings without an explicit verdict counts as a failure
ISSUE_INDICATORS = (
    "Issues found:",
    "Problems:",
    "The following issues were found:",
)


def audit_passed(response: str) -> bool:
    """Read the verdict from an audit response. No verdict and no findings is a pass."""
    if any(indicator in response for indicator in PASS_INDICATORS):
        return True
    if any(indicator in response for indicator in FAIL_INDICATORS):
        return False
    return not any(indicator in response for indicator in ISSUE_INDICATORS)


class AuditorRole(BaseRole):
    name = "auditor"
    description = "Audits the implementation against the specification"
    stage = Stage.AUDIT
    context_roles = ("pm", "qa", "feature")

    def next_labels(self, issue: IssueInfo, response: str) -> list[Stage]:
        if audit_passed(response):
            return [Stage.AUDIT_PASS, Stage.READY_FOR_TESTS]
        return [Stage.AUDIT_FAIL, Stage.FEATURE_FIX]

    def transition(self, issue_number: int, add: list[Stage]) -> None:
        super().transition(issue_number, add)
        # Drop the verdict of an earlier audit round
        stale = Stage.AUDIT_FAIL if Stage.AUDIT_PASS in add else Stage.AUDIT_PASS
        self.github.remove_label(issue_number, stale.value)
