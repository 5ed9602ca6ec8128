"""PR role: opens the pull request that delivers the issue."""

from roles.base_role import BaseRole, RoleResult
from tools.github_tools import IssueInfo
from workflow.stages import Stage


class PRRole(BaseRole):
    name = "pr"
    description = "Opens the pull request for the issue branch"
    stage = Stage.PR
    context_roles = ("pm", "feature", "docs")

    def run(self, issue_number: int) -> RoleResult:
        issue = self.github.get_issue(issue_number)
        branch = f"{self.settings.branch_prefix}{issue_number}"

        body = f"{self.generate(issue, self.gather_context(issue))}\n\nCloses #{issue_number}"
        existing = self.github.find_pull_request_for_branch(branch)
        if existing is not None:
            self.github.update_pull_request(existing.number, body=body)
            self.log(f"Updated description of PR #{existing.number} for {branch}")
            pr = existing
        else:
            pr = self.github.create_pull_request(
                title=f"{issue.title} (#{issue_number})",
                body=body,
                head=branch,
                base=self.settings.main_branch,
            )
            self.log(f"Opened PR #{pr.number} for {branch}")

        self.post_response(issue_number, f"Pull request: #{pr.number} ({pr.url})")
        next_labels = self.next_labels(issue, "")
        self.transition(issue_number, next_labels)
        return self.create_result(
            issue_number, True, f"PR #{pr.number} ready", next_labels, metadata={"pr_number": pr.number, "pr_url": pr.url}
        )

    def next_labels(self, issue: IssueInfo, response: str) -> list[Stage]:
        return [Stage.COMPLETE]
