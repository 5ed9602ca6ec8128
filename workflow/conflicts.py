"""Merge conflict detection and bounded automatic resolution.

Detection simulates the merge with ``git merge-tree`` and never touches the
working tree. Resolution tries rebase, then merge, then keeping the branch
version of each conflicting file, aborting each failed strategy before the
next one starts.
"""

import logging
import re
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from config.settings import Settings, get_settings
from tools.git_tools import GitResult, GitRunner, GitTimeoutError
from tools.github_tools import GitHubAPIError, GitHubTools, PRInfo
from workflow.errors import ConflictResolutionError
from workflow.stages import CONFLICTS_RESOLVED_LABEL, MANUAL_RESOLUTION_LABEL

logger = logging.getLogger(__name__)

# Conflict markers at the start of a merge-tree output line (optionally diff-prefixed)
_MARKER_RE = re.compile(r"^[+ -]?(<{7}|={7}|>{7})", re.MULTILINE)


class ConflictDetectionResult(BaseModel):
    """Result of one merge simulation. Never persisted."""

    has_conflicts: bool
    conflicting_files: list[str] = Field(default_factory=list)
    branch_name: str
    target_branch: str


class ConflictResolutionResult(BaseModel):
    """Result of one resolution attempt."""

    success: bool
    resolved_files: list[str] = Field(default_factory=list)
    error: str | None = None
    message: str | None = None
    strategy: str | None = Field(default=None, description="rebase, merge or ours")
    needs_review: bool = Field(default=False, description="Files were resolved by keeping the branch version wholesale")


class MergeStatusReport(BaseModel):
    """Read-only merge status of an issue branch."""

    issue_number: int
    issue_title: str = ""
    branch_name: str
    target_branch: str
    branch_exists: bool
    behind_count: int = 0
    pull_request: PRInfo | None = None
    has_conflicts: bool | None = Field(default=None, description="None when the check could not run")
    conflicting_files: list[str] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def pr_status(self) -> str:
        if self.pull_request is None:
            return "No open PR found"
        pr = self.pull_request
        if pr.merged:
            state = "merged"
        elif pr.mergeable is False:
            state = "conflicts"
        elif pr.mergeable is True:
            state = "ready to merge"
        else:
            state = "mergeability unknown"
        return f"#{pr.number} ({state})"

    def to_comment(self) -> str:
        """Format the report as a Markdown issue comment."""
        if self.has_conflicts is None:
            conflicts = "Unknown"
        elif self.has_conflicts:
            conflicts = "Yes"
            if self.conflicting_files:
                conflicts += " (" + ", ".join(f"`{f}`" for f in self.conflicting_files) + ")"
        else:
            conflicts = "No"
        title = f" - {self.issue_title}" if self.issue_title else ""
        return "\n".join(
            [
                "## Merge Status Report",
                "",
                f"Issue #{self.issue_number}{title}",
                "",
                f"* Branch: `{self.branch_name}` {'exists' if self.branch_exists else 'does not exist'}",
                f"* Branch is {self.behind_count} commit(s) behind `{self.target_branch}`",
                f"* Pull request: {self.pr_status}",
                f"* Merge conflicts: {conflicts}",
                "",
                f"Last updated: {self.checked_at.isoformat()}",
            ]
        )


def _lines(result: GitResult) -> list[str]:
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


class ConflictResolver:
    """Detects and resolves conflicts between an issue branch and the target branch."""

    def __init__(
        self,
        github: GitHubTools | None = None,
        settings: Settings | None = None,
        git: GitRunner | None = None,
    ):
        self.settings = settings or get_settings()
        self.github = github
        self.git = git or GitRunner(self.settings.repo_path, timeout=self.settings.external_call_timeout)

    def branch_for_issue(self, issue_number: int) -> str:
        return f"{self.settings.branch_prefix}{issue_number}"

    # Detection

    def detect_conflicts(self, branch_name: str, target_branch: str | None = None) -> ConflictDetectionResult:
        """Simulate merging ``branch_name`` into ``target_branch``.

        Raises:
            ConflictResolutionError: If the branches have no merge base or do not exist.
        """
        target = target_branch or self.settings.main_branch
        logger.info(f"Detecting conflicts between {branch_name} and {target}")

        base_result = self.git.run(["merge-base", target, branch_name])
        if not base_result.ok or not base_result.stdout.strip():
            raise ConflictResolutionError(
                f"Conflict detection failed: no merge base for {target} and {branch_name}: {base_result.stderr.strip()}"
            )
        base = base_result.stdout.strip()

        has_conflicts = self._simulate_merge(base, target, branch_name)
        files: list[str] = []
        if has_conflicts:
            files = self._changed_on_both_sides(base, target, branch_name)

        logger.info(f"{branch_name} vs {target}: conflicts={has_conflicts} files={files}")
        return ConflictDetectionResult(
            has_conflicts=has_conflicts,
            conflicting_files=files,
            branch_name=branch_name,
            target_branch=target,
        )

    def _simulate_merge(self, base: str, target: str, branch: str) -> bool:
        """Three-way merge without a checkout or a commit, scanned for conflict markers."""
        result = self.git.run(["merge-tree", base, target, branch])
        if result.ok:
            return bool(_MARKER_RE.search(result.stdout))

        # Git without the three-argument form: use the write-tree mode, which exits 1 on conflicts
        logger.debug(f"Legacy merge-tree unavailable ({result.stderr.strip()}), using --write-tree")
        result = self.git.run(["merge-tree", "--write-tree", "--no-messages", target, branch])
        if result.exit_code in (0, 1):
            return result.exit_code == 1
        raise ConflictResolutionError(f"Conflict detection failed: git merge-tree: {result.stderr.strip()}")

    def _changed_on_both_sides(self, base: str, target: str, branch: str) -> list[str]:
        """Files both sides changed since the merge base, else the branch's changed files."""
        branch_files = _lines(self.git.run(["diff", "--name-only", base, branch]))
        target_files = set(_lines(self.git.run(["diff", "--name-only", base, target])))
        both = [f for f in branch_files if f in target_files]
        return both or branch_files

    # Resolution

    def _in_progress(self, ref: str) -> bool:
        return self.git.run(["rev-parse", "-q", "--verify", ref]).ok

    def _abort_in_progress(self) -> None:
        """Leave no rebase or merge half applied."""
        # rebase --abort exits non-zero when no rebase is running
        self.git.run(["rebase", "--abort"])
        if self._in_progress("MERGE_HEAD"):
            self.git.run(["merge", "--abort"])

    def resolve_conflicts(self, branch_name: str, target_branch: str | None = None) -> ConflictResolutionResult:
        """Bring ``branch_name`` up to date with the target, escalating through three strategies."""
        target = target_branch or self.settings.main_branch
        logger.info(f"Resolving conflicts of {branch_name} with {target}")

        checkout = self.git.run(["checkout", branch_name])
        if not checkout.ok:
            return ConflictResolutionResult(
                success=False,
                error=checkout.stderr.strip(),
                message=f"Could not check out {branch_name}",
            )

        try:
            return self._resolve(branch_name, target)
        except GitTimeoutError:
            self._abort_in_progress()
            raise

    def _resolve(self, branch_name: str, target: str) -> ConflictResolutionResult:
        rebase = self.git.run(["rebase", target])
        if rebase.ok:
            logger.info(f"Rebased {branch_name} onto {target}")
            return ConflictResolutionResult(
                success=True, strategy="rebase", message=f"Rebased {branch_name} onto {target} cleanly"
            )
        logger.debug(f"Rebase failed, aborting: {rebase.output}")
        self.git.run(["rebase", "--abort"])

        merge = self.git.run(["merge", target, "--no-edit"])
        if merge.ok:
            logger.info(f"Merged {target} into {branch_name}")
            return ConflictResolutionResult(
                success=True, strategy="merge", message=f"Merged {target} into {branch_name} cleanly"
            )
        if not self._in_progress("MERGE_HEAD"):
            return ConflictResolutionResult(
                success=False,
                error=merge.output,
                message=f"Merge of {target} into {branch_name} could not start",
            )
        logger.debug(f"Merge stopped on conflicts: {merge.output}")

        return self._keep_branch_versions(branch_name, target)

    def _keep_branch_versions(self, branch_name: str, target: str) -> ConflictResolutionResult:
        """Resolve every unmerged file to the branch version, all or nothing."""
        unmerged = _lines(self.git.run(["diff", "--name-only", "--diff-filter=U"]))
        if not unmerged:
            self.git.run(["merge", "--abort"])
            return ConflictResolutionResult(
                success=False,
                error="merge stopped without unmerged files",
                message="Manual intervention required",
            )

        for path in unmerged:
            for args in (["checkout", "--ours", "--", path], ["add", "--", path]):
                result = self.git.run(args)
                if not result.ok:
                    logger.warning(f"Could not keep branch version of {path}: {result.output}")
                    self.git.run(["merge", "--abort"])
                    return ConflictResolutionResult(
                        success=False,
                        error=f"{path}: {result.output}",
                        message="Manual intervention required",
                    )

        commit = self.git.run(["commit", "--no-edit", "-m", f"Resolve conflicts with {target} (kept {branch_name} version)"])
        if not commit.ok:
            self.git.run(["merge", "--abort"])
            return ConflictResolutionResult(
                success=False,
                error=commit.output,
                message="Manual intervention required",
            )

        logger.warning(f"Resolved {unmerged} by keeping the {branch_name} version; review required")
        return ConflictResolutionResult(
            success=True,
            resolved_files=unmerged,
            strategy="ours",
            needs_review=True,
            message=f"Kept the {branch_name} version of {len(unmerged)} file(s); review the resolution",
        )

    # Status

    def track_merge_status(self, issue_number: int) -> MergeStatusReport:
        """Build a read-only merge status report for the issue branch."""
        branch = self.branch_for_issue(issue_number)
        target = self.settings.main_branch
        exists = self.git.branch_exists(branch)

        behind = 0
        if exists:
            count = self.git.run(["rev-list", "--count", f"{branch}..{target}"])
            if count.ok and count.stdout.strip().isdigit():
                behind = int(count.stdout.strip())

        title = ""
        pr = None
        if self.github is not None:
            try:
                title = self.github.get_issue(issue_number).title
                pr = self.github.find_pull_request_for_branch(branch)
            except GitHubAPIError as e:
                logger.warning(f"Could not read GitHub state for #{issue_number}: {e}")

        has_conflicts = None
        files: list[str] = []
        if exists:
            try:
                detection = self.detect_conflicts(branch, target)
                has_conflicts, files = detection.has_conflicts, detection.conflicting_files
            except ConflictResolutionError as e:
                logger.warning(str(e))
        else:
            has_conflicts = False

        return MergeStatusReport(
            issue_number=issue_number,
            issue_title=title,
            branch_name=branch,
            target_branch=target,
            branch_exists=exists,
            behind_count=behind,
            pull_request=pr,
            has_conflicts=has_conflicts,
            conflicting_files=files,
        )

    def handle_issue_conflicts(self, issue_number: int) -> ConflictResolutionResult:
        """Detect, resolve, comment and label for an issue branch, then post the merge status."""
        if self.github is None:
            raise ConflictResolutionError("handle_issue_conflicts needs a GitHub client")

        branch = self.branch_for_issue(issue_number)
        detection = self.detect_conflicts(branch)

        if not detection.has_conflicts:
            self.github.create_comment(
                issue_number,
                f"## Conflict Resolution\n\nNo merge conflicts detected for issue #{issue_number}. "
                "The branch can be merged cleanly.",
            )
            return ConflictResolutionResult(success=True, message="No conflicts detected")

        result = self.resolve_conflicts(branch, detection.target_branch)
        if result.success:
            body = (
                f"## Conflict Resolution\n\nMerge conflicts were automatically resolved for issue #{issue_number} "
                f"using the **{result.strategy}** strategy. The branch can now be merged."
            )
            if result.needs_review:
                body += "\n\nThese files kept the branch version wholesale and need review:\n"
                body += "\n".join(f"- `{f}`" for f in result.resolved_files)
            self.github.create_comment(issue_number, body)
            self.github.add_labels(issue_number, [CONFLICTS_RESOLVED_LABEL])
        else:
            details = "\n".join(f"- `{f}`" for f in detection.conflicting_files)
            self.github.create_comment(
                issue_number,
                f"## Conflict Resolution\n\nMerge conflicts could not be automatically resolved for issue "
                f"#{issue_number}. Manual intervention is required.\n\n"
                f"Error: {result.error}\n\nConflicting files:\n{details}",
            )
            self.github.add_labels(issue_number, [MANUAL_RESOLUTION_LABEL])

        self.github.create_comment(issue_number, self.track_merge_status(issue_number).to_comment())
        return result
