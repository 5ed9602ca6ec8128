"""Tests for conflict detection and resolution against real git repositories."""

from unittest.mock import MagicMock

import pytest

from conftest import commit_file, git
from tools.git_tools import GitResult, GitRunner
from tools.github_tools import IssueInfo, PRInfo
from workflow.conflicts import ConflictResolver, MergeStatusReport
from workflow.errors import ConflictResolutionError
from workflow.stages import CONFLICTS_RESOLVED_LABEL, MANUAL_RESOLUTION_LABEL

BRANCH = "stone/7"


@pytest.fixture
def resolver(settings, github, git_repo):
    github.get_issue.return_value = IssueInfo(number=7, title="Add login")
    return ConflictResolver(github=github, settings=settings)


@pytest.fixture
def disjoint_branches(git_repo):
    """Feature branch and main touch different files."""
    git(git_repo, "checkout", "-q", "-b", BRANCH)
    commit_file(git_repo, "feature.txt", "new feature\n", "Add feature file")
    git(git_repo, "checkout", "-q", "main")
    commit_file(git_repo, "file.txt", "line one\nline two changed on main\nline three\n", "Main change")
    return git_repo


@pytest.fixture
def overlapping_branches(git_repo):
    """Feature branch and main change the same line of file.txt."""
    git(git_repo, "checkout", "-q", "-b", BRANCH)
    commit_file(git_repo, "file.txt", "line one\nline two from feature\nline three\n", "Feature change")
    commit_file(git_repo, "feature.txt", "new feature\n", "Add feature file")
    git(git_repo, "checkout", "-q", "main")
    commit_file(git_repo, "file.txt", "line one\nline two from main\nline three\n", "Main change")
    return git_repo


class TestDetectConflicts:
    def test_no_overlap(self, resolver, disjoint_branches):
        result = resolver.detect_conflicts(BRANCH, "main")

        assert result.has_conflicts is False
        assert result.conflicting_files == []
        assert result.branch_name == BRANCH
        assert result.target_branch == "main"

    def test_overlapping_edits(self, resolver, overlapping_branches):
        result = resolver.detect_conflicts(BRANCH)

        assert result.has_conflicts is True
        assert result.conflicting_files == ["file.txt"]

    def test_detection_does_not_touch_the_repository(self, resolver, overlapping_branches):
        head_before = git(overlapping_branches, "rev-parse", "HEAD")
        feature_before = git(overlapping_branches, "rev-parse", BRANCH)

        resolver.detect_conflicts(BRANCH)

        assert git(overlapping_branches, "rev-parse", "--abbrev-ref", "HEAD") == "main"
        assert git(overlapping_branches, "rev-parse", "HEAD") == head_before
        assert git(overlapping_branches, "rev-parse", BRANCH) == feature_before
        assert git(overlapping_branches, "status", "--porcelain") == ""

    def test_missing_branch(self, resolver):
        with pytest.raises(ConflictResolutionError, match="no merge base"):
            resolver.detect_conflicts("stone/404")


class TestResolveConflicts:
    def test_clean_rebase(self, resolver, disjoint_branches):
        result = resolver.resolve_conflicts(BRANCH, "main")

        assert result.success is True
        assert result.strategy == "rebase"
        assert result.needs_review is False
        behind = git(disjoint_branches, "rev-list", "--count", f"{BRANCH}..main")
        assert behind == "0"

    def test_keeps_branch_version_and_flags_review(self, resolver, overlapping_branches):
        result = resolver.resolve_conflicts(BRANCH, "main")

        assert result.success is True
        assert result.strategy == "ours"
        assert result.needs_review is True
        assert result.resolved_files == ["file.txt"]
        assert git(overlapping_branches, "rev-parse", "--abbrev-ref", "HEAD") == BRANCH
        assert "line two from feature" in (overlapping_branches / "file.txt").read_text()
        assert git(overlapping_branches, "status", "--porcelain") == ""
        # main is now an ancestor of the branch
        git(overlapping_branches, "merge-base", "--is-ancestor", "main", BRANCH)

    def test_detection_after_resolution_is_clean(self, resolver, overlapping_branches):
        resolver.resolve_conflicts(BRANCH, "main")
        assert resolver.detect_conflicts(BRANCH, "main").has_conflicts is False

    def test_checkout_failure(self, resolver, git_repo):
        result = resolver.resolve_conflicts("stone/404", "main")
        assert result.success is False
        assert "stone/404" in result.message


class FakeGit:
    """GitRunner stand-in driven by a table of args prefix to (exit code, stdout)."""

    def __init__(self, outcomes):
        self.outcomes = outcomes
        self.calls = []

    def run(self, args):
        self.calls.append(args)
        for prefix, (code, stdout) in self.outcomes.items():
            if tuple(args[: len(prefix)]) == prefix:
                return GitResult(args=args, stdout=stdout, stderr="" if code == 0 else "failed", exit_code=code)
        return GitResult(args=args, stdout="", stderr="", exit_code=0)


def test_unresolvable_file_aborts_the_whole_merge(settings):
    fake = FakeGit(
        {
            ("rebase", "--abort"): (0, ""),
            ("rebase",): (1, ""),
            ("merge", "--abort"): (0, ""),
            ("merge",): (1, ""),
            ("diff", "--name-only", "--diff-filter=U"): (0, "a.txt\nb.txt\n"),
            ("checkout", "--ours", "--", "b.txt"): (1, ""),
        }
    )
    resolver = ConflictResolver(settings=settings, git=fake)

    result = resolver.resolve_conflicts(BRANCH, "main")

    assert result.success is False
    assert "b.txt" in result.error
    assert ["merge", "--abort"] in fake.calls
    assert not any(call[0] == "commit" for call in fake.calls)
    # a.txt was staged before b.txt failed; the abort discards it
    assert ["add", "--", "a.txt"] in fake.calls
    assert fake.calls[-1] == ["merge", "--abort"]


class TestMergeStatus:
    def test_report(self, resolver, overlapping_branches, github):
        report = resolver.track_merge_status(7)

        assert report.branch_exists is True
        assert report.behind_count == 1
        assert report.has_conflicts is True
        assert report.issue_title == "Add login"
        github.find_pull_request_for_branch.assert_called_once_with(BRANCH)

        comment = report.to_comment()
        assert comment.startswith("## Merge Status Report")
        assert "1 commit(s) behind `main`" in comment
        assert "No open PR found" in comment
        assert "Merge conflicts: Yes" in comment

    def test_report_is_read_only(self, resolver, overlapping_branches, github):
        before = git(overlapping_branches, "rev-parse", BRANCH)
        resolver.track_merge_status(7)
        assert git(overlapping_branches, "rev-parse", BRANCH) == before
        github.create_comment.assert_not_called()
        github.add_labels.assert_not_called()

    def test_missing_branch(self, resolver):
        report = resolver.track_merge_status(404)
        assert report.branch_exists is False
        assert report.has_conflicts is False
        assert "does not exist" in report.to_comment()

    @pytest.mark.parametrize(
        "mergeable,merged,expected",
        [(True, False, "ready to merge"), (False, False, "conflicts"), (None, False, "unknown"), (True, True, "merged")],
    )
    def test_pr_status(self, mergeable, merged, expected):
        pr = PRInfo(number=12, title="t", url="u", state="open", branch=BRANCH, mergeable=mergeable, merged=merged)
        report = MergeStatusReport(
            issue_number=7, branch_name=BRANCH, target_branch="main", branch_exists=True, pull_request=pr
        )
        assert report.pr_status.startswith("#12 (")
        assert expected in report.pr_status


class TestHandleIssueConflicts:
    def test_resolved(self, resolver, overlapping_branches, github):
        result = resolver.handle_issue_conflicts(7)

        assert result.success is True
        github.add_labels.assert_called_once_with(7, [CONFLICTS_RESOLVED_LABEL])
        bodies = [c.args[1] for c in github.create_comment.call_args_list]
        assert bodies[0].startswith("## Conflict Resolution")
        assert "`file.txt`" in bodies[0]
        assert bodies[-1].startswith("## Merge Status Report")

    def test_nothing_to_do(self, resolver, disjoint_branches, github):
        result = resolver.handle_issue_conflicts(7)

        assert result.success is True
        assert "No merge conflicts detected" in github.create_comment.call_args.args[1]
        github.add_labels.assert_not_called()

    def test_manual_resolution_needed(self, settings, github, overlapping_branches):
        git_runner = GitRunner(overlapping_branches)
        resolver = ConflictResolver(github=github, settings=settings, git=git_runner)
        failed = MagicMock(return_value=MagicMock(success=False, error="b.txt", needs_review=False))
        resolver.resolve_conflicts = failed

        resolver.handle_issue_conflicts(7)

        github.add_labels.assert_called_once_with(7, [MANUAL_RESOLUTION_LABEL])
        assert "Manual intervention is required" in github.create_comment.call_args_list[0].args[1]

    def test_needs_github(self, settings, git_repo):
        with pytest.raises(ConflictResolutionError):
            ConflictResolver(settings=settings).handle_issue_conflicts(7)
