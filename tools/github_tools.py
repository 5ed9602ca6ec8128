"""GitHub tools for issue, label, comment and pull request operations."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from github import Auth, Github, GithubException
from pydantic import BaseModel, Field

from config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """A GitHub request failed (non-2xx response or transport failure)."""

    def __init__(self, status: int | None, message: str, action: str = ""):
        self.status = status
        self.action = action
        prefix = f"GitHub API error {status}" if status is not None else "GitHub network error"
        where = f" during {action}" if action else ""
        super().__init__(f"{prefix}{where}: {message}")


def get_github_client(settings: Settings | None = None) -> Github:
    """Get authenticated GitHub client bounded by the configured timeout."""
    settings = settings or get_settings()
    if not settings.github_token:
        raise ValueError("GITHUB_TOKEN not configured")
    return Github(
        auth=Auth.Token(settings.github_token),
        timeout=int(settings.external_call_timeout),
    )


@contextmanager
def _github_errors(action: str) -> Iterator[None]:
    """Translate PyGithub and transport errors into GitHubAPIError."""
    try:
        yield
    except GithubException as e:
        data = e.data if isinstance(e.data, dict) else {}
        message = data.get("message") or str(e)
        raise GitHubAPIError(e.status, message, action) from e
    except OSError as e:
        # requests' ConnectionError and Timeout are OSError subclasses
        raise GitHubAPIError(None, str(e) or type(e).__name__, action) from e


class IssueInfo(BaseModel):
    """Issue information."""

    number: int
    title: str
    body: str = ""
    labels: list[str] = Field(default_factory=list)
    url: str = ""
    state: str = "open"


class CommentInfo(BaseModel):
    """Issue or pull request comment."""

    id: int
    body: str
    author: str = "unknown"
    url: str = ""


class PRInfo(BaseModel):
    """Pull request information."""

    number: int
    title: str
    url: str
    state: str
    created_at: datetime | None = None
    branch: str
    mergeable: bool | None = None
    merged: bool = False


class WorkflowRunInfo(BaseModel):
    """GitHub Actions run summary."""

    name: str = ""
    status: str = ""
    conclusion: str | None = None
    url: str = ""
    branch: str = ""


def _pr_info(pr) -> PRInfo:
    return PRInfo(
        number=pr.number,
        title=pr.title,
        url=pr.html_url,
        state=pr.state,
        created_at=pr.created_at,
        branch=pr.head.ref,
        mergeable=pr.mergeable,
        merged=bool(pr.merged),
    )


class GitHubTools:
    """Tools for GitHub operations on the configured repository."""

    def __init__(self, client: Github | None = None, settings: Settings | None = None):
        """Initialize GitHub tools."""
        self.settings = settings or get_settings()
        self.client = client or get_github_client(self.settings)
        self._repo = None

    @property
    def repo(self):
        """Get repository object (lazy loaded)."""
        if self._repo is None:
            with _github_errors("get_repo"):
                self._repo = self.client.get_repo(self.settings.github_repo)
        return self._repo

    # Issues

    def get_issue(self, issue_number: int) -> IssueInfo:
        """Fetch an issue with its label names."""
        with _github_errors("get_issue"):
            issue = self.repo.get_issue(issue_number)
            return IssueInfo(
                number=issue.number,
                title=issue.title,
                body=issue.body or "",
                labels=[label.name for label in issue.labels],
                url=issue.html_url,
                state=issue.state,
            )

    def get_issue_labels(self, issue_number: int) -> list[str]:
        """Return the label names currently on an issue."""
        return self.get_issue(issue_number).labels

    def list_issues_with_label(self, label: str, state: str = "open") -> list[IssueInfo]:
        """List issues carrying a label (pull requests excluded)."""
        with _github_errors("list_issues"):
            return [
                IssueInfo(
                    number=issue.number,
                    title=issue.title,
                    body=issue.body or "",
                    labels=[lbl.name for lbl in issue.labels],
                    url=issue.html_url,
                    state=issue.state,
                )
                for issue in self.repo.get_issues(state=state, labels=[label])
                if issue.pull_request is None
            ]

    def add_labels(self, issue_number: int, labels: list[str]) -> None:
        """Add labels to an issue."""
        if not labels:
            return
        if self.settings.dry_run:
            logger.info(f"[DRY RUN] Would add labels {labels} to #{issue_number}")
            return
        with _github_errors("add_labels"):
            self.repo.get_issue(issue_number).add_to_labels(*labels)
        logger.debug(f"Added labels {labels} to #{issue_number}")

    def remove_label(self, issue_number: int, label: str) -> None:
        """Remove a label from an issue. A label that is not present is ignored."""
        if self.settings.dry_run:
            logger.info(f"[DRY RUN] Would remove label {label} from #{issue_number}")
            return
        try:
            with _github_errors("remove_label"):
                self.repo.get_issue(issue_number).remove_from_labels(label)
        except GitHubAPIError as e:
            if e.status == 404:
                logger.debug(f"Label {label} not present on #{issue_number}")
                return
            raise
        logger.debug(f"Removed label {label} from #{issue_number}")

    def create_comment(self, issue_number: int, body: str) -> CommentInfo | None:
        """Comment on an issue or pull request."""
        if self.settings.dry_run:
            logger.info(f"[DRY RUN] Would comment on #{issue_number}:\n{body}")
            return None
        with _github_errors("create_comment"):
            comment = self.repo.get_issue(issue_number).create_comment(body)
            return CommentInfo(id=comment.id, body=comment.body, url=comment.html_url)

    def get_issue_comments(self, issue_number: int) -> list[CommentInfo]:
        """Return all comments on an issue."""
        with _github_errors("get_issue_comments"):
            return [
                CommentInfo(
                    id=c.id,
                    body=c.body or "",
                    author=c.user.login if c.user else "unknown",
                    url=c.html_url,
                )
                for c in self.repo.get_issue(issue_number).get_comments()
            ]

    def create_issue(self, title: str, body: str, labels: list[str] | None = None) -> int:
        """Open a new issue and return its number."""
        if self.settings.dry_run:
            logger.info(f"[DRY RUN] Would create issue '{title}' with labels {labels}")
            return 0
        with _github_errors("create_issue"):
            issue = self.repo.create_issue(title=title, body=body, labels=labels or [])
            return issue.number

    # Pull requests

    def create_pull_request(
        self,
        title: str,
        body: str,
        head: str,
        base: str = "main",
        labels: list[str] | None = None,
    ) -> PRInfo:
        """Create a pull request. A dry run returns a placeholder numbered 0."""
        if self.settings.dry_run:
            logger.info(f"[DRY RUN] Would open PR '{title}' from {head} into {base}")
            return PRInfo(number=0, title=title, url="", state="dry-run", branch=head)
        with _github_errors("create_pull_request"):
            pr = self.repo.create_pull(
                title=title,
                body=body,
                head=head,
                base=base,
            )
            if labels:
                pr.add_to_labels(*labels)
            return _pr_info(pr)

    def get_pull_request_comments(self, pr_number: int) -> list[CommentInfo]:
        """Return conversation and review comments of a pull request."""
        with _github_errors("get_pull_request_comments"):
            pr = self.repo.get_pull(pr_number)
            comments = []
            for c in pr.get_issue_comments():
                comments.append(
                    CommentInfo(id=c.id, body=c.body or "", author=c.user.login if c.user else "unknown", url=c.html_url)
                )
            for c in pr.get_review_comments():
                comments.append(
                    CommentInfo(id=c.id, body=c.body or "", author=c.user.login if c.user else "unknown", url=c.html_url)
                )
            return comments

    def update_pull_request(self, pr_number: int, **fields: Any) -> PRInfo | None:
        """Edit pull request fields (title, body, state, base)."""
        if self.settings.dry_run:
            logger.info(f"[DRY RUN] Would update PR #{pr_number}: {sorted(fields)}")
            return None
        with _github_errors("update_pull_request"):
            pr = self.repo.get_pull(pr_number)
            pr.edit(**fields)
            return _pr_info(pr)

    def find_pull_request_for_branch(self, branch: str) -> PRInfo | None:
        """Find the open pull request whose head is the given branch."""
        with _github_errors("find_pull_request"):
            owner = self.settings.repo_owner
            head = f"{owner}:{branch}" if owner else branch
            for pr in self.repo.get_pulls(state="open", head=head):
                return _pr_info(pr)
        return None

    # Actions

    def get_latest_workflow_run(self, branch: str | None = None) -> WorkflowRunInfo | None:
        """Return the most recent GitHub Actions run, optionally for a branch."""
        with _github_errors("get_workflow_runs"):
            runs = self.repo.get_workflow_runs(branch=branch) if branch else self.repo.get_workflow_runs()
            for run in runs:
                return WorkflowRunInfo(
                    name=run.name or "",
                    status=run.status or "",
                    conclusion=run.conclusion,
                    url=run.html_url,
                    branch=run.head_branch or "",
                )
        return None

    # Files

    def get_file_content(self, path: str, ref: str = "main") -> str | None:
        """Get content of a file from the repository."""
        try:
            with _github_errors("get_file_content"):
                content = self.repo.get_contents(path, ref=ref)
        except GitHubAPIError as e:
            if e.status == 404:
                return None
            raise
        if isinstance(content, list):
            return None  # It's a directory
        return content.decoded_content.decode("utf-8")

    def create_or_update_file(self, path: str, content: str, message: str, branch: str = "main") -> str:
        """Create or update a file on a branch. Returns "created" or "updated"."""
        if self.settings.dry_run:
            logger.info(f"[DRY RUN] Would write {path} on {branch}")
            return "skipped"
        try:
            with _github_errors("get_file_content"):
                existing = self.repo.get_contents(path, ref=branch)
        except GitHubAPIError as e:
            if e.status != 404:
                raise
            with _github_errors("create_file"):
                self.repo.create_file(path=path, message=message, content=content, branch=branch)
            return "created"

        with _github_errors("update_file"):
            self.repo.update_file(path=path, message=message, content=content, sha=existing.sha, branch=branch)
        return "updated"

    def create_branch(self, branch_name: str, from_branch: str = "main") -> bool:
        """Create a branch from another one. Returns False when it already exists."""
        if self.settings.dry_run:
            logger.info(f"[DRY RUN] Would create branch {branch_name} from {from_branch}")
            return False
        try:
            with _github_errors("create_branch"):
                source = self.repo.get_branch(from_branch)
                self.repo.create_git_ref(ref=f"refs/heads/{branch_name}", sha=source.commit.sha)
        except GitHubAPIError as e:
            if e.status == 422:  # Reference already exists
                return False
            raise
        return True

    # Labels

    def ensure_labels(self, definitions) -> tuple[list[str], list[str]]:
        """Create or update repository labels.

        Args:
            definitions: Iterable of (name, color, description)

        Returns:
            Tuple of (created, updated) label names
        """
        created, updated = [], []
        for name, color, description in definitions:
            try:
                with _github_errors("get_label"):
                    label = self.repo.get_label(name)
            except GitHubAPIError as e:
                if e.status != 404:
                    raise
                with _github_errors("create_label"):
                    self.repo.create_label(name=name, color=color, description=description)
                created.append(name)
                continue
            with _github_errors("update_label"):
                label.edit(name=name, color=color, description=description)
            updated.append(name)
        return created, updated
