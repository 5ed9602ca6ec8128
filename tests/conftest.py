"""Shared fixtures for the Stone workflow tests."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from config.settings import Settings, get_settings
from config.workflow_file import WorkflowConfig
from tools.github_tools import GitHubTools, IssueInfo
from tools.llm_providers import ClaudeClient


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment and any .env file."""
    repo = tmp_path / "repo"
    repo.mkdir()
    return Settings(
        _env_file=None,
        github_token="test-token",
        github_repo="acme/widgets",
        repo_path=repo,
        state_dir=tmp_path / "errors",
        external_call_timeout=30,
        retry_delay=0,
    )


@pytest.fixture
def workflow_config():
    return WorkflowConfig(teams={"qa": "qa-team", "security": "security-team"}, default_team="general")


@pytest.fixture
def github():
    """GitHub adapter fake; every call is recorded on the mock."""
    gh = MagicMock(spec=GitHubTools)
    gh.get_issue.return_value = IssueInfo(number=1, title="Add login", body="Users need to log in", labels=[])
    gh.get_issue_labels.return_value = []
    gh.get_issue_comments.return_value = []
    gh.get_latest_workflow_run.return_value = None
    gh.find_pull_request_for_branch.return_value = None
    return gh


@pytest.fixture
def llm():
    client = MagicMock(spec=ClaudeClient)
    client.generate.return_value = "Generated response"
    return client


def git(repo: Path, *args: str) -> str:
    """Run git in a test repository and return stdout."""
    result = subprocess.run(["git", *args], cwd=repo, capture_output=True, text=True, check=True)
    return result.stdout.strip()


def commit_file(repo: Path, name: str, content: str, message: str) -> None:
    (repo / name).write_text(content)
    git(repo, "add", name)
    git(repo, "commit", "-q", "-m", message)


@pytest.fixture
def git_repo(settings):
    """A repository with one commit on ``main``."""
    repo = settings.repo_path
    git(repo, "init", "-q")
    git(repo, "checkout", "-q", "-b", "main")
    git(repo, "config", "user.email", "stone@example.com")
    git(repo, "config", "user.name", "Stone Test")
    git(repo, "config", "commit.gpgsign", "false")
    commit_file(repo, "file.txt", "line one\nline two\nline three\n", "Initial commit")
    return repo
