"""Base role class for all stage handlers."""

import logging
import re
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from config.settings import Settings, get_settings
from roles.prompt_builder import PromptBuilder
from tools.github_tools import CommentInfo, GitHubTools, IssueInfo
from tools.llm_providers import ClaudeClient
from workflow.orchestrator import transition_labels
from workflow.stages import Stage

logger = logging.getLogger(__name__)

SECRET_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"(?i)((?:api[_-]?key|token|secret|password)\s*[:=]\s*[\"']?)([A-Za-z0-9_\-]{20,})"),
    re.compile(r"gh[pousr]_[A-Za-z0-9]{36,255}"),
    re.compile(r"sk-ant-[A-Za-z0-9_\-]{20,}"),
    re.compile(r"AKIA[0-9A-Z]{16}"),
    re.compile(
        r"-----BEGIN (?:RSA |OPENSSH |DSA |EC )?PRIVATE KEY-----.*?-----END (?:RSA |OPENSSH |DSA |EC )?PRIVATE KEY-----",
        re.DOTALL,
    ),
)

REDACTED = "[REDACTED]"


def redact_secrets(text: str) -> str:
    """Mask credentials before text is posted to GitHub."""
    for pattern in SECRET_PATTERNS:
        if pattern.groups:
            text = pattern.sub(lambda m: m.group(1) + REDACTED, text)
        else:
            text = pattern.sub(REDACTED, text)
    return text


def response_header(role_name: str) -> str:
    return f"## {role_name.upper()} Role Response"


class RoleResult(BaseModel):
    """Result from one role run."""

    role: str = Field(description="Role name")
    issue_number: int
    success: bool = Field(description="Whether the role succeeded")
    message: str = Field(description="Human-readable result message")
    next_labels: list[str] = Field(default_factory=list, description="Labels added by the transition")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Additional metadata")
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC), description="Start timestamp")
    completed_at: datetime | None = Field(default=None, description="Completion timestamp")

    @property
    def duration_seconds(self) -> float | None:
        """Calculate execution duration in seconds."""
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


class BaseRole(ABC):
    """Abstract base class for all stage roles.

    A role reads the issue, asks the LLM for its stage output, posts it as a
    ``## <ROLE> Role Response`` comment and applies one label transition as
    its last side effect.
    """

    name: str = "base"
    description: str = "Base role"
    stage: Stage
    # Earlier roles whose latest response is passed into the prompt
    context_roles: tuple[str, ...] = ()

    def __init__(
        self,
        github: GitHubTools,
        llm: ClaudeClient | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.github = github
        self.llm = llm or ClaudeClient(self.settings)
        self.prompts = PromptBuilder(self.name, self.settings.github_repo)

    def process(self, issue_number: int) -> None:
        """Handle the issue for this role's stage."""
        self.run(issue_number)

    def run(self, issue_number: int) -> RoleResult:
        started_at = datetime.now(UTC)
        self.log(f"Processing issue #{issue_number}")

        issue = self.github.get_issue(issue_number)
        context = self.gather_context(issue)
        response = self.generate(issue, context)
        self.post_response(issue_number, response)

        next_labels = self.next_labels(issue, response)
        self.transition(issue_number, next_labels)

        self.log(f"Issue #{issue_number} -> {[s.value for s in next_labels]}")
        return self.create_result(issue_number, True, f"{self.name} processed #{issue_number}", next_labels, started_at)

    def gather_context(self, issue: IssueInfo) -> dict[str, str]:
        """Latest responses of ``context_roles`` from the issue comments."""
        if not self.context_roles:
            return {}
        comments = self.github.get_issue_comments(issue.number)
        context = {}
        for role in self.context_roles:
            previous = latest_role_response(comments, role)
            if previous:
                context[role] = previous
        return context

    def generate(self, issue: IssueInfo, context: dict[str, str]) -> str:
        prompt = self.prompts.build_prompt(issue, context)
        return redact_secrets(self.llm.generate(prompt, self.prompts.system_prompt()))

    def post_response(self, issue_number: int, response: str) -> None:
        self.github.create_comment(issue_number, f"{response_header(self.name)}\n\n{response}")

    @abstractmethod
    def next_labels(self, issue: IssueInfo, response: str) -> list[Stage]:
        """Labels the transition adds once this role is done."""

    def transition(self, issue_number: int, add: list[Stage]) -> None:
        transition_labels(self.github, issue_number, add=add, remove=self.stage)

    def log(self, message: str, level: str = "info") -> None:
        """Log a message."""
        logger.log(getattr(logging, level.upper(), logging.INFO), f"[{self.name}] {message}")

    def create_result(
        self,
        issue_number: int,
        success: bool,
        message: str,
        next_labels: list[Stage] | None = None,
        started_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> RoleResult:
        """Create a role result."""
        return RoleResult(
            role=self.name,
            issue_number=issue_number,
            success=success,
            message=message,
            next_labels=[s.value for s in next_labels or []],
            metadata=metadata or {},
            started_at=started_at or datetime.now(UTC),
            completed_at=datetime.now(UTC),
        )


def latest_role_response(comments: list[CommentInfo], role_name: str) -> str | None:
    """Body of the newest ``## <ROLE> Role Response`` comment, header stripped."""
    header = response_header(role_name)
    for comment in reversed(comments):
        if comment.body.startswith(header):
            return comment.body[len(header):].strip()
    return None
