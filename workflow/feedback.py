"""PR feedback classification, prioritisation and team routing.

The classifier is a keyword scorer behind ``classify(text) -> FeedbackItem | None``;
routing and prioritisation only look at the typed item, so a better
classifier can replace it without touching either.
"""

import hashlib
import logging
import re
from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from config.settings import Settings, get_settings
from config.workflow_file import WorkflowConfig, load_workflow_config
from tools.github_tools import GitHubTools

logger = logging.getLogger(__name__)

MIN_COMMENT_LENGTH = 10
FEEDBACK_PROCESSED_LABEL = "stone-feedback-processed"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @property
    def priority(self) -> str:
        return f"P{self.rank}"


_SEVERITY_RANK = {Severity.CRITICAL: 0, Severity.HIGH: 1, Severity.MEDIUM: 2, Severity.LOW: 3}

UNKNOWN_AREA = "unknown"


def _words(*keywords: str) -> re.Pattern:
    """Whole-word match with an optional plural ``s``; stems spell out their endings."""
    return re.compile(r"\b(" + "|".join(keywords) + r")s?\b", re.IGNORECASE)


# Approvals, thanks and reactions carry nothing to act on
NON_ACTIONABLE_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"^\s*lgtm\b.{0,20}$", re.IGNORECASE | re.DOTALL),
    re.compile(
        r"^\s*(looks good( to me)?|approved?|ship it|\+1|thanks?( you)?|thank you|nice( work| job)?|"
        r"great( work| job)?|well done)[\s.!:)]*$",
        re.IGNORECASE,
    ),
    re.compile(r"^(\s|:[a-z0-9_+-]+:|[\u2600-\u27bf\ufe0f\u200d]|[\U0001f000-\U0001faff])+$", re.IGNORECASE),
)

# Checked in this order; first match wins, default is medium
SEVERITY_KEYWORDS: tuple[tuple[Severity, re.Pattern], ...] = (
    (
        Severity.CRITICAL,
        _words("critical", "urgent", "blocker", "crash(es|ed|ing)?", "data loss", "outage", "severe(ly)?"),
    ),
    (
        Severity.HIGH,
        _words("bug", "error", "broken", "fail(ed|ing|ure)?", "incorrect(ly)?", "wrong", "must", "regression"),
    ),
    (
        Severity.LOW,
        _words("minor", "typo", "nit", "cosmetic", "nice to have", "would be nice", "optional", "suggestion"),
    ),
)

# Independent of the severity keywords; first match wins
AREA_KEYWORDS: tuple[tuple[str, re.Pattern], ...] = (
    ("performance", _words("performance", "slow(er|ly|ness)?", "latency", "memory", r"optimi[sz]\w*", "speed")),
    (
        "security",
        _words(
            "security",
            r"vulnerab\w*",
            "auth(entication|orization|orisation)?",
            "xss",
            "injection",
            "csrf",
            "credential",
            "secret",
            "permission",
        ),
    ),
    ("ui", _words("ui", "ux", "layout", "css", "button", "style", "display", "screen")),
    ("docs", _words("doc", "documentation", "readme", "docstring", "comment")),
    ("testing", _words("test", "testing", "coverage", "assert(ion)?", "mock(ed|ing)?", "fixture")),
    ("api", _words("api", "endpoint", "request", "response", "schema", "contract")),
)


class FeedbackItem(BaseModel):
    """One actionable review comment. Immutable."""

    model_config = ConfigDict(frozen=True)

    id: str
    description: str
    severity: Severity
    author: str = "unknown"
    affected_area: str = UNKNOWN_AREA
    source_comment_id: int | None = None


class PrioritizedFeedback(BaseModel):
    item: FeedbackItem
    priority: str = Field(description="P0 (critical) to P3 (low)")


class Classifier(Protocol):
    def classify(self, text: str, author: str = "unknown", comment_id: int | None = None) -> FeedbackItem | None: ...


def is_actionable(text: str) -> bool:
    stripped = text.strip()
    if not stripped:
        return False
    return not any(p.search(stripped) for p in NON_ACTIONABLE_PATTERNS)


def classify_severity(text: str) -> Severity:
    for severity, pattern in SEVERITY_KEYWORDS:
        if pattern.search(text):
            return severity
    return Severity.MEDIUM


def classify_area(text: str) -> str:
    for area, pattern in AREA_KEYWORDS:
        if pattern.search(text):
            return area
    return UNKNOWN_AREA


class FeedbackClassifier:
    """Keyword classifier for review comments."""

    def classify(self, text: str, author: str = "unknown", comment_id: int | None = None) -> FeedbackItem | None:
        """Turn a comment into a FeedbackItem, or None when there is nothing to act on."""
        if not is_actionable(text):
            return None
        description = text.strip()
        if len(description) < MIN_COMMENT_LENGTH:
            return None

        if comment_id is not None:
            item_id = f"fb-{comment_id}"
        else:
            item_id = "fb-" + hashlib.sha1(description.encode()).hexdigest()[:10]

        return FeedbackItem(
            id=item_id,
            description=description,
            severity=classify_severity(description),
            author=author,
            affected_area=classify_area(description),
            source_comment_id=comment_id,
        )


def route_feedback_to_teams(
    items: Iterable[FeedbackItem],
    routes: Mapping[str, str],
    default_team: str = "general",
) -> dict[str, list[FeedbackItem]]:
    """Group items by owning team. Areas with no route go to ``default_team``."""
    lowered = {area.lower(): team for area, team in routes.items()}
    routed: dict[str, list[FeedbackItem]] = {}
    for item in items:
        team = lowered.get(item.affected_area.lower(), default_team)
        routed.setdefault(team, []).append(item)
    return routed


def prioritize_feedback(items: Iterable[FeedbackItem]) -> list[PrioritizedFeedback]:
    """Sort by severity, critical first. Equal severities keep their input order."""
    ordered = sorted(items, key=lambda item: item.severity.rank)
    return [PrioritizedFeedback(item=item, priority=item.severity.priority) for item in ordered]


def assign_priorities(items: Iterable[FeedbackItem]) -> list[str]:
    """Priority label of each item, in input order."""
    return [item.severity.priority for item in items]


class FeedbackTicket(BaseModel):
    """Tracking issue opened for one feedback item."""

    item: FeedbackItem
    priority: str
    team: str
    issue_number: int


def team_label(team: str) -> str:
    return "team-" + re.sub(r"\s+", "-", team.strip().lower())


class FeedbackProcessor:
    """Turns PR review comments into prioritised, routed tracking issues."""

    def __init__(
        self,
        github: GitHubTools,
        settings: Settings | None = None,
        classifier: Classifier | None = None,
        workflow_config: WorkflowConfig | None = None,
    ):
        self.settings = settings or get_settings()
        self.github = github
        self.classifier = classifier or FeedbackClassifier()
        self.workflow_config = workflow_config or load_workflow_config(self.settings)

    def process_pull_request(self, pr_number: int, issue_number: int) -> list[FeedbackTicket]:
        """Classify the PR comments and open one tracking issue per actionable item."""
        comments = self.github.get_pull_request_comments(pr_number)
        items = [
            item
            for item in (self.classifier.classify(c.body, c.author, c.id) for c in comments)
            if item is not None
        ]
        logger.info(f"PR #{pr_number}: {len(items)} actionable of {len(comments)} comments")

        if not items:
            self.github.create_comment(
                issue_number,
                f"## Feedback Summary\n\nNo actionable feedback found on PR #{pr_number}.",
            )
            return []

        team_of = {}
        routed = route_feedback_to_teams(items, self.workflow_config.teams, self.workflow_config.default_team)
        for team, team_items in routed.items():
            for item in team_items:
                team_of[item.id] = team

        tickets = []
        for entry in prioritize_feedback(items):
            item, team = entry.item, team_of[entry.item.id]
            summary = item.description.splitlines()[0][:60]
            number = self.github.create_issue(
                title=f"[{entry.priority}] Feedback on PR #{pr_number}: {summary}",
                body=self._ticket_body(entry, team, pr_number, issue_number),
                labels=["feedback", f"priority-{entry.priority}", team_label(team)],
            )
            tickets.append(FeedbackTicket(item=item, priority=entry.priority, team=team, issue_number=number))

        self.github.create_comment(issue_number, self._summary(pr_number, tickets))
        self.github.add_labels(issue_number, [FEEDBACK_PROCESSED_LABEL])
        return tickets

    def _ticket_body(self, entry: PrioritizedFeedback, team: str, pr_number: int, issue_number: int) -> str:
        item = entry.item
        return "\n".join(
            [
                f"## Feedback from PR #{pr_number}",
                "",
                item.description,
                "",
                f"- **Priority**: {entry.priority} ({item.severity.value})",
                f"- **Area**: {item.affected_area}",
                f"- **Team**: {team}",
                f"- **Author**: @{item.author}",
                f"- **Original issue**: #{issue_number}",
            ]
        )

    def _summary(self, pr_number: int, tickets: list[FeedbackTicket]) -> str:
        lines = [
            "## Feedback Summary",
            "",
            f"{len(tickets)} actionable item(s) from PR #{pr_number}:",
            "",
            "| Priority | Area | Team | Issue |",
            "|---|---|---|---|",
        ]
        for t in tickets:
            ref = f"#{t.issue_number}" if t.issue_number else "(dry run)"
            lines.append(f"| {t.priority} | {t.item.affected_area} | {t.team} | {ref} |")
        return "\n".join(lines)
