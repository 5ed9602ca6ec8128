"""Tests for feedback classification, prioritisation and routing."""

import pytest
from pydantic import ValidationError

from tools.github_tools import CommentInfo
from workflow.feedback import (
    FEEDBACK_PROCESSED_LABEL,
    FeedbackClassifier,
    FeedbackItem,
    FeedbackProcessor,
    Severity,
    assign_priorities,
    prioritize_feedback,
    route_feedback_to_teams,
    team_label,
)


def item(item_id: str, severity: Severity, area: str = "unknown") -> FeedbackItem:
    return FeedbackItem(id=item_id, description=f"feedback {item_id}", severity=severity, affected_area=area)


@pytest.fixture
def classifier():
    return FeedbackClassifier()


class TestClassifier:
    @pytest.mark.parametrize(
        "text",
        ["LGTM", "lgtm!", "Looks good to me.", "Thanks!", "Ship it", ":+1:", ":+1: :tada:", "\U0001f44d", "   "],
    )
    def test_non_actionable(self, classifier, text):
        assert classifier.classify(text) is None

    def test_too_short(self, classifier):
        assert classifier.classify("Fix this") is None

    def test_approval_with_a_request_is_actionable(self, classifier):
        result = classifier.classify("LGTM but the login button is misaligned on mobile")
        assert result is not None
        assert result.affected_area == "ui"

    def test_critical_security(self, classifier):
        result = classifier.classify("CRITICAL: security vulnerability in auth", author="octocat", comment_id=42)

        assert result.severity == Severity.CRITICAL
        assert result.affected_area == "security"
        assert result.author == "octocat"
        assert result.id == "fb-42"
        assert result.source_comment_id == 42

    @pytest.mark.parametrize(
        "text,severity",
        [
            ("This crashes on startup when the config is missing", Severity.CRITICAL),
            ("The endpoint returns the wrong status code", Severity.HIGH),
            ("Please rename this variable for clarity", Severity.MEDIUM),
            ("Typo in the README heading", Severity.LOW),
        ],
    )
    def test_severity(self, classifier, text, severity):
        assert classifier.classify(text).severity == severity

    def test_area_is_independent_of_severity(self, classifier):
        low = classifier.classify("minor nit: the README example is out of date")
        high = classifier.classify("The README example is wrong and fails to run")
        assert (low.severity, low.affected_area) == (Severity.LOW, "docs")
        assert (high.severity, high.affected_area) == (Severity.HIGH, "docs")

    def test_unknown_area(self, classifier):
        assert classifier.classify("Please rename this variable for clarity").affected_area == "unknown"

    @pytest.mark.parametrize(
        "text",
        [
            "Store the counter as uint8 here",
            "Rename the apiary module",
            "Mustard is spelled oddly in the sample data",
        ],
    )
    def test_keywords_match_whole_words(self, classifier, text):
        result = classifier.classify(text)
        assert result.affected_area == "unknown"
        assert result.severity == Severity.MEDIUM

    @pytest.mark.parametrize(
        "text,area",
        [
            ("Several vulnerabilities in the upload path", "security"),
            ("Authentication is skipped for admins", "security"),
            ("We could optimise this loop", "performance"),
            ("These buttons overlap on mobile", "ui"),
            ("The endpoints need pagination", "api"),
        ],
    )
    def test_stems_and_plurals(self, classifier, text, area):
        assert classifier.classify(text).affected_area == area

    def test_id_without_comment_is_stable(self, classifier):
        first = classifier.classify("Please rename this variable for clarity")
        second = classifier.classify("  Please rename this variable for clarity\n")
        assert first.id == second.id
        assert first.id.startswith("fb-")

    def test_items_are_immutable(self, classifier):
        result = classifier.classify("Please rename this variable for clarity")
        with pytest.raises(ValidationError):
            result.severity = Severity.LOW


class TestPrioritize:
    def test_critical_first_and_stable(self):
        items = [
            item("a", Severity.LOW),
            item("b", Severity.HIGH),
            item("c", Severity.CRITICAL),
            item("d", Severity.HIGH),
            item("e", Severity.MEDIUM),
        ]

        ordered = prioritize_feedback(items)

        assert [p.item.id for p in ordered] == ["c", "b", "d", "e", "a"]
        assert [p.priority for p in ordered] == ["P0", "P1", "P1", "P2", "P3"]

    def test_empty(self):
        assert prioritize_feedback([]) == []

    def test_assign_priorities_keeps_input_order(self):
        items = [
            item("a", Severity.LOW),
            item("b", Severity.CRITICAL),
            item("c", Severity.HIGH),
            item("d", Severity.MEDIUM),
        ]
        assert assign_priorities(items) == ["P3", "P0", "P1", "P2"]


class TestRouting:
    def test_routes_by_area_with_default(self):
        items = [
            item("a", Severity.HIGH, "security"),
            item("b", Severity.LOW, "docs"),
            item("c", Severity.MEDIUM, "Security"),
        ]

        routed = route_feedback_to_teams(items, {"security": "security-team"}, default_team="general")

        assert {team: [i.id for i in group] for team, group in routed.items()} == {
            "security-team": ["a", "c"],
            "general": ["b"],
        }

    def test_every_item_routed_once(self):
        items = [item(str(n), Severity.MEDIUM, area) for n, area in enumerate(["ui", "api", "unknown", "ui"])]
        routed = route_feedback_to_teams(items, {"ui": "frontend"})
        assert sorted(i.id for group in routed.values() for i in group) == ["0", "1", "2", "3"]

    def test_team_label(self):
        assert team_label("Security Team") == "team-security-team"


class TestFeedbackProcessor:
    def test_opens_one_issue_per_item(self, github, settings, workflow_config):
        github.get_pull_request_comments.return_value = [
            CommentInfo(id=1, body="minor typo in the docs for setup", author="alice"),
            CommentInfo(id=2, body="CRITICAL: security vulnerability in auth", author="bob"),
            CommentInfo(id=3, body="LGTM", author="carol"),
        ]
        github.create_issue.side_effect = [101, 102]
        processor = FeedbackProcessor(github, settings=settings, workflow_config=workflow_config)

        tickets = processor.process_pull_request(12, issue_number=5)

        assert [(t.priority, t.team, t.issue_number) for t in tickets] == [
            ("P0", "security-team", 101),
            ("P3", "general", 102),
        ]
        first = github.create_issue.call_args_list[0].kwargs
        assert first["labels"] == ["feedback", "priority-P0", "team-security-team"]
        assert first["title"].startswith("[P0] Feedback on PR #12")
        assert "@bob" in first["body"]
        assert "#5" in first["body"]

        summary = github.create_comment.call_args.args
        assert summary[0] == 5
        assert "| P0 | security | security-team | #101 |" in summary[1]
        github.add_labels.assert_called_once_with(5, [FEEDBACK_PROCESSED_LABEL])

    def test_nothing_actionable(self, github, settings, workflow_config):
        github.get_pull_request_comments.return_value = [CommentInfo(id=1, body="LGTM")]
        processor = FeedbackProcessor(github, settings=settings, workflow_config=workflow_config)

        assert processor.process_pull_request(12, issue_number=5) == []
        github.create_issue.assert_not_called()
        github.add_labels.assert_not_called()
        assert "No actionable feedback found" in github.create_comment.call_args.args[1]

    def test_custom_classifier(self, github, settings, workflow_config):
        class Everything:
            def classify(self, text, author="unknown", comment_id=None):
                return FeedbackItem(id=f"x-{comment_id}", description=text, severity=Severity.HIGH, affected_area="qa")

        github.get_pull_request_comments.return_value = [CommentInfo(id=9, body="ok")]
        github.create_issue.return_value = 200
        processor = FeedbackProcessor(github, settings=settings, classifier=Everything(), workflow_config=workflow_config)

        tickets = processor.process_pull_request(12, issue_number=5)

        assert [(t.priority, t.team) for t in tickets] == [("P1", "qa-team")]
