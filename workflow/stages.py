"""Stage registry and priority resolver.

Every workflow position is a ``stone-`` label on the issue. When an issue
carries several stage labels at once (stale labels, or the brief overlap of an
add-before-remove transition), the highest priority in-flight stage wins.
"""

from collections.abc import Iterable
from enum import Enum
from typing import NamedTuple

from workflow.errors import ConfigurationError


class Stage(str, Enum):
    """Workflow stages, valued by their GitHub label."""

    PROCESS = "stone-process"
    QA = "stone-qa"
    ACTIONS = "stone-actions"
    FEATURE_IMPLEMENT = "stone-feature-implement"
    FEATURE_FIX = "stone-feature-fix"
    AUDIT = "stone-audit"
    AUDIT_PASS = "stone-audit-pass"
    AUDIT_FAIL = "stone-audit-fail"
    READY_FOR_TESTS = "stone-ready-for-tests"
    TEST_FAILURE = "stone-test-failure"
    DOCS = "stone-docs"
    PR = "stone-pr"
    COMPLETE = "stone-complete"
    FEEDBACK = "stone-feedback"
    DEPENDENCY = "stone-dependency"
    ERROR = "stone-error"

    @property
    def label(self) -> str:
        return self.value


# Highest priority first
STAGE_PRIORITY: tuple[Stage, ...] = (
    Stage.ERROR,
    Stage.AUDIT,
    Stage.FEATURE_FIX,
    Stage.FEATURE_IMPLEMENT,
    Stage.ACTIONS,
    Stage.QA,
    Stage.PROCESS,
)

_PRIORITY_RANK = {stage: rank for rank, stage in enumerate(STAGE_PRIORITY)}

# Short workflow names accepted wherever a stage is configured or requested
STAGE_ALIASES: dict[str, Stage] = {
    "process": Stage.PROCESS,
    "pm": Stage.PROCESS,
    "qa": Stage.QA,
    "actions": Stage.ACTIONS,
    "feature": Stage.FEATURE_IMPLEMENT,
    "feature-implement": Stage.FEATURE_IMPLEMENT,
    "feature-fix": Stage.FEATURE_FIX,
    "audit": Stage.AUDIT,
    "testing": Stage.READY_FOR_TESTS,
    "ready-for-tests": Stage.READY_FOR_TESTS,
    "docs": Stage.DOCS,
    "pr": Stage.PR,
    "feedback": Stage.FEEDBACK,
    "error": Stage.ERROR,
}

# Auxiliary labels applied by recovery and conflict handling
MANUAL_INTERVENTION_LABEL = "stone-manual-intervention"
CONFLICTS_RESOLVED_LABEL = "stone-conflicts-resolved"
MANUAL_RESOLUTION_LABEL = "stone-manual-resolution-needed"


class LabelDefinition(NamedTuple):
    name: str
    color: str
    description: str


LABEL_DEFINITIONS: tuple[LabelDefinition, ...] = (
    LabelDefinition(Stage.PROCESS.value, "0075ca", "Process this issue with the Stone workflow"),
    LabelDefinition(Stage.QA.value, "d93f0b", "Ready for test creation by QA team"),
    LabelDefinition(Stage.ACTIONS.value, "5319e7", "Ready for GitHub Actions workflow setup"),
    LabelDefinition(Stage.FEATURE_IMPLEMENT.value, "0e8a16", "Ready for feature implementation"),
    LabelDefinition(Stage.FEATURE_FIX.value, "fbca04", "Needs fixes from feature team"),
    LabelDefinition(Stage.AUDIT.value, "b60205", "Ready for implementation audit"),
    LabelDefinition(Stage.AUDIT_PASS.value, "0e8a16", "Implementation passed audit"),
    LabelDefinition(Stage.AUDIT_FAIL.value, "b60205", "Implementation failed audit"),
    LabelDefinition(Stage.READY_FOR_TESTS.value, "1d76db", "Ready for test execution"),
    LabelDefinition(Stage.TEST_FAILURE.value, "e99695", "Tests are failing"),
    LabelDefinition(Stage.DOCS.value, "0075ca", "Ready for documentation updates"),
    LabelDefinition(Stage.PR.value, "6f42c1", "Ready for pull request creation"),
    LabelDefinition(Stage.COMPLETE.value, "0e8a16", "Stone process completed successfully"),
    LabelDefinition(Stage.FEEDBACK.value, "d4c5f9", "Feedback from PR review"),
    LabelDefinition(Stage.DEPENDENCY.value, "c2e0c6", "Depends on changes in another package"),
    LabelDefinition(Stage.ERROR.value, "b60205", "An error occurred in the Stone process"),
    LabelDefinition(MANUAL_INTERVENTION_LABEL, "b60205", "Automated recovery gave up, a human must step in"),
    LabelDefinition(CONFLICTS_RESOLVED_LABEL, "0e8a16", "Merge conflicts were resolved automatically"),
    LabelDefinition(MANUAL_RESOLUTION_LABEL, "e99695", "Merge conflicts need manual resolution"),
)

# Display names, checked in order, for `stone status`
_DISPLAY_ORDER: tuple[tuple[Stage, str], ...] = (
    (Stage.ERROR, "Error"),
    (Stage.AUDIT, "Audit"),
    (Stage.FEATURE_FIX, "Feature Fix"),
    (Stage.FEATURE_IMPLEMENT, "Feature"),
    (Stage.ACTIONS, "Actions"),
    (Stage.QA, "QA"),
    (Stage.PROCESS, "Initial"),
    (Stage.READY_FOR_TESTS, "Testing"),
    (Stage.DOCS, "Docs"),
    (Stage.PR, "PR"),
    (Stage.COMPLETE, "Complete"),
)


def priority_rank(stage: Stage) -> int | None:
    """Return the priority rank of an in-flight stage (0 is highest)."""
    return _PRIORITY_RANK.get(stage)


def resolve_active_stage(labels: Iterable[str]) -> Stage | None:
    """Pick the active stage from the full label set of an issue.

    Returns None (no stage) when no in-flight label is present. Labels that
    are not in-flight stage labels are ignored.
    """
    best: Stage | None = None
    best_rank = len(STAGE_PRIORITY)
    for label in labels:
        try:
            stage = Stage(label)
        except ValueError:
            continue
        rank = _PRIORITY_RANK.get(stage)
        if rank is not None and rank < best_rank:
            best, best_rank = stage, rank
    return best


def parse_stage(value: str | Stage) -> Stage:
    """Parse a stage label or a short workflow name.

    Raises:
        ConfigurationError: If the value names no stage.
    """
    if isinstance(value, Stage):
        return value
    key = value.strip().lower()
    try:
        return Stage(key)
    except ValueError:
        pass
    if key in STAGE_ALIASES:
        return STAGE_ALIASES[key]
    raise ConfigurationError(f"Unknown stage: {value!r}")


def stone_labels(labels: Iterable[str]) -> list[str]:
    """Filter a label list down to the stage labels."""
    known = {stage.value for stage in Stage}
    return [label for label in labels if label in known]


def stage_summary(labels: Iterable[str]) -> str:
    """Human-readable stage name for an issue, terminal stages included."""
    label_set = set(labels)
    for stage, name in _DISPLAY_ORDER:
        if stage.value in label_set:
            return name
    return "Unknown"
