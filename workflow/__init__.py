"""Workflow control plane: stages, orchestration, recovery, conflicts and feedback."""

from workflow.conflicts import (
    ConflictDetectionResult,
    ConflictResolutionResult,
    ConflictResolver,
    MergeStatusReport,
)
from workflow.error_recovery import (
    ErrorContext,
    ErrorKind,
    ErrorRecovery,
    ErrorState,
    ErrorStateStore,
    RecoveryResult,
    RecoveryStrategy,
    is_temporary_error,
)
from workflow.errors import (
    ConfigurationError,
    ConflictResolutionError,
    ErrorStateStoreError,
    NoActiveStageError,
    StoneError,
    WorkflowCancelledError,
    WorkflowError,
)
from workflow.feedback import (
    FeedbackClassifier,
    FeedbackItem,
    FeedbackProcessor,
    PrioritizedFeedback,
    Severity,
    assign_priorities,
    prioritize_feedback,
    route_feedback_to_teams,
)
from workflow.orchestrator import (
    WorkflowOrchestrator,
    WorkflowRun,
    build_handler_table,
    make_workflow_id,
    transition_labels,
)
from workflow.stages import Stage, parse_stage, resolve_active_stage

__all__ = [
    "ConfigurationError",
    "ConflictDetectionResult",
    "ConflictResolutionError",
    "ConflictResolutionResult",
    "ConflictResolver",
    "ErrorContext",
    "ErrorKind",
    "ErrorRecovery",
    "ErrorState",
    "ErrorStateStore",
    "ErrorStateStoreError",
    "FeedbackClassifier",
    "FeedbackItem",
    "FeedbackProcessor",
    "MergeStatusReport",
    "NoActiveStageError",
    "PrioritizedFeedback",
    "RecoveryResult",
    "RecoveryStrategy",
    "Severity",
    "Stage",
    "StoneError",
    "WorkflowCancelledError",
    "WorkflowError",
    "WorkflowOrchestrator",
    "WorkflowRun",
    "assign_priorities",
    "build_handler_table",
    "is_temporary_error",
    "make_workflow_id",
    "parse_stage",
    "prioritize_feedback",
    "resolve_active_stage",
    "route_feedback_to_teams",
]
