"""Exception hierarchy for the workflow control plane."""


class StoneError(Exception):
    """Base class for all workflow errors."""


class WorkflowError(StoneError):
    """A workflow run could not complete."""

    def __init__(self, message: str, issue_number: int | None = None):
        super().__init__(message)
        self.issue_number = issue_number


class NoActiveStageError(WorkflowError):
    """The issue carries no recognized stage label."""


class ConfigurationError(WorkflowError):
    """Unknown, disabled or unhandled stage. Fatal and never retried."""


class WorkflowCancelledError(WorkflowError):
    """The run was cancelled between steps."""


class ErrorStateStoreError(StoneError):
    """An error state record could not be read or written."""


class ConflictResolutionError(StoneError):
    """Conflict detection could not inspect the repository."""
