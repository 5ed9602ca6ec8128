"""Graduated error recovery.

A failing workflow run leaves one persisted ``ErrorState`` per workflow id.
Each call to ``attempt_recovery`` moves that record one rung up the ladder:

    attempt 0  -> simple-retry        (safe to re-run the handler)
    attempt 1  -> advanced-retry      (re-run, with GitHub Actions status attached)
    attempt 2+ -> team-notification   (comment, labels, team alert; no more retries)

Errors whose message matches none of the temporary patterns are permanent and
go straight to team-notification without touching the attempt counter.
"""

import json
import logging
import os
import re
import shutil
import tempfile
import threading
import traceback
import weakref
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

from config.settings import Settings, get_settings
from config.workflow_file import WorkflowConfig, load_workflow_config
from tools.git_tools import GitTimeoutError
from tools.github_tools import GitHubAPIError, GitHubTools
from tools.messenger import get_messenger
from workflow.errors import ErrorStateStoreError
from workflow.stages import MANUAL_INTERVENTION_LABEL, Stage

if TYPE_CHECKING:
    from workflow.orchestrator import WorkflowRun

logger = logging.getLogger(__name__)

# Matched case-insensitively against the error message
TEMPORARY_ERROR_PATTERNS: tuple[re.Pattern, ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"rate.?limit",
        r"timed? ?out",
        r"connection (reset|refused|aborted)",
        r"network error",
        r"service unavailable",
        r"temporarily unavailable",
        r"bad gateway",
        r"too many requests",
        r"\b(429|502|503|504)\b",
        r"ETIMEDOUT|ECONNRESET|ECONNREFUSED",
        r"socket hang up",
    )
)

MAX_RETRIES = 2


class ErrorKind(str, Enum):
    TEMPORARY = "temporary"
    PERMANENT = "permanent"


class RecoveryStrategy(str, Enum):
    SIMPLE_RETRY = "simple-retry"
    ADVANCED_RETRY = "advanced-retry"
    TEAM_NOTIFICATION = "team-notification"


class ErrorContext(BaseModel):
    """Where the failure happened."""

    issue_number: int = Field(description="Issue the workflow run was processing")
    repo_owner: str = Field(default="", description="Repository owner")
    repo_name: str = Field(default="", description="Repository name")
    current_step: str = Field(description="Stage label being handled when the error occurred")
    step_data: dict[str, Any] = Field(default_factory=dict, description="Extra step data for diagnostics")


class ErrorState(BaseModel):
    """Persisted failure record for one workflow id."""

    workflow_id: str
    error_kind: ErrorKind
    error_type: str = Field(default="Exception", description="Exception class name")
    error_message: str
    context: ErrorContext
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    recovery_attempts: int = Field(default=0, ge=0)
    stack_trace: str | None = Field(default=None, description="Only kept when include_stack_trace is enabled")


class RecoveryResult(BaseModel):
    """Outcome of one recovery step."""

    success: bool = Field(description="True when it is safe to re-run the handler")
    recovery_strategy: RecoveryStrategy
    message: str
    attempts: int = Field(description="Recovery attempts recorded after this step")
    diagnostics: dict[str, Any] = Field(default_factory=dict)


def is_temporary_error(message: str) -> bool:
    """Whether an error message looks transient (network, rate limit, timeout)."""
    return any(p.search(message) for p in TEMPORARY_ERROR_PATTERNS)


def classify_error(error: BaseException | str) -> ErrorKind:
    """Classify an exception or message as temporary or permanent."""
    if isinstance(error, (TimeoutError, GitTimeoutError)):
        return ErrorKind.TEMPORARY
    return ErrorKind.TEMPORARY if is_temporary_error(str(error)) else ErrorKind.PERMANENT


class ErrorStateStore:
    """One JSON file per workflow id, written atomically.

    Writers hold a per-key lock; readers never see a partial file because
    every write goes to a temp file in the same directory and is renamed
    over the target.
    """

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)
        # Entries vanish once no caller holds the lock
        self._locks: weakref.WeakValueDictionary[str, threading.RLock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def lock(self, workflow_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(workflow_id)
            if lock is None:
                lock = self._locks[workflow_id] = threading.RLock()
            return lock

    def path_for(self, workflow_id: str) -> Path:
        """Stable file path for a workflow id."""
        safe = re.sub(r"[^A-Za-z0-9._-]", "_", workflow_id)
        return self.state_dir / f"{safe}.json"

    def load(self, workflow_id: str) -> ErrorState | None:
        path = self.path_for(workflow_id)
        with self.lock(workflow_id):
            if not path.exists():
                return None
            try:
                return ErrorState.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as e:
                raise ErrorStateStoreError(f"Failed to read error state {path}: {e}") from e

    def save(self, state: ErrorState) -> None:
        path = self.path_for(state.workflow_id)
        with self.lock(state.workflow_id):
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        f.write(state.model_dump_json(indent=2))
                    shutil.move(temp_path, path)
                except Exception:
                    try:
                        os.unlink(temp_path)
                    except OSError:
                        pass
                    raise
            except OSError as e:
                raise ErrorStateStoreError(f"Failed to write error state {path}: {e}") from e

    def delete(self, workflow_id: str) -> bool:
        path = self.path_for(workflow_id)
        with self.lock(workflow_id):
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            except OSError as e:
                raise ErrorStateStoreError(f"Failed to delete error state {path}: {e}") from e
            return True

    def list_states(self) -> list[ErrorState]:
        """All readable records, oldest first. Unreadable files are skipped with a warning."""
        if not self.state_dir.exists():
            return []
        states = []
        for path in sorted(self.state_dir.glob("*.json")):
            try:
                states.append(ErrorState.model_validate_json(path.read_text(encoding="utf-8")))
            except (OSError, ValidationError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable error state {path}: {e}")
        return sorted(states, key=lambda s: s.timestamp)


# Recommended manual steps shown in the escalation comment
RECOMMENDED_ACTIONS: dict[Stage, tuple[str, ...]] = {
    Stage.PROCESS: (
        "Verify that the issue template is correctly formatted",
        "Check if the necessary labels are applied",
        "Manually write the Gherkin specification if needed",
    ),
    Stage.QA: (
        "Check if test files can be generated manually",
        "Verify that test requirements are clearly specified",
        "Consider moving to feature implementation if tests cannot be created",
    ),
    Stage.FEATURE_IMPLEMENT: (
        "Check for merge conflicts in the feature branch",
        "Verify that implementation requirements are clear",
        "Consider manually creating a PR if the automated process failed",
    ),
    Stage.FEATURE_FIX: (
        "Review the audit findings the fix was based on",
        "Check for merge conflicts in the feature branch",
        "Apply the fix manually and move the issue back to audit",
    ),
    Stage.AUDIT: (
        "Verify that the PR meets audit criteria",
        "Check for failing tests or lint errors",
        "Consider manually approving the PR if appropriate",
    ),
}

_DEFAULT_ACTIONS = (
    "Review the error message and determine the cause",
    "Check repository permissions and configuration",
    "Apply appropriate labels to continue the workflow",
)


class ErrorRecovery:
    """Captures error state and runs the recovery ladder."""

    def __init__(
        self,
        github: GitHubTools,
        settings: Settings | None = None,
        store: ErrorStateStore | None = None,
        messenger=None,
        workflow_config: WorkflowConfig | None = None,
    ):
        self.settings = settings or get_settings()
        self.github = github
        self.store = store or ErrorStateStore(self.settings.state_dir)
        self.messenger = messenger or get_messenger(self.settings)
        self.workflow_config = workflow_config or load_workflow_config(self.settings)

    is_temporary_error = staticmethod(is_temporary_error)

    def capture_error_state(
        self,
        workflow_id: str,
        error: BaseException | str,
        context: ErrorContext,
    ) -> ErrorState:
        """Create or refresh the error record, keeping its attempt count."""
        stack_trace = None
        if self.settings.include_stack_trace and isinstance(error, BaseException):
            stack_trace = "".join(traceback.format_exception(error))

        with self.store.lock(workflow_id):
            previous = self.store.load(workflow_id)
            state = ErrorState(
                workflow_id=workflow_id,
                error_kind=classify_error(error),
                error_type=type(error).__name__ if isinstance(error, BaseException) else "Exception",
                error_message=str(error),
                context=context,
                recovery_attempts=previous.recovery_attempts if previous else 0,
                stack_trace=stack_trace,
            )
            self.store.save(state)

        logger.info(
            f"Captured {state.error_kind.value} error for {workflow_id} "
            f"(step={context.current_step}, attempts={state.recovery_attempts}): {state.error_message}"
        )
        return state

    def get_error_state(self, workflow_id: str) -> ErrorState | None:
        return self.store.load(workflow_id)

    def list_error_states(self) -> list[ErrorState]:
        return self.store.list_states()

    def clear_error_state(self, workflow_id: str) -> bool:
        """Remove the record. Only call once the retried handler has succeeded."""
        removed = self.store.delete(workflow_id)
        if removed:
            logger.info(f"Cleared error state for {workflow_id}")
        return removed

    def attempt_recovery(self, workflow_id: str) -> RecoveryResult:
        """Advance the recovery ladder by exactly one step.

        Raises:
            ErrorStateStoreError: If no error state exists for the workflow id.
        """
        with self.store.lock(workflow_id):
            state = self.store.load(workflow_id)
            if state is None:
                raise ErrorStateStoreError(f"No error state for workflow {workflow_id}")

            if state.error_kind == ErrorKind.PERMANENT:
                logger.warning(
                    f"Permanent error for {workflow_id} (step={state.context.current_step}, "
                    f"attempts={state.recovery_attempts}), escalating without retry"
                )
                return self._escalate(state, reason="The error is not transient and will not be retried automatically.")

            state.recovery_attempts += 1
            self.store.save(state)
            attempt = state.recovery_attempts
            logger.info(f"Recovery attempt {attempt} for {workflow_id} (step={state.context.current_step})")

            if attempt == 1:
                return RecoveryResult(
                    success=True,
                    recovery_strategy=RecoveryStrategy.SIMPLE_RETRY,
                    message=f"Retrying {state.context.current_step} for issue #{state.context.issue_number}",
                    attempts=attempt,
                )
            if attempt == 2:
                return RecoveryResult(
                    success=True,
                    recovery_strategy=RecoveryStrategy.ADVANCED_RETRY,
                    message=(
                        f"Retrying {state.context.current_step} for issue #{state.context.issue_number} "
                        "after checking workflow status"
                    ),
                    attempts=attempt,
                    diagnostics=self._external_status(state),
                )
            return self._escalate(state, reason=f"Automatic recovery gave up after {MAX_RETRIES} retries.")

    def handle_failure(
        self,
        run: "WorkflowRun",
        error: BaseException,
        step_data: dict[str, Any] | None = None,
    ) -> RecoveryResult:
        """Capture a handler failure, run one recovery step and tell the issue."""
        context = ErrorContext(
            issue_number=run.issue_number,
            repo_owner=self.settings.repo_owner,
            repo_name=self.settings.repo_name,
            current_step=run.stage.value,
            step_data=step_data or {},
        )
        state = self.capture_error_state(run.workflow_id, error, context)
        result = self.attempt_recovery(run.workflow_id)
        if result.success:
            self._comment_retry(state, result)
        return result

    def _external_status(self, state: ErrorState) -> dict[str, Any]:
        """Latest GitHub Actions run for the issue branch, for diagnostics."""
        branch = f"{self.settings.branch_prefix}{state.context.issue_number}"
        try:
            run = self.github.get_latest_workflow_run(branch=branch) or self.github.get_latest_workflow_run()
        except GitHubAPIError as e:
            logger.warning(f"Could not query workflow status for {state.workflow_id}: {e}")
            return {"actions_status_error": str(e)}
        if run is None:
            return {"actions_status": "no workflow runs found"}
        return {
            "actions_workflow": run.name,
            "actions_status": run.status,
            "actions_conclusion": run.conclusion,
            "actions_url": run.url,
        }

    def _owning_team(self, state: ErrorState) -> str:
        teams = self.workflow_config.teams
        step = state.context.current_step
        short = step.removeprefix("stone-")
        return teams.get(step) or teams.get(short) or self.workflow_config.default_team

    def _escalate(self, state: ErrorState, reason: str) -> RecoveryResult:
        """Comment, label and alert. Caller holds the key lock."""
        issue = state.context.issue_number
        team = self._owning_team(state)
        diagnostics: dict[str, Any] = {"team": team}
        logger.error(
            f"Escalating {state.workflow_id} to {team} "
            f"(step={state.context.current_step}, attempts={state.recovery_attempts}): {state.error_message}"
        )

        try:
            self.github.create_comment(issue, self._escalation_comment(state, reason))
            self.github.add_labels(issue, [Stage.ERROR.value, MANUAL_INTERVENTION_LABEL])
        except GitHubAPIError as e:
            logger.exception(f"Failed to post escalation for {state.workflow_id}")
            diagnostics["notification_error"] = str(e)

        self.messenger.send_alert(
            team,
            f"Manual intervention required for issue #{issue}",
            f"{state.context.current_step} failed: {state.error_message}\n{reason}",
        )

        return RecoveryResult(
            success=False,
            recovery_strategy=RecoveryStrategy.TEAM_NOTIFICATION,
            message=f"Escalated issue #{issue} to {team}. {reason}",
            attempts=state.recovery_attempts,
            diagnostics=diagnostics,
        )

    def _escalation_comment(self, state: ErrorState, reason: str) -> str:
        try:
            stage = Stage(state.context.current_step)
        except ValueError:
            stage = None
        actions = RECOMMENDED_ACTIONS.get(stage, _DEFAULT_ACTIONS)

        lines = [
            "## Manual Intervention Required",
            "",
            "The automated workflow for this issue has encountered an error that requires manual intervention.",
            "",
            reason,
            "",
            "### Error Details",
            "",
            f"- **Stage**: `{state.context.current_step}`",
            f"- **Error**: {state.error_type}: {state.error_message}",
            f"- **Kind**: {state.error_kind.value}",
            f"- **Recovery Attempts**: {state.recovery_attempts}",
            f"- **Workflow ID**: `{state.workflow_id}`",
            "",
            "### Recommended Actions",
            "",
        ]
        lines += [f"{i}. {action}" for i, action in enumerate(actions, 1)]
        if state.stack_trace:
            lines += ["", "<details><summary>Stack trace</summary>", "", "```", state.stack_trace.rstrip(), "```", "</details>"]
        lines += [
            "",
            "### Resolution",
            "",
            f"Automated processing is paused. Once the issue is resolved manually, run "
            f"`stone clear-error {state.workflow_id}` and remove the `{MANUAL_INTERVENTION_LABEL}` label; "
            f"the workflow then resumes at `{state.context.current_step}`.",
        ]
        return "\n".join(lines)

    def _comment_retry(self, state: ErrorState, result: RecoveryResult) -> None:
        lines = [
            "## Workflow Error",
            "",
            f"Stage `{state.context.current_step}` failed: {state.error_message}",
            "",
            f"Recovery: **{result.recovery_strategy.value}** (attempt {result.attempts} of {MAX_RETRIES}). "
            "The stage will be retried.",
        ]
        if result.diagnostics:
            lines += ["", "### Diagnostics", ""]
            lines += [f"- **{key}**: {value}" for key, value in result.diagnostics.items()]
        try:
            self.github.create_comment(state.context.issue_number, "\n".join(lines))
        except GitHubAPIError:
            logger.exception(f"Failed to comment retry notice for {state.workflow_id}")
