"""Workflow orchestrator: one blocking run per issue event.

A run reads the issue labels once, resolves the active stage once and calls the
stage handler. A failure goes to error recovery; the handler is re-run while
recovery reports it safe, otherwise the failure is re-raised.
"""

import hashlib
import logging
import re
import threading
import time
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from config.settings import Settings, get_settings
from tools.github_tools import GitHubTools
from workflow.error_recovery import ErrorRecovery, RecoveryResult
from workflow.errors import (
    ConfigurationError,
    NoActiveStageError,
    StoneError,
    WorkflowCancelledError,
)
from workflow.stages import Stage, parse_stage, resolve_active_stage

logger = logging.getLogger(__name__)


@runtime_checkable
class StageHandler(Protocol):
    """Unit of work bound to a stage."""

    def process(self, issue_number: int) -> None: ...


class WorkflowRun(BaseModel):
    """One execution of the control loop for one issue."""

    workflow_id: str = Field(description="Join key for the error state of this attempt chain")
    issue_number: int
    stage: Stage
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


def make_workflow_id(repository: str, issue_number: int, stage: Stage | str) -> str:
    """Stable, path-safe id shared by every retry of one issue stage."""
    stage_value = stage.value if isinstance(stage, Stage) else str(stage)
    slug = re.sub(r"[^A-Za-z0-9]+", "-", repository).strip("-").lower() or "repo"
    digest = hashlib.sha1(f"{repository}#{issue_number}".encode()).hexdigest()[:8]
    return f"{slug}-{issue_number}-{stage_value}-{digest}"


def build_handler_table(
    handlers: Mapping[Stage | str, StageHandler],
    disabled: Iterable[Stage | str] = (),
) -> dict[Stage, StageHandler]:
    """Validate a stage -> handler mapping.

    Raises:
        ConfigurationError: On an unknown stage, a duplicate stage or a
            handler without ``process``.
    """
    disabled_stages = {parse_stage(s) for s in disabled}
    table: dict[Stage, StageHandler] = {}
    for key, handler in handlers.items():
        stage = parse_stage(key)
        if stage in table:
            raise ConfigurationError(f"Duplicate handler for {stage.value}")
        if not callable(getattr(handler, "process", None)):
            raise ConfigurationError(f"Handler for {stage.value} has no process(issue_number) method")
        if stage in disabled_stages:
            logger.info(f"Stage {stage.value} disabled by configuration")
            continue
        table[stage] = handler
    return table


def transition_labels(
    github: GitHubTools,
    issue_number: int,
    add: Iterable[Stage | str],
    remove: Stage | str | None = None,
) -> None:
    """Add the next labels, then remove the current one.

    The add always lands first so an interrupted transition leaves the issue
    in two stages, never in none.
    """
    labels = [s.value if isinstance(s, Stage) else s for s in add]
    github.add_labels(issue_number, labels)
    if remove is not None:
        github.remove_label(issue_number, remove.value if isinstance(remove, Stage) else remove)
    logger.info(f"Issue #{issue_number}: {remove.value if isinstance(remove, Stage) else remove} -> {labels}")


class WorkflowOrchestrator:
    """Runs the stage handler for an issue and triages its failures."""

    def __init__(
        self,
        github: GitHubTools,
        handlers: Mapping[Stage | str, StageHandler],
        recovery: ErrorRecovery | None = None,
        settings: Settings | None = None,
        disabled: Iterable[Stage | str] = (),
    ):
        self.settings = settings or get_settings()
        self.github = github
        self.handlers = build_handler_table(handlers, disabled)
        self.recovery = recovery or ErrorRecovery(github, settings=self.settings)

    def _check_cancel(self, cancel: threading.Event | None, issue_number: int, step: str) -> None:
        if cancel is not None and cancel.is_set():
            raise WorkflowCancelledError(f"Workflow for #{issue_number} cancelled before {step}", issue_number)

    def run_workflow(
        self,
        issue_number: int,
        stage: Stage | str | None = None,
        cancel: threading.Event | None = None,
    ) -> Stage:
        """Run the handler for the issue's active stage.

        Args:
            issue_number: Issue to process
            stage: Run this stage instead of resolving one from the labels
            cancel: Checked between steps; set it to stop the run

        Returns:
            The stage whose handler ran

        Raises:
            NoActiveStageError: The issue has no in-flight stage label
            ConfigurationError: No enabled handler for the stage
            WorkflowCancelledError: ``cancel`` was set between steps
            Exception: Whatever the handler last raised, once recovery stops retrying
        """
        self._check_cancel(cancel, issue_number, "reading labels")

        if stage is None:
            labels = self.github.get_issue_labels(issue_number)
            active = resolve_active_stage(labels)
            if active is None:
                raise NoActiveStageError(f"Issue #{issue_number} has no active stone stage label", issue_number)
        else:
            active = parse_stage(stage)

        handler = self.handlers.get(active)
        if handler is None:
            raise ConfigurationError(f"No enabled handler for stage {active.value}", issue_number)

        run = WorkflowRun(
            workflow_id=make_workflow_id(self.settings.github_repo, issue_number, active),
            issue_number=issue_number,
            stage=active,
        )
        logger.info(f"Running {active.value} for #{issue_number} (workflow {run.workflow_id})")

        self._check_cancel(cancel, issue_number, f"handler {active.value}")

        while True:
            try:
                handler.process(issue_number)
                break
            except ConfigurationError:
                raise
            except Exception as e:
                logger.error(f"Handler {active.value} failed for #{issue_number}: {e}")
                result = self._triage(run, e)
                if result is None or not result.success:
                    raise
            self._wait_before_retry(cancel, issue_number, active)

        self.recovery.clear_error_state(run.workflow_id)
        logger.info(f"Completed {active.value} for #{issue_number}")
        return active

    def _wait_before_retry(self, cancel: threading.Event | None, issue_number: int, stage: Stage) -> None:
        delay = self.settings.retry_delay
        if delay > 0:
            logger.info(f"Retrying {stage.value} for #{issue_number} in {delay:g}s")
            if cancel is not None:
                cancel.wait(delay)
            else:
                time.sleep(delay)
        self._check_cancel(cancel, issue_number, f"retrying {stage.value}")

    def _triage(self, run: WorkflowRun, error: Exception) -> RecoveryResult | None:
        """Recovery bookkeeping. Its own failures are logged, never raised over the handler error."""
        try:
            result = self.recovery.handle_failure(
                run,
                error,
                step_data={"started_at": run.started_at.isoformat(), "handler": type(self.handlers[run.stage]).__name__},
            )
        except (StoneError, OSError):
            logger.exception(f"Recovery bookkeeping failed for {run.workflow_id}")
            return None
        logger.info(
            f"Recovery for {run.workflow_id}: {result.recovery_strategy.value} "
            f"(success={result.success}, attempts={result.attempts})"
        )
        return result
