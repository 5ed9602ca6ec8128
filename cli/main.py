"""CLI application for the Stone workflow."""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from config.settings import Settings, get_settings
from config.workflow_file import load_workflow_config
from tools.github_tools import GitHubAPIError, GitHubTools
from tools.llm_providers import get_provider_info
from workflow.conflicts import ConflictResolver
from workflow.error_recovery import ErrorRecovery
from workflow.errors import ConfigurationError, NoActiveStageError, StoneError, WorkflowCancelledError
from workflow.feedback import FeedbackProcessor
from workflow.stages import LABEL_DEFINITIONS, STAGE_PRIORITY, stage_summary, stone_labels

app = typer.Typer(
    name="stone",
    help="Label-driven GitHub issue workflow",
    no_args_is_help=True,
)
console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Do not write labels, comments or issues"),
):
    """Stone workflow control plane."""
    settings = get_settings()
    settings.verbose = verbose or settings.verbose
    settings.dry_run = dry_run or settings.dry_run
    _setup_logging(settings.verbose)


def _github(settings: Settings) -> GitHubTools:
    try:
        return GitHubTools(settings=settings)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


def _recovery(settings: Settings, github: GitHubTools) -> ErrorRecovery:
    return ErrorRecovery(github, settings=settings, workflow_config=load_workflow_config(settings))


@app.command()
def run(
    issue_number: int = typer.Argument(..., help="Issue to process"),
    stage: str | None = typer.Option(
        None,
        "--stage",
        "-s",
        help="Run this stage (label or name, e.g. docs) instead of the one resolved from the labels",
    ),
):
    """Run the handler for the active stage of an issue."""
    from roles import build_default_handlers
    from workflow.orchestrator import WorkflowOrchestrator

    settings = get_settings()
    github = _github(settings)
    workflow_config = load_workflow_config(settings)

    try:
        orchestrator = WorkflowOrchestrator(
            github,
            build_default_handlers(github, settings=settings),
            recovery=ErrorRecovery(github, settings=settings, workflow_config=workflow_config),
            settings=settings,
            disabled=workflow_config.disabled_stages,
        )
        ran = orchestrator.run_workflow(issue_number, stage=stage)
    except NoActiveStageError as e:
        console.print(f"[yellow]{e}[/yellow]")
        return
    except (ConfigurationError, WorkflowCancelledError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"[red]Stage failed for #{issue_number}: {e}[/red]")
        console.print("[dim]Recovery state recorded; see `stone errors`.[/dim]")
        raise typer.Exit(1)

    console.print(f"[green]Completed {ran.value} for #{issue_number}[/green]")


@app.command()
def status(
    issue_numbers: list[int] | None = typer.Argument(None, help="Issues to show (default: all in-flight issues)"),
):
    """Show the workflow stage of issues."""
    settings = get_settings()
    github = _github(settings)

    try:
        if issue_numbers:
            issues = [github.get_issue(n) for n in issue_numbers]
        else:
            seen = {}
            for stage in STAGE_PRIORITY:
                for issue in github.list_issues_with_label(stage.value):
                    seen.setdefault(issue.number, issue)
            issues = sorted(seen.values(), key=lambda i: i.number)
    except GitHubAPIError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if not issues:
        console.print("[yellow]No issues in the workflow[/yellow]")
        return

    table = Table(title=f"Stone workflow: {settings.github_repo}")
    table.add_column("Issue", style="cyan")
    table.add_column("Title")
    table.add_column("Stage", style="green")
    table.add_column("Labels", style="dim")
    for issue in issues:
        table.add_row(f"#{issue.number}", issue.title, stage_summary(issue.labels), ", ".join(stone_labels(issue.labels)))
    console.print(table)


@app.command()
def errors():
    """List persisted error states."""
    settings = get_settings()
    recovery = _recovery(settings, _github(settings))
    states = recovery.list_error_states()
    if not states:
        console.print("[green]No recorded errors[/green]")
        return

    table = Table(title="Error states")
    table.add_column("Workflow ID", style="cyan")
    table.add_column("Issue")
    table.add_column("Step")
    table.add_column("Kind")
    table.add_column("Attempts", justify="right")
    table.add_column("Error", style="red")
    table.add_column("When", style="dim")
    for state in states:
        table.add_row(
            state.workflow_id,
            f"#{state.context.issue_number}",
            state.context.current_step,
            state.error_kind.value,
            str(state.recovery_attempts),
            state.error_message[:80],
            state.timestamp.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def recover(workflow_id: str = typer.Argument(..., help="Workflow ID from `stone errors`")):
    """Advance the recovery ladder of a recorded error by one step."""
    settings = get_settings()
    recovery = _recovery(settings, _github(settings))
    try:
        result = recovery.attempt_recovery(workflow_id)
    except StoneError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    color = "green" if result.success else "yellow"
    console.print(f"[{color}]{result.recovery_strategy.value}[/{color}]: {result.message} (attempts: {result.attempts})")
    for key, value in result.diagnostics.items():
        console.print(f"  {key}: {value}")
    if not result.success:
        raise typer.Exit(1)


@app.command("clear-error")
def clear_error(workflow_id: str = typer.Argument(..., help="Workflow ID from `stone errors`")):
    """Delete a recorded error state."""
    settings = get_settings()
    recovery = _recovery(settings, _github(settings))
    if recovery.clear_error_state(workflow_id):
        console.print(f"[green]Cleared {workflow_id}[/green]")
    else:
        console.print(f"[yellow]No error state for {workflow_id}[/yellow]")


@app.command()
def conflicts(
    issue_number: int = typer.Argument(..., help="Issue whose branch to check"),
    target: str | None = typer.Option(None, "--target", "-t", help="Target branch (default: main branch)"),
):
    """Check the issue branch for merge conflicts without merging."""
    settings = get_settings()
    resolver = ConflictResolver(settings=settings)
    try:
        result = resolver.detect_conflicts(resolver.branch_for_issue(issue_number), target)
    except StoneError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if not result.has_conflicts:
        console.print(f"[green]No conflicts between {result.branch_name} and {result.target_branch}[/green]")
        return
    console.print(f"[red]Conflicts between {result.branch_name} and {result.target_branch}:[/red]")
    for path in result.conflicting_files:
        console.print(f"  - {path}")
    raise typer.Exit(1)


@app.command("resolve-conflicts")
def resolve_conflicts(issue_number: int = typer.Argument(..., help="Issue whose branch to resolve")):
    """Detect and resolve conflicts of the issue branch, then report on the issue."""
    settings = get_settings()
    resolver = ConflictResolver(github=_github(settings), settings=settings)
    try:
        result = resolver.handle_issue_conflicts(issue_number)
    except (StoneError, GitHubAPIError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if not result.success:
        console.print(f"[red]{result.message}: {result.error}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]{result.message}[/green]")
    if result.needs_review:
        console.print("[yellow]Review the files that kept the branch version:[/yellow]")
        for path in result.resolved_files:
            console.print(f"  - {path}")


@app.command("merge-status")
def merge_status(
    issue_number: int = typer.Argument(..., help="Issue whose branch to report on"),
    comment: bool = typer.Option(False, "--comment", help="Also post the report on the issue"),
):
    """Show the merge status report of the issue branch."""
    settings = get_settings()
    github = _github(settings)
    report = ConflictResolver(github=github, settings=settings).track_merge_status(issue_number)
    console.print(report.to_comment())
    if comment:
        github.create_comment(issue_number, report.to_comment())


@app.command()
def feedback(
    pr_number: int = typer.Argument(..., help="Pull request whose comments to process"),
    issue: int = typer.Option(..., "--issue", "-i", help="Issue the pull request delivers"),
):
    """Turn PR review comments into prioritised tracking issues."""
    settings = get_settings()
    github = _github(settings)
    processor = FeedbackProcessor(github, settings=settings, workflow_config=load_workflow_config(settings))
    try:
        tickets = processor.process_pull_request(pr_number, issue)
    except GitHubAPIError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if not tickets:
        console.print("[yellow]No actionable feedback[/yellow]")
        return
    table = Table(title=f"Feedback from PR #{pr_number}")
    table.add_column("Priority", style="cyan")
    table.add_column("Area")
    table.add_column("Team", style="green")
    table.add_column("Issue")
    table.add_column("Feedback", style="dim")
    for t in tickets:
        table.add_row(t.priority, t.item.affected_area, t.team, f"#{t.issue_number}", t.item.description[:60])
    console.print(table)


@app.command("create-labels")
def create_labels():
    """Create or update the stone labels in the repository."""
    settings = get_settings()
    github = _github(settings)
    try:
        created, updated = github.ensure_labels(LABEL_DEFINITIONS)
    except GitHubAPIError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Created {len(created)} label(s), updated {len(updated)}[/green]")
    for name in created:
        console.print(f"  + {name}")


@app.command()
def config():
    """Show the current configuration."""
    settings = get_settings()
    try:
        workflow_config = load_workflow_config(settings)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("GitHub Repo", settings.github_repo or "Not set")
    table.add_row("GitHub Token", "Set" if settings.github_token else "[yellow]Not set[/yellow]")
    provider = get_provider_info(settings)
    table.add_row("LLM Provider", f"{provider['provider']} ({provider.get('model', '?')})")
    table.add_row("Repo Path", str(settings.repo_path))
    table.add_row("Main Branch", settings.main_branch)
    table.add_row("Branch Prefix", settings.branch_prefix)
    table.add_row("State Dir", str(settings.state_dir))
    table.add_row("Timeout", f"{settings.external_call_timeout}s")
    table.add_row("Default Team", workflow_config.default_team)
    table.add_row("Team Routes", ", ".join(f"{a}={t}" for a, t in workflow_config.teams.items()) or "None")
    table.add_row("Disabled Stages", ", ".join(workflow_config.disabled_stages) or "None")
    table.add_row("Dry Run", str(settings.dry_run))
    console.print(table)


if __name__ == "__main__":
    app()
