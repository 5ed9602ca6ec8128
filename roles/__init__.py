"""Stage roles for the Stone workflow."""

from config.settings import Settings
from roles.actions_role import ActionsRole
from roles.auditor_role import AuditorRole
from roles.base_role import BaseRole, RoleResult
from roles.docs_role import DocsRole
from roles.error_role import ErrorRole
from roles.feature_role import FeatureRole
from roles.pm_role import PMRole
from roles.pr_role import PRRole
from roles.qa_role import QARole
from roles.tester_role import TesterRole
from tools.github_tools import GitHubTools
from tools.llm_providers import ClaudeClient
from workflow.stages import Stage


def build_default_handlers(
    github: GitHubTools,
    llm: ClaudeClient | None = None,
    settings: Settings | None = None,
) -> dict[Stage, BaseRole]:
    """One role per handled stage, sharing the GitHub and LLM clients."""
    llm = llm or ClaudeClient(settings)
    return {
        Stage.PROCESS: PMRole(github, llm, settings),
        Stage.QA: QARole(github, llm, settings),
        Stage.ACTIONS: ActionsRole(github, llm, settings),
        Stage.FEATURE_IMPLEMENT: FeatureRole(github, llm, settings),
        Stage.FEATURE_FIX: FeatureRole(github, llm, settings, stage=Stage.FEATURE_FIX),
        Stage.AUDIT: AuditorRole(github, llm, settings),
        Stage.READY_FOR_TESTS: TesterRole(github, llm, settings),
        Stage.DOCS: DocsRole(github, llm, settings),
        Stage.PR: PRRole(github, llm, settings),
        Stage.ERROR: ErrorRole(github, llm, settings),
    }


__all__ = [
    "ActionsRole",
    "AuditorRole",
    "BaseRole",
    "DocsRole",
    "ErrorRole",
    "FeatureRole",
    "PMRole",
    "PRRole",
    "QARole",
    "RoleResult",
    "TesterRole",
    "build_default_handlers",
]
