"""Feature role: implements the feature, or fixes it after a failed audit or test run."""

from config.settings import Settings
from roles.base_role import BaseRole
from tools.github_tools import GitHubTools, IssueInfo
from tools.llm_providers import ClaudeClient
from workflow.stages import Stage


class FeatureRole(BaseRole):
    name = "feature"
    description = "Implements the feature so that the QA tests pass"
    stage = Stage.FEATURE_IMPLEMENT
    context_roles = ("pm", "qa")

    def __init__(
        self,
        github: GitHubTools,
        llm: ClaudeClient | None = None,
        settings: Settings | None = None,
        stage: Stage = Stage.FEATURE_IMPLEMENT,
    ):
        super().__init__(github, llm, settings)
        if stage not in (Stage.FEATURE_IMPLEMENT, Stage.FEATURE_FIX):
            raise ValueError(f"FeatureRole cannot handle {stage.value}")
        self.stage = stage
        if stage == Stage.FEATURE_FIX:
            self.context_roles = ("pm", "qa", "auditor", "tester")

    def next_labels(self, issue: IssueInfo, response: str) -> list[Stage]:
        return [Stage.AUDIT]
