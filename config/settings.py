"""Pydantic settings for the Stone workflow."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # GitHub Configuration
    github_token: str | None = Field(default=None, description="GitHub personal access token")
    github_repo: str = Field(default="", description="Target GitHub repository (owner/repo)")

    # LLM Configuration
    llm_provider: Literal["anthropic", "bedrock"] = Field(
        default="anthropic", description="LLM provider to use (anthropic, bedrock)"
    )
    anthropic_api_key: str | None = Field(default=None, description="Anthropic API key")
    anthropic_model: str = Field(default="claude-sonnet-4-5", description="Anthropic model name")
    bedrock_model_id: str = Field(
        default="anthropic.claude-sonnet-4-5-20250929-v1:0",
        description="Bedrock inference profile ID",
    )
    bedrock_region: str = Field(default="us-east-1", description="AWS region for Bedrock API calls")
    llm_max_tokens: int = Field(default=4096, description="Maximum tokens per LLM response")

    # Local repository / branches
    repo_path: Path = Field(default=Path("."), description="Local checkout used for git operations")
    main_branch: str = Field(default="main", description="Target branch for merges and rebases")
    branch_prefix: str = Field(default="stone/", description="Feature branch prefix, followed by the issue number")

    # Workflow configuration
    state_dir: Path = Field(
        default=Path(".stone/errors"), description="Directory holding one JSON error state per workflow id"
    )
    external_call_timeout: float = Field(
        default=60.0, description="Timeout in seconds applied to every GitHub, git and LLM call"
    )
    retry_delay: float = Field(
        default=5.0, ge=0, description="Seconds to wait before re-running a handler after a transient failure"
    )
    include_stack_trace: bool = Field(default=False, description="Include stack traces in error comments")
    disabled_stages: str = Field(
        default="", description="Comma-separated stage labels or names whose handlers are disabled"
    )
    workflow_config: Path | None = Field(default=None, description="Optional stone.yaml with teams and stages")

    # Feedback routing
    default_team: str = Field(default="general", description="Team receiving feedback no route matches")
    team_routes: str = Field(
        default="",
        description="Comma-separated area=team pairs (e.g., security=security-team,ui=frontend)",
    )

    # Agent Configuration
    dry_run: bool = Field(default=False, description="Run without making changes")
    verbose: bool = Field(default=False, description="Verbose output")

    @property
    def repo_owner(self) -> str:
        """Return the owner part of github_repo."""
        return self.github_repo.split("/", 1)[0] if "/" in self.github_repo else ""

    @property
    def repo_name(self) -> str:
        """Return the repository part of github_repo."""
        return self.github_repo.split("/", 1)[1] if "/" in self.github_repo else self.github_repo

    @property
    def disabled_stage_list(self) -> list[str]:
        """Return list of disabled stages."""
        return [s.strip() for s in self.disabled_stages.split(",") if s.strip()]

    @property
    def team_route_map(self) -> dict[str, str]:
        """Return the area -> team routing table."""
        routes = {}
        for pair in self.team_routes.split(","):
            if "=" not in pair:
                continue
            area, team = pair.split("=", 1)
            if area.strip() and team.strip():
                routes[area.strip().lower()] = team.strip()
        return routes

    @field_validator("repo_path", "state_dir", mode="before")
    @classmethod
    def validate_path(cls, v: str | Path) -> Path:
        """Convert string path to Path object."""
        return Path(v).expanduser()

    @field_validator("external_call_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Reject non-positive timeouts."""
        if v <= 0:
            raise ValueError("external_call_timeout must be positive")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
