"""Optional YAML workflow file (stone.yaml) layered over the settings."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from config.settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_WORKFLOW_FILE = "stone.yaml"


@dataclass
class WorkflowConfig:
    """Team routing and stage toggles resolved from settings and stone.yaml."""

    teams: dict[str, str] = field(default_factory=dict)
    default_team: str = "general"
    disabled_stages: list[str] = field(default_factory=list)


def _load_yaml(path: Path) -> dict:
    """Load a YAML mapping, raising ValueError for anything else."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a YAML mapping, got {type(data).__name__}")
    return data


def load_workflow_config(settings: Settings) -> WorkflowConfig:
    """Build the workflow config from settings, then overlay the YAML file.

    The file named by ``settings.workflow_config`` must exist. When unset,
    ``stone.yaml`` in the repository root is used if present.

    Example file::

        default_team: platform
        teams:
          security: security-team
          ui: frontend
        disabled_stages:
          - actions
    """
    config = WorkflowConfig(
        teams=dict(settings.team_route_map),
        default_team=settings.default_team,
        disabled_stages=list(settings.disabled_stage_list),
    )

    path = settings.workflow_config
    if path is None:
        candidate = settings.repo_path / DEFAULT_WORKFLOW_FILE
        if not candidate.exists():
            return config
        path = candidate
    elif not path.exists():
        raise FileNotFoundError(f"Workflow config not found: {path}")

    data = _load_yaml(path)
    logger.debug(f"Loaded workflow config from {path}")

    teams = data.get("teams") or {}
    if not isinstance(teams, dict):
        raise ValueError(f"'teams' in {path} must be a mapping of area to team")
    config.teams.update({str(area).lower(): str(team) for area, team in teams.items()})

    if data.get("default_team"):
        config.default_team = str(data["default_team"])

    for stage in data.get("disabled_stages") or []:
        if str(stage) not in config.disabled_stages:
            config.disabled_stages.append(str(stage))

    return config
