"""Configuration for the Stone workflow."""

from config.settings import Settings, get_settings
from config.workflow_file import WorkflowConfig, load_workflow_config

__all__ = [
    "Settings",
    "get_settings",
    "WorkflowConfig",
    "load_workflow_config",
]
