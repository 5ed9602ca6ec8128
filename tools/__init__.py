"""I/O adapters for the Stone workflow."""

from tools.git_tools import GitResult, GitRunner, GitTimeoutError
from tools.github_tools import GitHubAPIError, GitHubTools, get_github_client
from tools.llm_providers import ClaudeClient, get_llm_client
from tools.messenger import LoggingMessenger, get_messenger

__all__ = [
    "ClaudeClient",
    "GitHubAPIError",
    "GitHubTools",
    "GitResult",
    "GitRunner",
    "GitTimeoutError",
    "LoggingMessenger",
    "get_github_client",
    "get_llm_client",
    "get_messenger",
]
