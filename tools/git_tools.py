"""Git plumbing invoked as a subprocess."""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


class GitTimeoutError(Exception):
    """A git command exceeded its timeout."""


@dataclass
class GitResult:
    """Outcome of a git command. A non-zero exit code is data, not an error."""

    args: list[str]
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Stripped stdout, falling back to stderr (git reports some successes there)."""
        return (self.stdout or self.stderr).strip()


@dataclass
class GitRunner:
    """Runs git commands in one repository with a bounded timeout."""

    repo_path: Path
    timeout: float = 60.0

    def __post_init__(self):
        """Convert string path to Path if needed."""
        if isinstance(self.repo_path, str):
            self.repo_path = Path(self.repo_path)

    def run(self, args: list[str]) -> GitResult:
        """Run a git command and capture its output.

        Raises:
            GitTimeoutError: If the command does not finish within the timeout.
        """
        cmd = ["git"] + args
        logger.debug(f"Executing git command: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise GitTimeoutError(f"git {' '.join(args)} timed out after {self.timeout}s") from e

        if result.returncode != 0:
            logger.debug(f"git {args[0]} exited {result.returncode}: {result.stderr.strip()}")
        return GitResult(args=list(args), stdout=result.stdout, stderr=result.stderr, exit_code=result.returncode)

    def check(self, args: list[str]) -> GitResult:
        """Run a git command that must succeed."""
        result = self.run(args)
        if not result.ok:
            raise RuntimeError(f"Git command failed: git {' '.join(args)}\n{result.stderr}")
        return result

    def current_branch(self) -> str:
        return self.check(["rev-parse", "--abbrev-ref", "HEAD"]).output

    def branch_exists(self, branch: str) -> bool:
        return self.run(["rev-parse", "--verify", "--quiet", branch]).ok
