"""
Abstract base class for external command runners.
"""

import logging
import os
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from plugin_testkit.exceptions import ExternalToolError

logger = logging.getLogger(__name__)


@dataclass
class RunnerConfig:
    """
    Execution settings shared by every command a runner launches.

    Attributes:
        work_dir: Base directory; sub-paths passed to run() are joined onto it.
            None means the current working directory.
        env: Overrides merged on top of the caller's full environment.
        stdin: Bytes fed to the process; None inherits the caller's stdin.
        timeout: Optional per-command timeout in seconds.
    """

    work_dir: Path | None = None
    env: dict[str, str] = field(default_factory=dict)
    stdin: bytes | None = None
    timeout: float | None = None

    def __post_init__(self):
        if self.work_dir is not None:
            self.work_dir = Path(self.work_dir)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command (stdout and stderr combined)."""

    command: tuple[str, ...]
    returncode: int
    output: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ProcessHandle(ABC):
    """Handle on a long-running process started with CommandRunner.start()."""

    @abstractmethod
    def poll(self) -> int | None:
        """Return the exit code, or None while the process is still running."""
        pass

    @abstractmethod
    def kill(self) -> None:
        """Kill the process (no-op if it already exited)."""
        pass


class CommandRunner(ABC):
    """
    Runs external processes in a configured directory and environment.

    This is one of the two seams where tests substitute fakes (the other is
    the cluster client).
    """

    def __init__(self, config: RunnerConfig | None = None):
        """
        Initialize command runner.

        Args:
            config: Runner configuration (defaults to current directory,
                inherited environment and stdin)
        """
        self.config = config or RunnerConfig()

    @property
    def work_dir(self) -> Path | None:
        return self.config.work_dir

    def resolve_dir(self, *path: str) -> Path | None:
        """Join sub-path components onto the configured work directory."""
        if self.work_dir is None and not path:
            return None
        base = self.work_dir if self.work_dir is not None else Path()
        return base.joinpath(*path)

    def environment(self) -> dict[str, str]:
        """Caller's full environment merged with the configured overrides."""
        env = dict(os.environ)
        env.update(self.config.env)
        return env

    def prepare_dir(self, *path: str) -> Path | None:
        """Resolve the execution directory, creating it on demand."""
        cwd = self.resolve_dir(*path)
        if cwd is not None:
            cwd.mkdir(parents=True, exist_ok=True)
        return cwd

    def run(self, command: list[str], *path: str, check: bool = True) -> CommandResult:
        """
        Run a command to completion and capture its combined output.

        Args:
            command: Program and arguments
            *path: Sub-directory (relative to the work directory) to run in
            check: Raise ExternalToolError on a non-zero exit code

        Returns:
            CommandResult with the combined output

        Raises:
            ExternalToolError: If check is set and the command fails
        """
        cwd = self.prepare_dir(*path)
        logger.info("Running command: %s (cwd=%s)", shlex.join(command), cwd or ".")

        result = self._execute(list(command), cwd)

        if check and not result.ok:
            raise ExternalToolError(list(command), result.returncode, result.output)
        return result

    def start(self, command: list[str], *path: str) -> ProcessHandle:
        """
        Start a long-running command without waiting for it.

        Args:
            command: Program and arguments
            *path: Sub-directory (relative to the work directory) to run in

        Returns:
            ProcessHandle for the started process
        """
        cwd = self.prepare_dir(*path)
        logger.info("Starting command: %s (cwd=%s)", shlex.join(command), cwd or ".")
        return self._spawn(list(command), cwd)

    @abstractmethod
    def _execute(self, command: list[str], cwd: Path | None) -> CommandResult:
        """Run the command and return its result (never raise on exit code)."""
        pass

    @abstractmethod
    def _spawn(self, command: list[str], cwd: Path | None) -> ProcessHandle:
        """Start the command in the background."""
        pass
