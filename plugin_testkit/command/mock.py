"""
Recording command runner for dry runs and testing (no processes started).
"""

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from plugin_testkit.command.base import (
    CommandResult,
    CommandRunner,
    ProcessHandle,
    RunnerConfig,
)


@dataclass(frozen=True)
class RecordedCommand:
    """One command seen by the recording runner."""

    command: tuple[str, ...]
    cwd: Path | None
    background: bool = False

    def __str__(self) -> str:
        return " ".join(self.command)


class FakeProcessHandle(ProcessHandle):
    """ProcessHandle that stays "running" until killed."""

    def __init__(self, exit_code: int | None = None):
        self.exit_code = exit_code
        self.killed = False

    def poll(self) -> int | None:
        return self.exit_code

    def kill(self) -> None:
        self.killed = True
        if self.exit_code is None:
            self.exit_code = -9


Response = CommandResult | Callable[[list[str], Path | None], CommandResult]


class RecordingCommandRunner(CommandRunner):
    """
    CommandRunner that records commands instead of executing them.

    Every command succeeds with empty output unless a response was
    registered for a matching argument prefix with respond().
    """

    def __init__(self, config: RunnerConfig | None = None, create_dirs: bool = True):
        super().__init__(config)
        self.create_dirs = create_dirs
        self.commands: list[RecordedCommand] = []
        self.handles: list[FakeProcessHandle] = []
        self._responses: list[tuple[tuple[str, ...], Response]] = []

    def respond(
        self,
        prefix: list[str] | tuple[str, ...],
        output: str = "",
        returncode: int = 0,
        handler: Callable[[list[str], Path | None], CommandResult] | None = None,
    ) -> None:
        """
        Register a canned response for commands starting with ``prefix``.

        Later registrations win over earlier ones for the same command.

        Args:
            prefix: Leading arguments to match (program included)
            output: Combined output to return
            returncode: Exit code to return
            handler: Optional callable computing the result instead
        """
        prefix = tuple(prefix)
        if handler is not None:
            self._responses.append((prefix, handler))
        else:
            self._responses.append((prefix, CommandResult(prefix, returncode, output)))

    def prepare_dir(self, *path: str) -> Path | None:
        if self.create_dirs:
            return super().prepare_dir(*path)
        return self.resolve_dir(*path)

    def invocations(self, program: str | None = None) -> list[list[str]]:
        """Recorded commands (optionally only those for one program)."""
        return [
            list(recorded.command)
            for recorded in self.commands
            if program is None or recorded.command[0] == program
        ]

    def _execute(self, command: list[str], cwd: Path | None) -> CommandResult:
        self.commands.append(RecordedCommand(tuple(command), cwd))

        for prefix, response in reversed(self._responses):
            if tuple(command[: len(prefix)]) == prefix:
                if isinstance(response, CommandResult):
                    return CommandResult(tuple(command), response.returncode, response.output)
                return response(command, cwd)

        return CommandResult(tuple(command), 0, "")

    def _spawn(self, command: list[str], cwd: Path | None) -> ProcessHandle:
        self.commands.append(RecordedCommand(tuple(command), cwd, background=True))
        handle = FakeProcessHandle()
        self.handles.append(handle)
        return handle
