"""
Command runner backed by local subprocesses.
"""

import subprocess
from pathlib import Path

from plugin_testkit.command.base import CommandResult, CommandRunner, ProcessHandle
from plugin_testkit.exceptions import ExternalToolError

# Shell conventions for "command not found" and "not executable"
NOT_FOUND_EXIT_CODE = 127
NOT_EXECUTABLE_EXIT_CODE = 126


def _launch_exit_code(error: OSError) -> int:
    if isinstance(error, PermissionError):
        return NOT_EXECUTABLE_EXIT_CODE
    return NOT_FOUND_EXIT_CODE


class LocalProcessHandle(ProcessHandle):
    """ProcessHandle wrapping a subprocess.Popen."""

    def __init__(self, process: subprocess.Popen):
        self.process = process

    def poll(self) -> int | None:
        return self.process.poll()

    def kill(self) -> None:
        if self.process.poll() is None:
            self.process.kill()
            self.process.wait()


class LocalCommandRunner(CommandRunner):
    """Runs commands on the local machine with subprocess."""

    def _stdin_kwargs(self) -> dict:
        if self.config.stdin is None:
            return {}
        return {"input": self.config.stdin}

    def _execute(self, command: list[str], cwd: Path | None) -> CommandResult:
        try:
            completed = subprocess.run(
                command,
                cwd=cwd,
                env=self.environment(),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=self.config.timeout,
                check=False,
                **self._stdin_kwargs(),
            )
        except (FileNotFoundError, PermissionError) as e:
            return CommandResult(tuple(command), _launch_exit_code(e), str(e))
        except subprocess.TimeoutExpired as e:
            output = e.output.decode(errors="replace") if e.output else ""
            raise ExternalToolError(
                command, -1, f"{output}\nTimed out after {self.config.timeout}s"
            ) from e

        return CommandResult(
            tuple(command),
            completed.returncode,
            completed.stdout.decode(errors="replace"),
        )

    def _spawn(self, command: list[str], cwd: Path | None) -> ProcessHandle:
        try:
            process = subprocess.Popen(
                command,
                cwd=cwd,
                env=self.environment(),
                stdin=None if self.config.stdin is None else subprocess.PIPE,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ExternalToolError(command, _launch_exit_code(e), str(e)) from e

        if process.stdin is not None:
            # Configured input is written once, then the pipe is closed
            process.stdin.write(self.config.stdin)
            process.stdin.close()
        return LocalProcessHandle(process)
