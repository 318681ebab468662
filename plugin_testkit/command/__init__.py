"""
External command execution.

CommandRunner is the seam every scaffold, build and cluster command goes
through; LocalCommandRunner executes for real, RecordingCommandRunner only
records (dry runs and tests).
"""

from plugin_testkit.command.base import (
    CommandResult,
    CommandRunner,
    ProcessHandle,
    RunnerConfig,
)
from plugin_testkit.command.local import LocalCommandRunner
from plugin_testkit.command.mock import RecordingCommandRunner

__all__ = [
    "CommandResult",
    "CommandRunner",
    "LocalCommandRunner",
    "ProcessHandle",
    "RecordingCommandRunner",
    "RunnerConfig",
]
