"""
Tests for the local run check.
"""

import pytest

from plugin_testkit.command import RecordingCommandRunner, RunnerConfig
from plugin_testkit.command.mock import FakeProcessHandle
from plugin_testkit.exceptions import ExternalToolError
from plugin_testkit.lifecycle import LocalRunCheck
from plugin_testkit.samples.catalog import memcached_sample


class CrashingRunner(RecordingCommandRunner):
    """Runner whose background processes exit on their own."""

    def _spawn(self, command, cwd):
        super()._spawn(command, cwd)
        handle = FakeProcessHandle(exit_code=1)
        self.handles[-1] = handle
        return handle


class TestLocalRunCheck:
    """Tests for LocalRunCheck."""

    def test_install_run_uninstall(self, memcached):
        """Test the make targets and that the manager is killed after settling."""
        sleeps = []

        LocalRunCheck(memcached, settle_seconds=3, sleep=sleeps.append).run()

        runner = memcached.runner
        assert [str(c) for c in runner.commands] == [
            "make install",
            "make run",
            "make uninstall",
        ]
        assert [c.background for c in runner.commands] == [False, True, False]
        assert {c.cwd for c in runner.commands} == {memcached.project_dir}
        assert sleeps == [3]
        assert runner.handles[0].killed

    def test_exited_manager_fails_but_uninstalls(self, tmp_path):
        """Test that a manager that exits early fails the check after uninstalling."""
        runner = CrashingRunner(RunnerConfig(work_dir=tmp_path))
        descriptor = memcached_sample(runner)

        with pytest.raises(ExternalToolError) as exc_info:
            LocalRunCheck(descriptor, settle_seconds=0, sleep=lambda s: None).run()

        assert exc_info.value.command == ["make", "run"]
        assert "manager exited" in str(exc_info.value)
        assert runner.invocations()[-1] == ["make", "uninstall"]
        assert not runner.handles[0].killed

    def test_uninstall_failure_after_crash_keeps_run_error(self, tmp_path):
        """Test that the run failure is raised even if uninstall also fails."""
        runner = CrashingRunner(RunnerConfig(work_dir=tmp_path))
        runner.respond(["make", "uninstall"], output="no CRDs", returncode=2)
        descriptor = memcached_sample(runner)

        with pytest.raises(ExternalToolError) as exc_info:
            LocalRunCheck(descriptor, settle_seconds=0, sleep=lambda s: None).run()

        assert exc_info.value.command == ["make", "run"]

    def test_install_failure_skips_run(self, memcached):
        """Test that nothing is started when the CRDs cannot be installed."""
        memcached.runner.respond(["make", "install"], output="kustomize: not found", returncode=2)

        with pytest.raises(ExternalToolError):
            LocalRunCheck(memcached, settle_seconds=0, sleep=lambda s: None).run()

        assert memcached.runner.invocations() == [["make", "install"]]
        assert memcached.runner.handles == []
