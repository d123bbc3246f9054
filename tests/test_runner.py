"""
Tests for subprocess execution with timeouts.
"""

import time
from unittest.mock import patch

import pytest

from hookflow.errors import CommandTimeoutError
from hookflow.runner import (
    PosixCommandRunner,
    WindowsCommandRunner,
    get_command_runner,
)

from .conftest import posix_only


class TestGetCommandRunner:

    def test_posix(self):
        with patch('hookflow.runner.sys.platform', 'linux'):
            runner = get_command_runner()
        assert isinstance(runner, PosixCommandRunner)
        assert runner.shell_flag == '-c'

    def test_windows(self):
        with patch('hookflow.runner.sys.platform', 'win32'):
            runner = get_command_runner(kill_grace_period=1.0)
        assert isinstance(runner, WindowsCommandRunner)
        assert runner.shell == 'cmd.exe'
        assert runner.shell_flag == '/c'
        assert runner.kill_grace_period == 1.0


@posix_only
class TestPosixCommandRunner:

    @pytest.fixture
    def runner(self):
        return PosixCommandRunner(kill_grace_period=1.0)

    @pytest.mark.asyncio
    async def test_captures_stripped_output(self, runner):
        result = await runner.run('echo "  hello  "; echo oops >&2')

        assert result.success
        assert result.exit_code == 0
        assert result.stdout == 'hello'
        assert result.stderr == 'oops'
        assert result.execution_time >= 0

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, runner):
        result = await runner.run('exit 3')

        assert not result.success
        assert result.exit_code == 3

    @pytest.mark.asyncio
    async def test_cwd_and_env(self, runner, tmp_path):
        result = await runner.run('pwd; echo $GREETING', cwd=str(tmp_path),
                                  env={'GREETING': 'hi', 'PATH': '/usr/bin:/bin'})

        lines = result.stdout.splitlines()
        assert lines[0] == str(tmp_path.resolve())
        assert lines[1] == 'hi'

    @pytest.mark.asyncio
    async def test_timeout_terminates_quickly(self, runner):
        start = time.monotonic()

        with pytest.raises(CommandTimeoutError, match="timed out after 200ms"):
            await runner.run('sleep 5', timeout=200)

        assert time.monotonic() - start < 2.0

    @pytest.mark.asyncio
    async def test_timeout_kills_process_ignoring_sigterm(self):
        runner = PosixCommandRunner(kill_grace_period=0.3)
        start = time.monotonic()

        with pytest.raises(CommandTimeoutError):
            await runner.run("trap '' TERM; sleep 5", timeout=200)

        assert time.monotonic() - start < 3.0
