"""
Subprocess execution for command steps.

A ``CommandRunner`` runs a shell command with a timeout. When the timeout
expires the process gets a graceful termination signal and, if it is still
alive after the grace period, a forced kill. One runner class exists per
platform; ``get_command_runner`` picks the right one.
"""

import asyncio
import logging
import os
import shutil
import signal
import sys
import time
from dataclasses import dataclass
from typing import Dict, Optional

from .errors import CommandTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_KILL_GRACE_PERIOD = 5.0  # seconds


@dataclass
class CommandResult:
    exit_code: int
    stdout: str
    stderr: str
    execution_time: int  # milliseconds

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class CommandRunner:
    """Run shell commands through the platform shell."""

    shell: str = '/bin/sh'
    shell_flag: str = '-c'

    def __init__(self, kill_grace_period: float = DEFAULT_KILL_GRACE_PERIOD):
        self.kill_grace_period = kill_grace_period

    def _spawn_kwargs(self) -> Dict:
        return {}

    def _terminate(self, process: asyncio.subprocess.Process):
        process.terminate()

    def _kill(self, process: asyncio.subprocess.Process):
        process.kill()

    async def run(self,
                  command: str,
                  cwd: Optional[str] = None,
                  env: Optional[Dict[str, str]] = None,
                  timeout: int = 30000) -> CommandResult:
        """Run a command and capture its output.

        Args:
            command: Shell command line.
            cwd: Working directory. Defaults to the current directory.
            env: Full environment for the child process.
            timeout: Timeout in milliseconds.

        Returns:
            CommandResult with the exit code and stripped output.

        Raises:
            CommandTimeoutError: If the command did not finish in time.
            OSError: If the process could not be started.
        """
        start = time.monotonic()

        process = await asyncio.create_subprocess_exec(
            self.shell, self.shell_flag, command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd or os.getcwd(),
            env=env,
            **self._spawn_kwargs()
        )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout / 1000)
        except asyncio.TimeoutError:
            await self._stop(process)
            raise CommandTimeoutError(timeout)
        except asyncio.CancelledError:
            await self._stop(process)
            raise

        return CommandResult(
            exit_code=process.returncode,
            stdout=stdout.decode('utf-8', errors='replace').strip(),
            stderr=stderr.decode('utf-8', errors='replace').strip(),
            execution_time=int((time.monotonic() - start) * 1000),
        )

    async def _stop(self, process: asyncio.subprocess.Process):
        """Terminate, then kill if the process ignores the signal."""
        if process.returncode is not None:
            return
        try:
            self._terminate(process)
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), self.kill_grace_period)
        except asyncio.TimeoutError:
            logger.warning(f"Process {process.pid} ignored SIGTERM, killing it")
            try:
                self._kill(process)
            except ProcessLookupError:
                return
            await process.wait()


class PosixCommandRunner(CommandRunner):
    """Runs commands with ``bash -c`` in their own process group."""

    shell_flag = '-c'

    def __init__(self, kill_grace_period: float = DEFAULT_KILL_GRACE_PERIOD):
        super().__init__(kill_grace_period)
        self.shell = shutil.which('bash') or '/bin/sh'

    def _spawn_kwargs(self) -> Dict:
        # A new session lets signals reach everything the shell started
        return {'start_new_session': True}

    def _signal_group(self, process, sig):
        try:
            os.killpg(os.getpgid(process.pid), sig)
        except ProcessLookupError:
            raise
        except OSError:
            process.send_signal(sig)

    def _terminate(self, process):
        self._signal_group(process, signal.SIGTERM)

    def _kill(self, process):
        self._signal_group(process, signal.SIGKILL)


class WindowsCommandRunner(CommandRunner):
    """Runs commands with ``cmd.exe /c``."""

    shell = 'cmd.exe'
    shell_flag = '/c'


def get_command_runner(kill_grace_period: float = DEFAULT_KILL_GRACE_PERIOD) -> CommandRunner:
    """Return the command runner for the current platform."""
    if sys.platform == 'win32':
        return WindowsCommandRunner(kill_grace_period)
    return PosixCommandRunner(kill_grace_period)
