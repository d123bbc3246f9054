"""
Step execution: hook delegation, shell commands and retry with backoff.
"""

import asyncio
import inspect
import json
import logging
import os
import re
import time
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from .events import ExecutionContext
from .models import Step, StepResult
from .runner import CommandRunner, get_command_runner

logger = logging.getLogger(__name__)

BASE_BACKOFF = 1000  # milliseconds
MAX_BACKOFF = 10000  # milliseconds

_DATA_PLACEHOLDER = re.compile(r'\$\{data\.([^}]+)\}')
_ENV_VAR = re.compile(r'\$([A-Z_][A-Z0-9_]*)')


class HookExecutor(ABC):
    """
    Runs externally defined hooks referenced by id from ``hook`` steps.
    """

    @abstractmethod
    def test_hook(self, hook_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Execute a hook.

        Args:
            hook_id: Hook identifier
            payload: ``{'event', 'data', 'projectPath'}`` of the dispatch

        Returns:
            Mapping with ``success`` and optionally ``output``, ``error`` and
            ``executionTime``. Implementations may also be coroutines.
        """
        pass


def format_value(value) -> str:
    """
    Render an event data value for a command line.

    Absent and falsy values render as an empty string. Booleans are
    lowercase, containers are JSON and integral floats drop the fraction.
    """
    if not value:
        return ''
    if value is True:
        return 'true'
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def interpolate_command(command: str, context: ExecutionContext,
                        environ: Optional[Dict[str, str]] = None) -> str:
    """
    Substitute placeholders in a command template.

    ``${event}``, ``${projectPath}`` and ``${timestamp}`` come from the
    context, ``${data.KEY}`` from the event payload, and bare ``$NAME``
    references from the environment when the variable is set.
    """
    environ = os.environ if environ is None else environ

    text = command.replace('${event}', context.event or '')
    text = text.replace('${projectPath}', context.project_path or '')
    text = text.replace('${timestamp}', context.timestamp or '')

    data = context.data or {}

    def data_value(match):
        return format_value(data.get(match.group(1)))

    text = _DATA_PLACEHOLDER.sub(data_value, text)

    def env_value(match):
        return environ.get(match.group(1), match.group(0))

    return _ENV_VAR.sub(env_value, text)


def build_environment(context: ExecutionContext,
                      environ: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Parent environment plus the WORKFLOW_* variables of the dispatch."""
    env = dict(os.environ if environ is None else environ)
    env.update({
        'WORKFLOW_EVENT': context.event or '',
        'WORKFLOW_PROJECT_PATH': context.project_path or '',
        'WORKFLOW_TIMESTAMP': context.timestamp or '',
        'WORKFLOW_DATA': json.dumps(context.data or {}, default=str),
    })
    return env


def backoff_delay(attempt: int, max_backoff: int = MAX_BACKOFF) -> int:
    """Delay in milliseconds before retrying after ``attempt`` failures."""
    return min(BASE_BACKOFF * 2 ** (attempt - 1), max_backoff)


class StepExecutor:
    """Execute a single workflow step with retries."""

    def __init__(self,
                 hook_executor: Optional[HookExecutor] = None,
                 command_runner: Optional[CommandRunner] = None,
                 max_backoff: int = MAX_BACKOFF):
        """Initialize step executor.

        Args:
            hook_executor: Collaborator running ``hook`` steps.
            command_runner: Runner for shell commands. Defaults to the
                platform runner.
            max_backoff: Upper bound for the retry delay in milliseconds.
        """
        self.hook_executor = hook_executor
        self.command_runner = command_runner or get_command_runner()
        self.max_backoff = max_backoff

    async def execute(self, step: Step, context: ExecutionContext, number: int) -> StepResult:
        """Run a step, retrying failed attempts with exponential backoff.

        Args:
            step: Step to run.
            context: Execution context of the dispatch.
            number: 1-based position of the step in its workflow.

        Returns:
            StepResult covering all attempts.
        """
        start = time.monotonic()
        max_attempts = step.retries + 1
        result = self._result(step, number)
        last_error = None

        attempt = 0
        while attempt < max_attempts:
            try:
                result = await self._attempt(step, context, number)
                if result.success:
                    break
                last_error = result.error
            except Exception as e:
                result = self._result(step, number)
                last_error = str(e)

            attempt += 1
            if attempt < max_attempts:
                delay = backoff_delay(attempt, self.max_backoff)
                logger.info(
                    f"Step {step.display_name(number)} failed "
                    f"(attempt {attempt}/{max_attempts}), retrying in {delay}ms"
                )
                await asyncio.sleep(delay / 1000)

        if not result.success:
            result.error = last_error or 'Step execution failed'
        result.execution_time = int((time.monotonic() - start) * 1000)
        return result

    async def _attempt(self, step: Step, context: ExecutionContext, number: int) -> StepResult:
        if step.type == 'hook' and step.hook_id:
            return await self._execute_hook(step, context, number)
        if not step.command:
            result = self._result(step, number)
            result.error = f"Step {result.step_name} has no command and is missing hookId"
            return result
        return await self._execute_command(step, step.command, context, number)

    async def _execute_hook(self, step: Step, context: ExecutionContext, number: int) -> StepResult:
        if self.hook_executor is None:
            command = step.command or f'echo "Hook {step.hook_id} not available"'
            return await self._execute_command(step, command, context, number)

        result = self._result(step, number)
        try:
            hook_result = self.hook_executor.test_hook(step.hook_id, {
                'event': context.event,
                'data': context.data,
                'projectPath': context.project_path,
            })
            if inspect.isawaitable(hook_result):
                hook_result = await hook_result
        except Exception as e:
            result.error = f"Hook execution failed: {e}"
            return result

        hook_result = hook_result or {}
        result.success = bool(hook_result.get('success'))
        result.output = hook_result.get('output') or ''
        result.error = hook_result.get('error')
        result.execution_time = hook_result.get('executionTime') or 0
        return result

    async def _execute_command(self, step: Step, command: str,
                               context: ExecutionContext, number: int) -> StepResult:
        result = self._result(step, number)
        interpolated = interpolate_command(command, context)
        logger.debug(f"Running step {result.step_name}: {interpolated}")

        outcome = await self.command_runner.run(
            interpolated,
            cwd=context.project_path or os.getcwd(),
            env=build_environment(context),
            timeout=step.timeout,
        )

        result.success = outcome.success
        result.output = outcome.stdout
        result.execution_time = outcome.execution_time
        if not outcome.success:
            result.error = outcome.stderr or f"Command exited with code {outcome.exit_code}"
        return result

    @staticmethod
    def _result(step: Step, number: int) -> StepResult:
        return StepResult(
            step_id=step.id,
            step_name=step.display_name(number),
            continue_on_error=step.continue_on_error,
        )
