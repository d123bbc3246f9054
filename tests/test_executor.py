"""
Tests for step execution: interpolation, hooks, retries and backoff.
"""

import json
import time
from unittest.mock import patch, AsyncMock, MagicMock

import pytest

from hookflow.errors import CommandTimeoutError
from hookflow.events import ExecutionContext
from hookflow.executor import (
    StepExecutor,
    HookExecutor,
    format_value,
    interpolate_command,
    build_environment,
    backoff_delay,
)
from hookflow.models import Step

from .conftest import FakeCommandRunner, ok, fail, posix_only


@pytest.fixture
def context():
    return ExecutionContext(
        event='FileChange',
        data={'filePath': 'src/app.py', 'count': 3, 'flag': False},
        project_path='/work/app',
        timestamp='2026-03-01T12:00:00.000Z',
    )


def command_step(command='echo hi', **kwargs):
    return Step(id=kwargs.pop('id', 's1'), type='command', command=command, **kwargs)


class TestInterpolation:

    def test_context_placeholders(self, context):
        text = interpolate_command('${event} ${projectPath} ${timestamp}', context)
        assert text == 'FileChange /work/app 2026-03-01T12:00:00.000Z'

    def test_data_placeholders(self, context):
        text = interpolate_command('lint ${data.filePath} x${data.count} [${data.flag}]', context)
        assert text == 'lint src/app.py x3 []'

    def test_data_values_render_like_command_line_text(self):
        context = ExecutionContext(event='Error', timestamp='t', data={
            'passed': True,
            'failed': False,
            'files': ['a.py', 'b.py'],
            'meta': {'k': 1},
            'ratio': 2.0,
            'half': 0.5,
        })
        text = interpolate_command(
            'x=${data.passed} y=${data.failed} f=${data.files} m=${data.meta} '
            'r=${data.ratio} h=${data.half}',
            context, {},
        )
        assert text == 'x=true y= f=["a.py", "b.py"] m={"k": 1} r=2 h=0.5'

    @pytest.mark.parametrize("value,expected", [
        (None, ''), (0, ''), ('', ''), (True, 'true'), (7, '7'), ('abc', 'abc'),
    ])
    def test_format_value(self, value, expected):
        assert format_value(value) == expected

    def test_absent_data_key_becomes_empty(self, context):
        assert interpolate_command('[${data.nothing}]', context) == '[]'

    def test_missing_project_path(self):
        context = ExecutionContext(event='Error', timestamp='t')
        assert interpolate_command('cd ${projectPath}', context) == 'cd '

    def test_environment_variables(self, context):
        environ = {'HOME': '/home/me', 'EDITOR': 'vim'}
        text = interpolate_command('$HOME $EDITOR $UNSET_THING $lower', context, environ)
        assert text == '/home/me vim $UNSET_THING $lower'

    def test_build_environment(self, context):
        env = build_environment(context, {'PATH': '/bin'})

        assert env['PATH'] == '/bin'
        assert env['WORKFLOW_EVENT'] == 'FileChange'
        assert env['WORKFLOW_PROJECT_PATH'] == '/work/app'
        assert env['WORKFLOW_TIMESTAMP'] == '2026-03-01T12:00:00.000Z'
        assert json.loads(env['WORKFLOW_DATA'])['filePath'] == 'src/app.py'


class TestBackoff:

    @pytest.mark.parametrize("attempt,expected", [
        (1, 1000), (2, 2000), (3, 4000), (4, 8000), (5, 10000), (9, 10000),
    ])
    def test_exponential_and_capped(self, attempt, expected):
        assert backoff_delay(attempt) == expected


class TestCommandSteps:

    @pytest.mark.asyncio
    async def test_success(self, context):
        runner = FakeCommandRunner()
        executor = StepExecutor(command_runner=runner)

        result = await executor.execute(command_step('echo ${data.filePath}', timeout=1234),
                                        context, 1)

        assert result.success
        assert result.output == 'echo src/app.py'
        assert result.error is None
        assert result.step_name == 'Step 1'
        assert runner.calls[0]['cwd'] == '/work/app'
        assert runner.calls[0]['timeout'] == 1234
        assert runner.calls[0]['env']['WORKFLOW_EVENT'] == 'FileChange'

    @pytest.mark.asyncio
    async def test_failure_reports_stderr(self, context):
        runner = FakeCommandRunner({'false': [fail('bad thing')]})
        result = await StepExecutor(command_runner=runner).execute(command_step('false'), context, 2)

        assert not result.success
        assert result.error == 'bad thing'

    @pytest.mark.asyncio
    async def test_failure_without_stderr(self, context):
        runner = FakeCommandRunner({'false': [fail('', exit_code=2)]})
        result = await StepExecutor(command_runner=runner).execute(command_step('false'), context, 1)

        assert result.error == 'Command exited with code 2'

    @pytest.mark.asyncio
    async def test_timeout_is_failed_attempt(self, context):
        runner = FakeCommandRunner({'slow': [CommandTimeoutError(200)]})
        result = await StepExecutor(command_runner=runner).execute(command_step('slow'), context, 1)

        assert not result.success
        assert result.error == 'Command timed out after 200ms'

    @pytest.mark.asyncio
    async def test_continue_on_error_echoed(self, context):
        runner = FakeCommandRunner({'false': [fail()]})
        step = command_step('false', continue_on_error=True)
        result = await StepExecutor(command_runner=runner).execute(step, context, 1)

        assert result.continue_on_error is True


class TestRetries:

    @pytest.mark.asyncio
    async def test_retries_until_success(self, context):
        runner = FakeCommandRunner({'flaky': [fail('1'), fail('2'), ok('done')]})
        executor = StepExecutor(command_runner=runner)

        with patch('hookflow.executor.asyncio.sleep', new_callable=AsyncMock) as sleep:
            result = await executor.execute(command_step('flaky', retries=2), context, 1)

        assert result.success
        assert result.error is None
        assert result.output == 'done'
        assert len(runner.calls) == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_all_attempts_fail_keeps_last_error(self, context):
        runner = FakeCommandRunner({'bad': [fail('first'), fail('second'), fail('third')]})
        executor = StepExecutor(command_runner=runner)

        with patch('hookflow.executor.asyncio.sleep', new_callable=AsyncMock):
            result = await executor.execute(command_step('bad', retries=2), context, 1)

        assert not result.success
        assert result.error == 'third'
        assert len(runner.calls) == 3

    @pytest.mark.asyncio
    async def test_no_retry_after_success(self, context):
        runner = FakeCommandRunner()
        executor = StepExecutor(command_runner=runner)

        with patch('hookflow.executor.asyncio.sleep', new_callable=AsyncMock) as sleep:
            await executor.execute(command_step('echo', retries=5), context, 1)

        assert len(runner.calls) == 1
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_max_backoff_caps_delay(self, context):
        runner = FakeCommandRunner({'bad': [fail()]})
        executor = StepExecutor(command_runner=runner, max_backoff=1500)

        with patch('hookflow.executor.asyncio.sleep', new_callable=AsyncMock) as sleep:
            await executor.execute(command_step('bad', retries=3), context, 1)

        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 1.5, 1.5]

    @pytest.mark.asyncio
    async def test_backoff_elapsed_time(self, context):
        runner = FakeCommandRunner({'flaky': [fail(), fail(), ok()]})
        executor = StepExecutor(command_runner=runner)
        start = time.monotonic()

        result = await executor.execute(command_step('flaky', retries=2), context, 1)

        elapsed = time.monotonic() - start
        assert result.success
        assert elapsed >= 2.9
        assert result.execution_time >= 2900


class TestHookSteps:

    @pytest.mark.asyncio
    async def test_delegates_to_hook_executor(self, context):
        hooks = MagicMock(spec=HookExecutor)
        hooks.test_hook.return_value = {'success': True, 'output': 'formatted', 'executionTime': 5}
        step = Step(id='h', type='hook', hook_id='fmt', name='Format')

        result = await StepExecutor(hook_executor=hooks, command_runner=FakeCommandRunner()) \
            .execute(step, context, 1)

        assert result.success
        assert result.output == 'formatted'
        assert result.step_name == 'Format'
        hooks.test_hook.assert_called_once_with('fmt', {
            'event': 'FileChange',
            'data': context.data,
            'projectPath': '/work/app',
        })

    @pytest.mark.asyncio
    async def test_async_hook_executor(self, context):
        class AsyncHooks(HookExecutor):
            async def test_hook(self, hook_id, payload):
                return {'success': False, 'error': f'{hook_id} rejected'}

        step = Step(id='h', type='hook', hook_id='guard')
        result = await StepExecutor(hook_executor=AsyncHooks(),
                                    command_runner=FakeCommandRunner()).execute(step, context, 1)

        assert not result.success
        assert result.error == 'guard rejected'

    @pytest.mark.asyncio
    async def test_raising_hook_executor(self, context):
        hooks = MagicMock(spec=HookExecutor)
        hooks.test_hook.side_effect = RuntimeError('hook crashed')
        step = Step(id='h', type='hook', hook_id='x')

        result = await StepExecutor(hook_executor=hooks,
                                    command_runner=FakeCommandRunner()).execute(step, context, 1)

        assert not result.success
        assert result.error == 'Hook execution failed: hook crashed'

    @pytest.mark.asyncio
    async def test_without_hook_executor_falls_back_to_command(self, context):
        runner = FakeCommandRunner()
        step = Step(id='h', type='hook', hook_id='fmt')

        result = await StepExecutor(command_runner=runner).execute(step, context, 1)

        assert result.success
        assert runner.calls[0]['command'] == 'echo "Hook fmt not available"'

    @pytest.mark.asyncio
    async def test_fallback_uses_step_command(self, context):
        runner = FakeCommandRunner()
        step = Step(id='h', type='hook', hook_id='fmt', command='black .')

        await StepExecutor(command_runner=runner).execute(step, context, 1)

        assert runner.calls[0]['command'] == 'black .'


@posix_only
class TestRealCommands:

    @pytest.mark.asyncio
    async def test_step_with_timeout_fails_fast(self, tmp_path):
        context = ExecutionContext(event='Error', project_path=str(tmp_path), timestamp='t')
        start = time.monotonic()

        result = await StepExecutor().execute(command_step('sleep 5', timeout=200), context, 1)

        assert not result.success
        assert 'timed out after 200ms' in result.error
        assert time.monotonic() - start < 2.0

    @pytest.mark.asyncio
    async def test_step_sees_workflow_environment(self, tmp_path):
        context = ExecutionContext(event='GitCommit', data={'sha': 'abc'},
                                   project_path=str(tmp_path), timestamp='t')

        result = await StepExecutor().execute(
            command_step('echo "$WORKFLOW_EVENT ${data.sha}"; pwd'), context, 1)

        assert result.success
        assert result.output.splitlines() == ['GitCommit abc', str(tmp_path.resolve())]


class TestIncompleteSteps:

    @pytest.mark.asyncio
    async def test_hook_step_without_hook_id_or_command_fails(self, context):
        runner = FakeCommandRunner()
        step = Step(id='h', type='hook', name='Orphan')

        result = await StepExecutor(command_runner=runner).execute(step, context, 1)

        assert not result.success
        assert 'missing hookId' in result.error
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_hook_step_without_hook_id_runs_its_command(self, context):
        runner = FakeCommandRunner()
        step = Step(id='h', type='hook', command='make fmt')

        result = await StepExecutor(command_runner=runner).execute(step, context, 1)

        assert result.success
        assert runner.calls[0]['command'] == 'make fmt'
