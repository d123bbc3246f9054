import sys

import pytest

from hookflow.engine import WorkflowEngine
from hookflow.runner import CommandResult, CommandRunner
from hookflow.store import Database, WorkflowStore, ExecutionLogStore

posix_only = pytest.mark.skipif(sys.platform == 'win32', reason="uses POSIX shell commands")


class FakeCommandRunner(CommandRunner):
    """
    Command runner returning scripted outcomes instead of spawning processes.

    ``outcomes`` maps a command string to a list of results consumed in
    order; the last one repeats. A result may be an exception to raise.
    Unknown commands succeed and echo the command.
    """

    def __init__(self, outcomes=None):
        super().__init__()
        self.outcomes = outcomes or {}
        self.calls = []

    async def run(self, command, cwd=None, env=None, timeout=30000):
        self.calls.append({'command': command, 'cwd': cwd, 'env': env, 'timeout': timeout})
        scripted = self.outcomes.get(command)
        if not scripted:
            return CommandResult(exit_code=0, stdout=command, stderr='', execution_time=1)
        outcome = scripted.pop(0) if len(scripted) > 1 else scripted[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def ok(stdout='ok'):
    return CommandResult(exit_code=0, stdout=stdout, stderr='', execution_time=1)


def fail(stderr='boom', exit_code=1):
    return CommandResult(exit_code=exit_code, stdout='', stderr=stderr, execution_time=1)


def make_workflow(workflow_id='wf1', event='PostToolUse', steps=None, **overrides):
    """Stored-form workflow mapping with sensible defaults."""
    definition = {
        'id': workflow_id,
        'name': f'Workflow {workflow_id}',
        'trigger': {'event': event, 'condition': 'always'},
        'steps': steps if steps is not None else [
            {'id': 's1', 'name': 'First', 'type': 'command', 'command': 'echo one'},
        ],
        'settings': {},
        'enabled': True,
    }
    definition.update(overrides)
    return definition


@pytest.fixture
def db():
    database = Database(':memory:')
    yield database
    database.close()


@pytest.fixture
def fake_runner():
    return FakeCommandRunner()


@pytest.fixture
def engine(db, fake_runner):
    return WorkflowEngine(
        workflow_store=WorkflowStore(db),
        log_store=ExecutionLogStore(db),
        command_runner=fake_runner,
    )
