"""
Workflow definition loader for YAML and JSON files.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Any, List, Tuple

import yaml

from .errors import WorkflowDefinitionError
from .events import EVENT_KINDS
from .models import Workflow

logger = logging.getLogger(__name__)

WORKFLOW_SUFFIXES = ('.yaml', '.yml', '.json')


class WorkflowParser:
    """Read workflow definitions from files into Workflow records."""

    @staticmethod
    def read_definition(file_path: str) -> Dict[str, Any]:
        """Read the raw mapping stored in a workflow file.

        Args:
            file_path: Path to a ``.yaml``, ``.yml`` or ``.json`` file.

        Returns:
            The decoded mapping. A missing ``id`` defaults to the file stem.
        """
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Workflow file not found: {file_path}")

        with open(path, 'r') as f:
            try:
                if path.suffix == '.json':
                    definition = json.load(f)
                else:
                    definition = yaml.safe_load(f)
            except (ValueError, yaml.YAMLError) as e:
                raise WorkflowDefinitionError(f"Cannot parse {path.name}: {e}")

        if not isinstance(definition, dict):
            raise WorkflowDefinitionError(f"{path.name}: workflow must be a mapping")

        definition.setdefault('id', path.stem)
        return definition

    @staticmethod
    def load_workflow(file_path: str) -> Workflow:
        """Load one workflow file.

        Raises:
            FileNotFoundError: If the file does not exist.
            WorkflowDefinitionError: If the definition is malformed.
        """
        return Workflow.from_dict(WorkflowParser.read_definition(file_path))

    @staticmethod
    def load_directory(directory: str) -> List[Workflow]:
        """Load every workflow file in a directory, sorted by file name.

        Files that fail to load are logged and skipped.
        """
        workflows = []
        path = Path(directory).expanduser()
        if not path.is_dir():
            return workflows

        for workflow_file in sorted(path.iterdir()):
            if workflow_file.suffix not in WORKFLOW_SUFFIXES:
                continue
            try:
                workflows.append(WorkflowParser.load_workflow(str(workflow_file)))
            except (WorkflowDefinitionError, OSError) as e:
                logger.error(f"Failed to load {workflow_file}: {e}")

        return workflows

    @staticmethod
    def validate(workflow: Workflow) -> Tuple[bool, List[str]]:
        """Check a workflow for problems that would stop it from ever running.

        Returns:
            Tuple of (is_valid, messages).
        """
        errors = []

        if workflow.trigger.event not in EVENT_KINDS:
            errors.append(
                f"Unknown trigger event '{workflow.trigger.event}' "
                f"(expected one of: {', '.join(EVENT_KINDS)})"
            )

        if not workflow.steps:
            errors.append("Workflow has no steps")

        seen = set()
        for step in workflow.steps:
            if step.id in seen:
                errors.append(f"Duplicate step id '{step.id}'")
            seen.add(step.id)
            if step.type == 'hook' and not step.hook_id:
                errors.append(f"Hook step '{step.id}' missing required field 'hookId'")

        condition = workflow.trigger.condition
        params = workflow.trigger.condition_params
        required = {'file_type': 'extension', 'tool_name': 'tool', 'project_path': 'path'}
        if condition in required and not params.get(required[condition]):
            errors.append(
                f"Condition '{condition}' requires conditionParams.{required[condition]}"
            )

        return len(errors) == 0, errors

    @staticmethod
    def create_example_workflow(workflow_type: str = 'lint') -> str:
        """Generate example workflow YAML.

        Args:
            workflow_type: Type of example ('lint', 'commit', 'session').

        Returns:
            YAML string of example workflow.
        """
        examples = {
            'lint': {
                'id': 'lint-on-edit',
                'name': 'Lint edited Python files',
                'description': 'Run the linter whenever a Python file changes',
                'trigger': {
                    'event': 'FileChange',
                    'condition': 'file_type',
                    'conditionParams': {'extension': 'py'},
                },
                'steps': [
                    {
                        'id': 'lint',
                        'name': 'Lint',
                        'type': 'command',
                        'command': 'ruff check ${data.filePath}',
                        'timeout': 60000,
                    },
                ],
            },
            'commit': {
                'id': 'post-commit-checks',
                'name': 'Post-commit checks',
                'description': 'Run tests and notify after a commit',
                'trigger': {
                    'event': 'GitCommit',
                    'condition': 'custom',
                    'conditionParams': {
                        'code': "data.branch === 'main' && !includes(data.message, '[skip ci]')",
                    },
                },
                'settings': {'parallel': False, 'stopOnError': True},
                'steps': [
                    {
                        'id': 'test',
                        'name': 'Run tests',
                        'type': 'command',
                        'command': 'pytest -q',
                        'timeout': 300000,
                        'retries': 1,
                    },
                    {
                        'id': 'notify',
                        'name': 'Notify',
                        'type': 'command',
                        'command': 'echo "Commit ${data.sha} passed on ${data.branch}"',
                        'continueOnError': True,
                    },
                ],
            },
            'session': {
                'id': 'session-start',
                'name': 'Session warm-up',
                'description': 'Refresh project state when a session starts',
                'trigger': {'event': 'SessionStart', 'condition': 'always'},
                'settings': {'parallel': True},
                'steps': [
                    {'id': 'fetch', 'type': 'command', 'command': 'git fetch --quiet'},
                    {'id': 'status', 'type': 'command', 'command': 'git status --short'},
                ],
            },
        }

        workflow = examples.get(workflow_type, examples['lint'])
        return yaml.dump(workflow, default_flow_style=False, sort_keys=False)
