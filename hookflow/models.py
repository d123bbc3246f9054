"""
Typed workflow records and execution results.

Workflow records arrive from storage as mappings using the camelCase keys
the web layer stores (``conditionParams``, ``stopOnError``, ...). Both those
and snake_case spellings are accepted; ``to_dict`` always emits camelCase.
"""

import json
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple

from .errors import WorkflowDefinitionError

DEFAULT_STEP_TIMEOUT = 30000  # milliseconds

STEP_TYPES = ('hook', 'command')

SKIPPED_STEP_ERROR = 'Skipped due to previous step failure'


def _pick(data: Dict[str, Any], *keys, default=None):
    """Return the first present key among ``keys``."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _as_bool(value, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


@dataclass(frozen=True)
class Trigger:
    """Event kind plus the condition deciding whether the workflow fires."""
    event: str
    condition: str = 'always'
    condition_params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Trigger':
        if not isinstance(data, dict):
            raise WorkflowDefinitionError("Trigger must be a mapping")
        event = data.get('event')
        if not event or not isinstance(event, str):
            raise WorkflowDefinitionError("Trigger missing required field 'event'")
        params = _pick(data, 'conditionParams', 'condition_params', default={})
        if not isinstance(params, dict):
            raise WorkflowDefinitionError("Trigger 'conditionParams' must be a mapping")
        return cls(
            event=event,
            condition=data.get('condition') or 'always',
            condition_params=dict(params),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event': self.event,
            'condition': self.condition,
            'conditionParams': dict(self.condition_params),
        }


@dataclass(frozen=True)
class Step:
    """One unit of work in a workflow's pipeline."""
    id: str
    type: str = 'command'
    name: Optional[str] = None
    command: Optional[str] = None
    hook_id: Optional[str] = None
    timeout: int = DEFAULT_STEP_TIMEOUT
    retries: int = 0
    continue_on_error: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any], index: int = 0) -> 'Step':
        """
        Build a step from its stored mapping.

        Args:
            data: Step mapping.
            index: Zero-based position, used for error messages and ids.

        Raises:
            WorkflowDefinitionError: If the step is malformed.
        """
        if not isinstance(data, dict):
            raise WorkflowDefinitionError(f"Step {index + 1} must be a mapping")

        step_type = data.get('type') or 'command'
        if step_type not in STEP_TYPES:
            raise WorkflowDefinitionError(
                f"Step {index + 1} has invalid type '{step_type}'"
            )

        hook_id = _pick(data, 'hookId', 'hook_id')
        command = data.get('command')
        if step_type == 'command' and not command:
            raise WorkflowDefinitionError(
                f"Command step {index + 1} missing required field 'command'"
            )

        try:
            timeout = int(_pick(data, 'timeout', default=DEFAULT_STEP_TIMEOUT))
            retries = int(_pick(data, 'retries', default=0))
        except (TypeError, ValueError):
            raise WorkflowDefinitionError(
                f"Step {index + 1} has a non-numeric timeout or retries"
            )
        if timeout <= 0:
            timeout = DEFAULT_STEP_TIMEOUT
        if retries < 0:
            raise WorkflowDefinitionError(f"Step {index + 1} has negative retries")

        return cls(
            id=str(data.get('id') or f"step_{index + 1}"),
            type=step_type,
            name=data.get('name'),
            command=command,
            hook_id=hook_id,
            timeout=timeout,
            retries=retries,
            continue_on_error=_as_bool(
                _pick(data, 'continueOnError', 'continue_on_error'), False
            ),
        )

    def display_name(self, number: int) -> str:
        """Name shown in results; ``number`` is the 1-based position."""
        return self.name or f"Step {number}"

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'type': self.type,
            'timeout': self.timeout,
            'retries': self.retries,
            'continueOnError': self.continue_on_error,
        }
        if self.name:
            result['name'] = self.name
        if self.command is not None:
            result['command'] = self.command
        if self.hook_id is not None:
            result['hookId'] = self.hook_id
        return result


@dataclass(frozen=True)
class WorkflowSettings:
    parallel: bool = False
    stop_on_error: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'WorkflowSettings':
        data = data or {}
        if not isinstance(data, dict):
            raise WorkflowDefinitionError("Workflow 'settings' must be a mapping")
        return cls(
            parallel=_as_bool(data.get('parallel'), False),
            stop_on_error=_as_bool(_pick(data, 'stopOnError', 'stop_on_error'), True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {'parallel': self.parallel, 'stopOnError': self.stop_on_error}


@dataclass(frozen=True)
class Workflow:
    """
    A named automation pipeline bound to a trigger event.

    Workflows are immutable; editing one means building a new record and
    registering it again under the same id.
    """
    id: str
    name: str
    trigger: Trigger
    steps: Tuple[Step, ...] = ()
    description: str = ''
    settings: WorkflowSettings = field(default_factory=WorkflowSettings)
    project_scope: Optional[str] = None
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any], workflow_id: Optional[str] = None) -> 'Workflow':
        """
        Build a workflow from a stored record.

        The JSON columns of a database row (``trigger``, ``steps``,
        ``settings``) may still be strings; they are decoded here.

        Raises:
            WorkflowDefinitionError: If the record is malformed.
        """
        if not isinstance(data, dict):
            raise WorkflowDefinitionError("Workflow must be a mapping")

        data = dict(data)
        for key in ('trigger', 'steps', 'settings'):
            if isinstance(data.get(key), str):
                try:
                    data[key] = json.loads(data[key])
                except ValueError as e:
                    raise WorkflowDefinitionError(f"Workflow '{key}' is not valid JSON: {e}")

        wf_id = workflow_id if workflow_id is not None else data.get('id')
        if wf_id is None or wf_id == '':
            raise WorkflowDefinitionError("Workflow missing required field 'id'")

        if 'trigger' not in data:
            raise WorkflowDefinitionError("Workflow missing required field 'trigger'")

        steps = data.get('steps') or []
        if not isinstance(steps, list):
            raise WorkflowDefinitionError("Workflow 'steps' must be a list")

        return cls(
            id=str(wf_id),
            name=data.get('name') or str(wf_id),
            description=data.get('description') or '',
            trigger=Trigger.from_dict(data['trigger']),
            steps=tuple(Step.from_dict(step, i) for i, step in enumerate(steps)),
            settings=WorkflowSettings.from_dict(data.get('settings')),
            project_scope=_pick(data, 'projectScope', 'project_scope',
                                'projectPath', 'project_path'),
            enabled=_as_bool(data.get('enabled'), True),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'trigger': self.trigger.to_dict(),
            'steps': [step.to_dict() for step in self.steps],
            'settings': self.settings.to_dict(),
            'projectPath': self.project_scope,
            'enabled': self.enabled,
        }


@dataclass
class StepResult:
    step_id: str
    step_name: str
    success: bool = False
    output: str = ''
    error: Optional[str] = None
    execution_time: int = 0  # milliseconds
    skipped: bool = False
    continue_on_error: bool = False

    @classmethod
    def skipped_for(cls, step: Step, number: int) -> 'StepResult':
        """Result recorded for a step that never ran."""
        return cls(
            step_id=step.id,
            step_name=step.display_name(number),
            success=False,
            skipped=True,
            error=SKIPPED_STEP_ERROR,
            continue_on_error=step.continue_on_error,
        )

    @property
    def blocking(self) -> bool:
        """True if this result fails the workflow."""
        return not self.success and not self.continue_on_error

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stepId': self.step_id,
            'stepName': self.step_name,
            'success': self.success,
            'output': self.output,
            'error': self.error,
            'executionTime': self.execution_time,
            'skipped': self.skipped,
            'continueOnError': self.continue_on_error,
        }

    def summary(self) -> Dict[str, Any]:
        """Compact form stored in the execution log."""
        return {
            'stepId': self.step_id,
            'stepName': self.step_name,
            'success': self.success,
            'executionTime': self.execution_time,
            'error': self.error,
        }


@dataclass
class WorkflowResult:
    workflow_id: Optional[str]
    workflow_name: Optional[str]
    success: bool = False
    step_results: List[StepResult] = field(default_factory=list)
    error: Optional[str] = None
    execution_time: int = 0  # milliseconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            'workflowId': self.workflow_id,
            'workflowName': self.workflow_name,
            'success': self.success,
            'stepResults': [sr.to_dict() for sr in self.step_results],
            'error': self.error,
            'executionTime': self.execution_time,
        }
