"""
Event-triggered workflow engine.

The engine keeps two collections: the table of registered workflows keyed by
id, and the event index mapping each event kind to the ids of the workflows
listening to it. ``process_event`` looks up the index, checks scope and
trigger conditions, runs the matching pipelines and logs every execution.
"""

import dataclasses
import logging
import threading
from typing import Dict, Any, List, Optional, Union

from .conditions import evaluate_condition
from .errors import WorkflowDefinitionError, WorkflowNotFoundError, HookflowError, StoreError
from .events import EVENT_KINDS, ExecutionContext
from .executor import HookExecutor, StepExecutor, MAX_BACKOFF
from .models import Workflow, WorkflowResult
from .parser import WorkflowParser
from .pipeline import PipelineRunner
from .runner import CommandRunner, get_command_runner, DEFAULT_KILL_GRACE_PERIOD
from .store import Database, WorkflowStore, ExecutionLogStore, ExecutionLogEntry

logger = logging.getLogger(__name__)

CONDITION_NOT_MET = 'Workflow trigger condition not met'


class WorkflowEngine:
    """Registry, dispatcher and runner for event-triggered workflows."""

    def __init__(self,
                 workflow_store: Optional[WorkflowStore] = None,
                 log_store: Optional[ExecutionLogStore] = None,
                 hook_executor: Optional[HookExecutor] = None,
                 command_runner: Optional[CommandRunner] = None,
                 max_backoff: int = MAX_BACKOFF):
        """Initialize workflow engine.

        Args:
            workflow_store: Source of workflow records for ``load_workflows``.
            log_store: Destination of execution log entries. Without one,
                executions are not logged.
            hook_executor: Collaborator running ``hook`` steps.
            command_runner: Runner for shell commands.
            max_backoff: Upper bound for retry delays in milliseconds.
        """
        self.workflow_store = workflow_store
        self.log_store = log_store
        self.step_executor = StepExecutor(
            hook_executor=hook_executor,
            command_runner=command_runner or get_command_runner(),
            max_backoff=max_backoff,
        )
        self.pipeline = PipelineRunner(self.step_executor)

        self._workflows: Dict[str, Workflow] = {}
        # event kind -> workflow ids, dict keys keep registration order
        self._listeners: Dict[str, Dict[str, None]] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config: Dict[str, Any],
                    hook_executor: Optional[HookExecutor] = None) -> 'WorkflowEngine':
        """Build an engine backed by the SQLite database named in ``config``."""
        db = Database(config['database']['path'])
        execution = config.get('execution', {})
        return cls(
            workflow_store=WorkflowStore(db),
            log_store=ExecutionLogStore(db),
            hook_executor=hook_executor,
            command_runner=get_command_runner(
                execution.get('kill_grace_period', DEFAULT_KILL_GRACE_PERIOD)
            ),
            max_backoff=execution.get('max_backoff', MAX_BACKOFF),
        )

    # Registration

    def load_workflows(self) -> int:
        """Register every enabled workflow from the workflow store.

        Returns:
            Number of workflows registered.
        """
        if self.workflow_store is None:
            return 0

        count = 0
        for record in self.workflow_store.list(enabled_only=True):
            if self.register_workflow(record['id'], record):
                count += 1

        logger.info(f"Initialized {count} workflows")
        return count

    def load_directory(self, directory: str) -> int:
        """Register every enabled workflow defined in a directory of files."""
        count = 0
        for workflow in WorkflowParser.load_directory(directory):
            if workflow.enabled and self.register_workflow(workflow.id, workflow):
                count += 1
        return count

    def register_workflow(self, workflow_id: str,
                          definition: Union[Workflow, Dict[str, Any]]) -> bool:
        """Register a workflow for event processing.

        Registering an id that is already registered replaces the previous
        workflow entirely, including its place in the event index.

        Args:
            workflow_id: Workflow identifier.
            definition: Workflow record or its stored mapping.

        Returns:
            True if registered, False if the definition was malformed.
        """
        try:
            if isinstance(definition, Workflow):
                workflow = definition
                if workflow.id != workflow_id:
                    workflow = dataclasses.replace(workflow, id=workflow_id)
            else:
                workflow = Workflow.from_dict(definition, workflow_id=workflow_id)
        except WorkflowDefinitionError as e:
            logger.error(f"Failed to register workflow {workflow_id}: {e}")
            return False

        with self._lock:
            self.unregister_workflow(workflow_id)
            self._workflows[workflow_id] = workflow
            self._listeners.setdefault(workflow.trigger.event, {})[workflow_id] = None

        logger.info(f"Registered workflow {workflow.name} for event {workflow.trigger.event}")
        return True

    def unregister_workflow(self, workflow_id: str) -> bool:
        """Remove a workflow from the table and the event index.

        Returns:
            True if the workflow was registered.
        """
        with self._lock:
            workflow = self._workflows.get(workflow_id)
            if workflow is None:
                return False

            event = workflow.trigger.event
            listeners = self._listeners.get(event)
            if listeners is not None:
                listeners.pop(workflow_id, None)
                if not listeners:
                    del self._listeners[event]

            del self._workflows[workflow_id]

        logger.info(f"Unregistered workflow {workflow.name}")
        return True

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        with self._lock:
            return self._workflows.get(workflow_id)

    def list_workflows(self) -> List[Workflow]:
        with self._lock:
            return list(self._workflows.values())

    def listeners(self, event: str) -> List[str]:
        """Ids of the workflows listening to ``event``, in registration order."""
        with self._lock:
            return list(self._listeners.get(event, {}))

    # Stored workflow lifecycle

    def _require_store(self) -> WorkflowStore:
        if self.workflow_store is None:
            raise StoreError("No workflow store configured")
        return self.workflow_store

    def save_workflow(self, workflow: Workflow) -> bool:
        """Store a workflow and bring the event index in line with it.

        An enabled workflow is (re)registered, a disabled one unregistered.
        A ``creation`` or ``update`` entry is appended to the log.

        Returns:
            True if the workflow was new, False if it replaced a stored one.
        """
        store = self._require_store()
        created = store.get(workflow.id) is None
        store.save(workflow)

        if workflow.enabled:
            self.register_workflow(workflow.id, workflow)
        else:
            self.unregister_workflow(workflow.id)

        if created:
            self._append_log(ExecutionLogEntry.lifecycle(workflow.id, 'creation', {
                'stepCount': len(workflow.steps),
                'trigger': workflow.trigger.event,
            }))
        else:
            self._append_log(ExecutionLogEntry.lifecycle(workflow.id, 'update', {
                'updates': ['name', 'description', 'trigger', 'steps', 'settings',
                            'project_path', 'enabled'],
            }))
        return created

    def set_workflow_enabled(self, workflow_id: str, enabled: bool) -> Workflow:
        """Enable or disable a stored workflow.

        Raises:
            WorkflowNotFoundError: If no stored workflow has this id.
        """
        store = self._require_store()
        record = store.get(workflow_id)
        if record is None:
            raise WorkflowNotFoundError(workflow_id)

        store.set_enabled(workflow_id, enabled)
        workflow = dataclasses.replace(Workflow.from_dict(record), enabled=enabled)
        if enabled:
            self.register_workflow(workflow_id, workflow)
        else:
            self.unregister_workflow(workflow_id)

        self._append_log(ExecutionLogEntry.lifecycle(
            workflow_id, 'update', {'updates': ['enabled']}
        ))
        return workflow

    def delete_workflow(self, workflow_id: str) -> str:
        """Unregister and delete a stored workflow.

        Returns:
            Name of the deleted workflow.

        Raises:
            WorkflowNotFoundError: If no stored workflow has this id.
        """
        store = self._require_store()
        record = store.get(workflow_id)
        if record is None:
            raise WorkflowNotFoundError(workflow_id)

        self.unregister_workflow(workflow_id)
        store.delete(workflow_id)
        self._append_log(ExecutionLogEntry.lifecycle(workflow_id, 'deletion', {
            'workflowName': record['name'],
        }))
        return record['name']

    # Dispatch

    async def process_event(self, event: str,
                            event_data: Optional[Dict[str, Any]] = None,
                            project_path: Optional[str] = None) -> List[WorkflowResult]:
        """Process an event and run every matching workflow.

        Args:
            event: Event kind, one of ``EVENT_KINDS``.
            event_data: Event payload.
            project_path: Project the event belongs to.

        Returns:
            One WorkflowResult per workflow that ran, in registration order.
        """
        results = []

        with self._lock:
            candidates = [
                (workflow_id, self._workflows.get(workflow_id))
                for workflow_id in self._listeners.get(event, {})
            ]
        if not candidates:
            return results

        context = ExecutionContext.create(event, event_data, project_path)

        for workflow_id, workflow in candidates:
            if workflow is None:
                logger.warning(f"Event index references unknown workflow {workflow_id}")
                continue
            if not workflow.enabled:
                continue

            # Unscoped workflows match every project
            if workflow.project_scope and project_path and workflow.project_scope != project_path:
                continue

            if not evaluate_condition(workflow.trigger, context):
                logger.debug(f"Workflow {workflow.name} condition not met for {event}")
                continue

            try:
                result = await self.execute_workflow(workflow, context)
            except Exception as e:
                logger.error(f"Error processing workflow {workflow_id} for event {event}: {e}",
                             exc_info=True)
                continue

            results.append(result)
            self._log_execution(result, context)

        logger.info(f"Event {event} dispatched to {len(results)} workflow(s)")
        return results

    async def execute_workflow(self, workflow: Workflow, context: ExecutionContext) -> WorkflowResult:
        """Run a workflow's pipeline for an already-built context."""
        logger.info(f"Executing workflow {workflow.name} for event {context.event}")
        result = await self.pipeline.run(workflow, context)
        if result.success:
            logger.info(f"Workflow {workflow.name} succeeded in {result.execution_time}ms")
        else:
            logger.warning(f"Workflow {workflow.name} failed: {result.error}")
        return result

    async def test_workflow(self,
                            workflow: Union[str, Workflow, Dict[str, Any]],
                            test_context: Optional[Dict[str, Any]] = None) -> WorkflowResult:
        """Run a workflow against synthetic event data without logging it.

        Args:
            workflow: Registered workflow id, or a definition to run directly.
            test_context: Mapping with ``event`` (or ``trigger.event``),
                ``data`` and ``projectPath``.

        Returns:
            WorkflowResult. If the trigger condition does not hold, a failed
            result with no step results.

        Raises:
            WorkflowNotFoundError: If an id is given and not registered.
            WorkflowDefinitionError: If a malformed definition is given.
        """
        if isinstance(workflow, str):
            found = self.get_workflow(workflow)
            if found is None:
                raise WorkflowNotFoundError(workflow)
            workflow = found
        elif not isinstance(workflow, Workflow):
            workflow = Workflow.from_dict(workflow, workflow_id=workflow.get('id') or 'test')

        test_context = test_context or {}
        event = (test_context.get('trigger') or {}).get('event') or test_context.get('event')
        context = ExecutionContext.create(
            event or workflow.trigger.event,
            test_context.get('data'),
            test_context.get('projectPath', test_context.get('project_path')),
        )

        if not evaluate_condition(workflow.trigger, context):
            return WorkflowResult(
                workflow_id=workflow.id,
                workflow_name=workflow.name,
                success=False,
                error=CONDITION_NOT_MET,
            )

        return await self.execute_workflow(workflow, context)

    # Execution log

    def _log_execution(self, result: WorkflowResult, context: ExecutionContext):
        self._append_log(ExecutionLogEntry.from_result(result, context))

    def _append_log(self, entry: ExecutionLogEntry):
        if self.log_store is None:
            return
        try:
            self.log_store.append(entry)
        except Exception as e:
            logger.error(f"Failed to log workflow {entry.event_type}: {e}")

    def get_available_events(self) -> List[str]:
        return list(EVENT_KINDS)

    def get_execution_statistics(self, days: int = 7) -> List[Dict[str, Any]]:
        """Execution counts per workflow over the last ``days`` days.

        Every known workflow appears, including those that never ran.
        Rows are ordered by execution count, busiest first.
        """
        stats = self.log_store.statistics(days) if self.log_store else {}

        known: Dict[str, Dict[str, Any]] = {}
        if self.workflow_store is not None:
            for record in self.workflow_store.list():
                known[record['id']] = {'name': record['name'], 'enabled': bool(record['enabled'])}
        for workflow in self.list_workflows():
            known.setdefault(workflow.id, {'name': workflow.name, 'enabled': workflow.enabled})
        for workflow_id in stats:
            known.setdefault(workflow_id, {'name': workflow_id, 'enabled': False})

        rows = []
        for workflow_id, info in known.items():
            row = stats.get(workflow_id, {})
            rows.append({
                'workflow_id': workflow_id,
                'name': info['name'],
                'enabled': info['enabled'],
                'execution_count': row.get('execution_count', 0),
                'avg_duration': row.get('avg_duration'),
                'success_count': row.get('success_count', 0),
                'last_execution': row.get('last_execution'),
            })

        rows.sort(key=lambda r: r['execution_count'], reverse=True)
        return rows

    def get_workflow_logs(self, workflow_id: str, limit: int = 50, offset: int = 0,
                          event_type: Optional[str] = None) -> List[ExecutionLogEntry]:
        if self.log_store is None:
            return []
        return self.log_store.list_for_workflow(workflow_id, limit, offset, event_type)

    def count_workflow_logs(self, workflow_id: str, event_type: Optional[str] = None) -> int:
        if self.log_store is None:
            return 0
        return self.log_store.count(workflow_id, event_type)

    def cleanup_old_logs(self, retention_days: int = 30) -> int:
        """Delete execution log entries older than ``retention_days`` days.

        Returns:
            Number of entries deleted, 0 if the sweep failed.
        """
        if self.log_store is None:
            return 0
        try:
            deleted = self.log_store.cleanup(retention_days)
        except HookflowError as e:
            logger.error(f"Failed to cleanup old workflow logs: {e}")
            return 0
        logger.info(f"Cleaned up {deleted} old workflow logs")
        return deleted
