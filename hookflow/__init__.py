"""
hookflow: event-triggered workflow execution.

Binds lifecycle and tool events to declarative multi-step workflows:
- Event index and registration
- Trigger conditions, including custom expressions
- Sequential and parallel step execution with retries and timeouts
- Execution logging with retention
"""

from .engine import WorkflowEngine
from .events import EVENT_KINDS, ExecutionContext
from .executor import HookExecutor, StepExecutor
from .models import Workflow, Step, Trigger, WorkflowSettings, StepResult, WorkflowResult
from .parser import WorkflowParser
from .pipeline import PipelineRunner

__version__ = "0.1.0"

__all__ = [
    'WorkflowEngine',
    'EVENT_KINDS',
    'ExecutionContext',
    'HookExecutor',
    'StepExecutor',
    'PipelineRunner',
    'Workflow',
    'Step',
    'Trigger',
    'WorkflowSettings',
    'StepResult',
    'WorkflowResult',
    'WorkflowParser',
]
