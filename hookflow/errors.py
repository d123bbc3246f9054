"""
Exception hierarchy for hookflow.

Expected failures (a failing step, a condition that cannot be evaluated)
are returned as data. These exceptions cover malformed input and faults in
the engine's own bookkeeping.
"""


class HookflowError(Exception):
    """Base class for all hookflow errors."""
    pass


class WorkflowDefinitionError(HookflowError, ValueError):
    """Raised when a workflow record cannot be turned into a Workflow."""
    pass


class WorkflowNotFoundError(HookflowError, KeyError):
    """Raised when a workflow id is not registered."""

    def __init__(self, workflow_id):
        super().__init__(workflow_id)
        self.workflow_id = workflow_id

    def __str__(self):
        return f"Workflow not found: {self.workflow_id}"


class ConditionError(HookflowError):
    """Raised while evaluating a custom trigger expression."""
    pass


class CommandTimeoutError(HookflowError):
    """Raised when a command exceeds its timeout."""

    def __init__(self, timeout_ms):
        super().__init__(f"Command timed out after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class StoreError(HookflowError):
    """Raised when the storage layer fails."""
    pass
