"""
Process exit codes used by the hookflow CLI.
"""

from .errors import (
    HookflowError,
    WorkflowDefinitionError,
    WorkflowNotFoundError,
    StoreError,
)

SUCCESS = 0
GENERAL_ERROR = 1
USAGE_ERROR = 2
WORKFLOW_FAILED = 3
NOT_FOUND = 4
STORAGE_ERROR = 5
INTERRUPTED = 130


class CommandError(HookflowError):
    """An error raised by a CLI command with a specific exit code."""

    def __init__(self, message, exit_code=GENERAL_ERROR):
        super().__init__(message)
        self.exit_code = exit_code


def get_exit_code_for_exception(exc):
    """Map an exception to a process exit code."""
    if isinstance(exc, CommandError):
        return exc.exit_code
    if isinstance(exc, WorkflowNotFoundError):
        return NOT_FOUND
    if isinstance(exc, WorkflowDefinitionError):
        return USAGE_ERROR
    if isinstance(exc, StoreError):
        return STORAGE_ERROR
    if isinstance(exc, KeyboardInterrupt):
        return INTERRUPTED
    return GENERAL_ERROR
