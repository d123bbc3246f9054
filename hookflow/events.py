"""
Event kinds that can trigger workflows, and the per-dispatch execution
context handed to conditions and steps.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

# Events that can trigger workflows
EVENT_KINDS: List[str] = [
    'PreToolUse',
    'PostToolUse',
    'PreChatMessage',
    'PostChatMessage',
    'FileChange',
    'GitCommit',
    'ProjectLoad',
    'SessionStart',
    'SessionEnd',
    'Error',
]


def utc_timestamp() -> str:
    """ISO-8601 timestamp in UTC with millisecond precision."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


@dataclass
class ExecutionContext:
    """
    Everything a condition or step can see about the event being dispatched.

    A context is built once per dispatch and shared by every candidate
    workflow, so all workflows fired by one event see the same timestamp.
    """

    event: str
    data: Dict[str, Any] = field(default_factory=dict)
    project_path: Optional[str] = None
    timestamp: str = field(default_factory=utc_timestamp)

    def __post_init__(self):
        if self.data is None:
            self.data = {}

    @classmethod
    def create(cls, event: str, data: Optional[Dict[str, Any]] = None,
               project_path: Optional[str] = None) -> 'ExecutionContext':
        """
        Create a context stamped with the current time.

        Args:
            event: Event kind
            data: Event payload
            project_path: Project scope of the dispatch

        Returns:
            ExecutionContext instance
        """
        return cls(event=event, data=dict(data or {}), project_path=project_path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event': self.event,
            'data': self.data,
            'projectPath': self.project_path,
            'timestamp': self.timestamp,
        }
