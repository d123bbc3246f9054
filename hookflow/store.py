"""
SQLite storage for workflow records and the execution log.

The ``workflows`` table holds definitions with their trigger, steps and
settings as JSON columns. ``workflow_logs`` is an append-only log written
after every dispatched workflow and swept by the retention cleanup.
"""

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List, Optional

from .errors import StoreError
from .models import Workflow, WorkflowResult

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS workflows (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    trigger TEXT NOT NULL,
    steps TEXT NOT NULL,
    settings TEXT,
    project_path TEXT,
    enabled INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS workflow_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    workflow_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    status TEXT NOT NULL,
    execution_time INTEGER,
    error_message TEXT,
    metadata TEXT,
    project_path TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_workflow_logs_workflow ON workflow_logs(workflow_id);
CREATE INDEX IF NOT EXISTS idx_workflow_logs_created ON workflow_logs(created_at);
"""

# Same format as SQLite's datetime('now') so string comparison orders correctly
SQLITE_TIME_FORMAT = '%Y-%m-%d %H:%M:%S'


def sqlite_now() -> str:
    return datetime.now(timezone.utc).strftime(SQLITE_TIME_FORMAT)


class Database:
    """A shared SQLite connection guarded by a lock."""

    def __init__(self, db_path: str = ':memory:'):
        """Open (and create if needed) the database.

        Args:
            db_path: Database file, or ':memory:'.
        """
        self.db_path = str(db_path)
        if self.db_path != ':memory:':
            Path(self.db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
            self.db_path = str(Path(self.db_path).expanduser())
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open database {self.db_path}: {e}")

    def execute(self, query: str, params=()) -> sqlite3.Cursor:
        with self._lock:
            try:
                cursor = self._conn.execute(query, params)
                self._conn.commit()
                return cursor
            except sqlite3.Error as e:
                self._conn.rollback()
                raise StoreError(str(e))

    def fetchall(self, query: str, params=()) -> List[Dict[str, Any]]:
        with self._lock:
            try:
                return [dict(row) for row in self._conn.execute(query, params).fetchall()]
            except sqlite3.Error as e:
                raise StoreError(str(e))

    def fetchone(self, query: str, params=()) -> Optional[Dict[str, Any]]:
        rows = self.fetchall(query, params)
        return rows[0] if rows else None

    def close(self):
        with self._lock:
            self._conn.close()


class WorkflowStore:
    """Workflow definitions persisted in the ``workflows`` table."""

    def __init__(self, db: Database):
        self.db = db

    def save(self, workflow: Workflow):
        """Insert or replace a workflow record."""
        data = workflow.to_dict()
        self.db.execute(
            """
            INSERT INTO workflows (id, name, description, trigger, steps, settings,
                                   project_path, enabled, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                description = excluded.description,
                trigger = excluded.trigger,
                steps = excluded.steps,
                settings = excluded.settings,
                project_path = excluded.project_path,
                enabled = excluded.enabled,
                updated_at = excluded.updated_at
            """,
            (
                workflow.id,
                workflow.name,
                workflow.description,
                json.dumps(data['trigger']),
                json.dumps(data['steps']),
                json.dumps(data['settings']),
                workflow.project_scope,
                1 if workflow.enabled else 0,
                sqlite_now(),
            ),
        )

    def set_enabled(self, workflow_id: str, enabled: bool) -> bool:
        cursor = self.db.execute(
            "UPDATE workflows SET enabled = ?, updated_at = ? WHERE id = ?",
            (1 if enabled else 0, sqlite_now(), workflow_id),
        )
        return cursor.rowcount > 0

    def delete(self, workflow_id: str) -> bool:
        cursor = self.db.execute("DELETE FROM workflows WHERE id = ?", (workflow_id,))
        return cursor.rowcount > 0

    def get(self, workflow_id: str) -> Optional[Dict[str, Any]]:
        """Raw record for one workflow, JSON columns still encoded."""
        return self.db.fetchone("SELECT * FROM workflows WHERE id = ?", (workflow_id,))

    def list(self, enabled_only: bool = False) -> List[Dict[str, Any]]:
        """Raw workflow records, oldest first."""
        query = "SELECT * FROM workflows"
        if enabled_only:
            query += " WHERE enabled = 1"
        query += " ORDER BY created_at, id"
        return self.db.fetchall(query)


@dataclass
class ExecutionLogEntry:
    workflow_id: str
    status: str
    execution_time: Optional[int]
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    project_path: Optional[str] = None
    event_type: str = 'execution'
    created_at: Optional[str] = None
    id: Optional[int] = None

    @classmethod
    def from_result(cls, result: WorkflowResult, context) -> 'ExecutionLogEntry':
        """Build the log entry for one dispatched workflow."""
        return cls(
            workflow_id=result.workflow_id,
            status='success' if result.success else 'error',
            execution_time=result.execution_time,
            error_message=result.error,
            metadata={
                'event': context.event,
                'stepResults': [sr.summary() for sr in result.step_results],
                'timestamp': context.timestamp,
            },
            project_path=context.project_path,
        )

    @classmethod
    def lifecycle(cls, workflow_id: str, event_type: str,
                  metadata: Dict[str, Any]) -> 'ExecutionLogEntry':
        """Entry recording a creation, update or deletion of a workflow."""
        return cls(
            workflow_id=workflow_id,
            status='success',
            execution_time=None,
            metadata=metadata,
            event_type=event_type,
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'ExecutionLogEntry':
        metadata = row.get('metadata')
        try:
            metadata = json.loads(metadata) if metadata else {}
        except ValueError:
            metadata = {}
        return cls(
            id=row.get('id'),
            workflow_id=row['workflow_id'],
            event_type=row['event_type'],
            status=row['status'],
            execution_time=row.get('execution_time'),
            error_message=row.get('error_message'),
            metadata=metadata,
            project_path=row.get('project_path'),
            created_at=row.get('created_at'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'workflow_id': self.workflow_id,
            'event_type': self.event_type,
            'status': self.status,
            'execution_time': self.execution_time,
            'error_message': self.error_message,
            'metadata': self.metadata,
            'project_path': self.project_path,
            'created_at': self.created_at,
        }


class ExecutionLogStore:
    """Append-only execution log in the ``workflow_logs`` table."""

    def __init__(self, db: Database):
        self.db = db

    def append(self, entry: ExecutionLogEntry) -> int:
        """Write an entry and return its row id."""
        cursor = self.db.execute(
            """
            INSERT INTO workflow_logs (workflow_id, event_type, status, execution_time,
                                       error_message, metadata, project_path, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.workflow_id,
                entry.event_type,
                entry.status,
                entry.execution_time,
                entry.error_message,
                json.dumps(entry.metadata, default=str),
                entry.project_path,
                entry.created_at or sqlite_now(),
            ),
        )
        entry.id = cursor.lastrowid
        return entry.id

    def list_for_workflow(self, workflow_id: str, limit: int = 50, offset: int = 0,
                          event_type: Optional[str] = None) -> List[ExecutionLogEntry]:
        """Most recent entries for a workflow first."""
        query = "SELECT * FROM workflow_logs WHERE workflow_id = ?"
        params: list = [workflow_id]
        if event_type:
            query += " AND event_type = ?"
            params.append(event_type)
        query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([int(limit), int(offset)])
        return [ExecutionLogEntry.from_row(row) for row in self.db.fetchall(query, params)]

    def count(self, workflow_id: Optional[str] = None,
              event_type: Optional[str] = None) -> int:
        query = "SELECT COUNT(*) AS total FROM workflow_logs WHERE 1 = 1"
        params: list = []
        if workflow_id is not None:
            query += " AND workflow_id = ?"
            params.append(workflow_id)
        if event_type:
            query += " AND event_type = ?"
            params.append(event_type)
        row = self.db.fetchone(query, params)
        return row['total'] if row else 0

    def statistics(self, days: int = 7) -> Dict[str, Dict[str, Any]]:
        """Per-workflow execution counts over the last ``days`` days."""
        rows = self.db.fetchall(
            """
            SELECT
                workflow_id,
                COUNT(id) AS execution_count,
                AVG(execution_time) AS avg_duration,
                SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS success_count,
                MAX(created_at) AS last_execution
            FROM workflow_logs
            WHERE event_type = 'execution'
              AND created_at >= datetime('now', ?)
            GROUP BY workflow_id
            """,
            (f'-{int(days)} days',),
        )
        return {row['workflow_id']: row for row in rows}

    def cleanup(self, retention_days: int = 30) -> int:
        """Delete entries older than ``retention_days`` days; return the count."""
        cursor = self.db.execute(
            "DELETE FROM workflow_logs WHERE created_at < datetime('now', ?)",
            (f'-{int(retention_days)} days',),
        )
        return cursor.rowcount
