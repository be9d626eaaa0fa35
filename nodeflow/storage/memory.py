"""
In-Memory Storage for the Workflow Engine.

Stores serialized workflow definitions and run records. Executors of
runs in progress are tracked so that pause, resume and cancel commands
can reach them. Can be replaced with a database implementation.
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime
import asyncio

from nodeflow.engine.executor import Executor, WorkflowRunResult


@dataclass
class StoredWorkflow:
    """A stored workflow definition in its persisted JSON form."""
    workflow_id: str
    name: str
    definition: Dict[str, Any]
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "name": self.name,
            "definition": self.definition,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class StoredRun:
    """A stored workflow run."""
    run_id: str
    workflow_id: str
    status: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    current_node: Optional[str] = None
    execution_log: List[Dict[str, Any]] = field(default_factory=list)
    results: Dict[str, Any] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    node_statuses: Dict[str, str] = field(default_factory=dict)
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    total_duration_ms: Optional[float] = None

    @property
    def is_finished(self) -> bool:
        return self.status in ("completed", "error", "cancelled")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "workflow_id": self.workflow_id,
            "status": self.status,
            "metadata": self.metadata,
            "current_node": self.current_node,
            "execution_log": self.execution_log,
            "results": self.results,
            "errors": self.errors,
            "skipped": self.skipped,
            "node_statuses": self.node_statuses,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_duration_ms": self.total_duration_ms,
        }


class WorkflowStorage:
    """
    Async-safe in-memory storage for workflow definitions.
    """

    def __init__(self):
        self._workflows: Dict[str, StoredWorkflow] = {}
        self._lock = asyncio.Lock()

    async def save(self, workflow_id: str, name: str, definition: Dict[str, Any]) -> StoredWorkflow:
        """
        Save a workflow definition, replacing any existing one.

        Args:
            workflow_id: Unique workflow identifier
            name: Workflow name
            definition: Serialized workflow

        Returns:
            The stored workflow
        """
        async with self._lock:
            existing = self._workflows.get(workflow_id)
            stored = StoredWorkflow(workflow_id=workflow_id, name=name, definition=definition)
            if existing is not None:
                stored.created_at = existing.created_at
            self._workflows[workflow_id] = stored
            return stored

    async def get(self, workflow_id: str) -> Optional[StoredWorkflow]:
        async with self._lock:
            return self._workflows.get(workflow_id)

    async def delete(self, workflow_id: str) -> bool:
        async with self._lock:
            if workflow_id in self._workflows:
                del self._workflows[workflow_id]
                return True
            return False

    async def list_all(self) -> List[StoredWorkflow]:
        async with self._lock:
            return list(self._workflows.values())

    async def exists(self, workflow_id: str) -> bool:
        async with self._lock:
            return workflow_id in self._workflows

    def __len__(self) -> int:
        return len(self._workflows)


class RunStorage:
    """
    Async-safe in-memory storage for workflow runs.

    Run records are updated step by step while the run executes, so
    background runs can be polled.
    """

    def __init__(self):
        self._runs: Dict[str, StoredRun] = {}
        self._executors: Dict[str, Executor] = {}
        self._lock = asyncio.Lock()

    async def create(
        self,
        run_id: str,
        workflow_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        executor: Optional[Executor] = None,
    ) -> StoredRun:
        """
        Create a new run record.

        Args:
            run_id: Unique run identifier
            workflow_id: Workflow being run
            metadata: Run metadata
            executor: Executor driving the run, kept until the run finishes

        Returns:
            The stored run
        """
        async with self._lock:
            stored = StoredRun(
                run_id=run_id,
                workflow_id=workflow_id,
                status="pending",
                metadata=dict(metadata or {}),
            )
            self._runs[run_id] = stored
            if executor is not None:
                self._executors[run_id] = executor
            return stored

    async def get(self, run_id: str) -> Optional[StoredRun]:
        async with self._lock:
            return self._runs.get(run_id)

    def get_executor(self, run_id: str) -> Optional[Executor]:
        """Executor of a run that has not finished yet."""
        return self._executors.get(run_id)

    async def add_log_entry(self, run_id: str, entry: Dict[str, Any]) -> Optional[StoredRun]:
        """Record a finished (or skipped) node."""
        async with self._lock:
            stored = self._runs.get(run_id)
            if stored is None:
                return None
            stored.execution_log.append(entry)
            stored.current_node = entry.get("node_id")
            if not stored.is_finished:
                stored.status = "running"
            return stored

    async def set_status(self, run_id: str, status: str) -> Optional[StoredRun]:
        async with self._lock:
            stored = self._runs.get(run_id)
            if stored is None or stored.is_finished:
                return stored
            stored.status = status
            return stored

    async def complete(self, run_id: str, result: WorkflowRunResult) -> Optional[StoredRun]:
        """Store the outcome of a finished run."""
        async with self._lock:
            self._executors.pop(run_id, None)
            stored = self._runs.get(run_id)
            if stored is None:
                return None
            data = result.to_dict()
            stored.status = data["status"]
            stored.results = data["results"]
            stored.errors = data["errors"]
            stored.skipped = data["skipped"]
            stored.node_statuses = data["node_statuses"]
            stored.execution_log = data["execution_log"]
            stored.current_node = None
            stored.completed_at = result.completed_at or datetime.now()
            stored.total_duration_ms = result.total_duration_ms
            return stored

    async def fail(self, run_id: str, error: str) -> Optional[StoredRun]:
        """Mark a run as failed outside of the engine (e.g. it could not be started)."""
        async with self._lock:
            self._executors.pop(run_id, None)
            stored = self._runs.get(run_id)
            if stored is None:
                return None
            stored.status = "error"
            stored.errors.append({"type": "WorkflowError", "node_id": None, "message": error})
            stored.completed_at = datetime.now()
            return stored

    async def list_all(self) -> List[StoredRun]:
        async with self._lock:
            return list(self._runs.values())

    async def list_by_workflow(self, workflow_id: str) -> List[StoredRun]:
        async with self._lock:
            return [r for r in self._runs.values() if r.workflow_id == workflow_id]

    async def delete(self, run_id: str) -> bool:
        async with self._lock:
            self._executors.pop(run_id, None)
            if run_id in self._runs:
                del self._runs[run_id]
                return True
            return False

    def __len__(self) -> int:
        return len(self._runs)


# Global storage instances
workflow_storage = WorkflowStorage()
run_storage = RunStorage()
