"""
Execution context for workflow runs.

The context is the per-run state threaded through every node: which
workflow and node are running, the outputs already produced upstream,
and a free-form metadata bag. Upstream outputs are write-once.
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from copy import deepcopy
import uuid


class ExecutionContext(BaseModel):
    """
    Shared state for a single workflow run.

    Attributes:
        workflow_id: Workflow being executed
        node_id: Node currently executing
        execution_id: Identifier of this run
        results: Upstream node id -> produced output
        metadata: Caller-supplied run metadata
    """

    workflow_id: str
    node_id: str = ""
    execution_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    results: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=datetime.now)

    class Config:
        arbitrary_types_allowed = True

    def publish(self, node_id: str, output: Any) -> None:
        """Record a node's output. Each node id may be written only once."""
        if node_id in self.results:
            raise RuntimeError(f"Output for node '{node_id}' was already published")
        self.results[node_id] = output

    def has_result(self, node_id: str) -> bool:
        return node_id in self.results

    def get_result(self, node_id: str, default: Any = None) -> Any:
        """Get an upstream node's output."""
        return self.results.get(node_id, default)

    def expression_scope(self) -> Dict[str, Any]:
        """Values visible to {{$context.*}} expressions."""
        scope = deepcopy(self.metadata)
        scope.update({
            "workflow_id": self.workflow_id,
            "node_id": self.node_id,
            "execution_id": self.execution_id,
        })
        return scope

    def for_node(self, node_id: str) -> "ExecutionContext":
        """Point the context at the node about to execute."""
        self.node_id = node_id
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert the context to a plain dictionary."""
        return {
            "workflow_id": self.workflow_id,
            "node_id": self.node_id,
            "execution_id": self.execution_id,
            "results": self.results,
            "metadata": self.metadata,
            "started_at": self.started_at.isoformat(),
        }

    @classmethod
    def create(
        cls,
        workflow_id: str,
        execution_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "ExecutionContext":
        """Create a fresh context for a new run."""
        return cls(
            workflow_id=workflow_id,
            execution_id=execution_id or str(uuid.uuid4()),
            metadata=deepcopy(metadata or {}),
        )
