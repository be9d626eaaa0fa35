"""
Error taxonomy for the workflow engine.

Structural and unknown-type errors are raised to callers of the graph
mutation and deserialization APIs. Everything that happens while a node
runs is captured as a value in the run's result and error list instead.
"""

from typing import Optional


class NodeflowError(Exception):
    """Base class for all engine errors."""


# ============================================================
# Raised at graph-mutation / load time
# ============================================================

class StructuralError(NodeflowError):
    """The workflow graph would become invalid."""


class DuplicateNodeError(StructuralError):
    """A node with the same id already exists."""


class MissingNodeError(StructuralError):
    """A connection references a node that is not in the workflow."""


class CycleError(StructuralError):
    """A connection would introduce (or the graph contains) a cycle."""


class IncompatiblePortsError(StructuralError):
    """The ports joined by a connection do not carry compatible types."""


class UnknownTypeError(NodeflowError):
    """A node type tag has no registered constructor."""

    def __init__(self, node_type: str, message: Optional[str] = None):
        self.node_type = node_type
        super().__init__(message or f"Unknown node type: {node_type}")


# ============================================================
# Contained inside the resolver / a run
# ============================================================

class ExpressionError(NodeflowError):
    """An expression inside a setting could not be evaluated."""


class ExecutionError(NodeflowError):
    """A node's execute() failed or reported failure."""

    def __init__(self, node_id: str, message: str):
        self.node_id = node_id
        super().__init__(message)


class WorkflowError(NodeflowError):
    """Engine-level failure recorded in a run's error list."""

    def __init__(self, message: str, node_id: Optional[str] = None):
        self.node_id = node_id
        super().__init__(message)


class NodeTimeoutError(WorkflowError):
    """A node did not finish within its timeout."""


class RetryExhaustedError(WorkflowError):
    """A node kept failing after every allowed retry."""

    def __init__(self, message: str, node_id: Optional[str] = None, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message, node_id)


def describe_error(error: Exception) -> dict:
    """Convert a run error to a plain dictionary."""
    return {
        "type": type(error).__name__,
        "node_id": getattr(error, "node_id", None),
        "message": str(error),
    }
