"""
Engine package - Core workflow execution components.
"""

from nodeflow.engine.errors import (
    NodeflowError,
    StructuralError,
    DuplicateNodeError,
    MissingNodeError,
    CycleError,
    IncompatiblePortsError,
    UnknownTypeError,
    ExpressionError,
    ExecutionError,
    WorkflowError,
    NodeTimeoutError,
    RetryExhaustedError,
)
from nodeflow.engine.ports import PortType, InputPort, OutputPort
from nodeflow.engine.state import ExecutionContext
from nodeflow.engine.policy import ErrorPolicy, ExecutionPolicy, NodePolicy
from nodeflow.engine.node import BaseNode, ExecutionResult, NodeStatus
from nodeflow.engine.graph import Connection, Workflow
from nodeflow.engine.executor import Executor, ExecutionStatus, WorkflowRunResult, execute_workflow

__all__ = [
    "NodeflowError",
    "StructuralError",
    "DuplicateNodeError",
    "MissingNodeError",
    "CycleError",
    "IncompatiblePortsError",
    "UnknownTypeError",
    "ExpressionError",
    "ExecutionError",
    "WorkflowError",
    "NodeTimeoutError",
    "RetryExhaustedError",
    "PortType",
    "InputPort",
    "OutputPort",
    "ExecutionContext",
    "ErrorPolicy",
    "ExecutionPolicy",
    "NodePolicy",
    "BaseNode",
    "ExecutionResult",
    "NodeStatus",
    "Connection",
    "Workflow",
    "Executor",
    "ExecutionStatus",
    "WorkflowRunResult",
    "execute_workflow",
]
