"""
Node Definition for the Workflow Engine.

Nodes are the units of work in a workflow. Each node is constructed from
an id and a raw settings dict. The raw settings may contain expressions;
before every execution the engine resolves them into a fresh, concrete
copy, so the raw settings remain the source of truth.
"""

from typing import Any, ClassVar, Dict, Optional
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from copy import deepcopy
from enum import Enum
import logging

from nodeflow.engine.expressions import ExpressionResolver
from nodeflow.engine.policy import NodePolicy
from nodeflow.engine.ports import InputPort, OutputPort, PortType, is_compatible, value_matches
from nodeflow.engine.state import ExecutionContext


logger = logging.getLogger(__name__)


class NodeStatus(str, Enum):
    """Lifecycle of a node within a run."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class ExecutionResult:
    """
    Outcome of a single node execution.

    Attributes:
        success: Whether the node succeeded
        data: Output produced by the node
        error: Error message when the node failed
        metadata: Additional execution details
        branch: Selected fan-out branch (e.g. 0 = true, 1 = false)
    """
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    branch: Optional[int] = None

    @classmethod
    def ok(cls, data: Optional[Dict[str, Any]] = None, branch: Optional[int] = None, **metadata) -> "ExecutionResult":
        return cls(success=True, data=data if data is not None else {}, branch=branch, metadata=metadata)

    @classmethod
    def fail(cls, error: str, data: Optional[Dict[str, Any]] = None, **metadata) -> "ExecutionResult":
        return cls(success=False, data=data, error=error, metadata=metadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "metadata": self.metadata,
            "branch": self.branch,
        }


class BaseNode(ABC):
    """
    Base class for all workflow nodes.

    Subclasses declare their ports in define_ports() and implement
    execute(). The type tag is assigned when the class is registered
    with the node registry.

    Attributes:
        node_id: Unique identifier within a workflow
        name: Human-readable name
        original_settings: Raw settings, possibly containing expressions
        settings: Settings resolved for the current (or last) run
        status: Current lifecycle status
        execution_count: Number of completed executions
        policy: Optional per-node failure handling overrides
    """

    node_type: ClassVar[str] = ""
    display_name: ClassVar[str] = "Node"
    category: ClassVar[str] = "general"

    def __init__(
        self,
        node_id: str,
        settings: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
        policy: Optional[NodePolicy] = None,
    ):
        if not node_id:
            raise ValueError("Node id cannot be empty")
        if settings is not None and not isinstance(settings, dict):
            raise ValueError(f"Settings for node '{node_id}' must be a dict")

        self.node_id = node_id
        self.name = name or self.display_name
        self.original_settings: Dict[str, Any] = deepcopy(settings or {})
        self.settings: Dict[str, Any] = deepcopy(self.original_settings)
        self.policy = policy

        self.status = NodeStatus.IDLE
        self.execution_count = 0
        self.last_execution_time: Optional[datetime] = None

        self.input_ports: Dict[str, InputPort] = {}
        self.output_ports: Dict[str, OutputPort] = {}
        self.define_ports()

    # ------------------------------------------------------------
    # Ports
    # ------------------------------------------------------------

    def define_ports(self) -> None:
        """Declare input and output ports. Override in subclasses."""

    def add_input_port(self, port_id: str, port_type: PortType = PortType.ANY, **kwargs) -> None:
        self.input_ports[port_id] = InputPort(port_id=port_id, port_type=port_type, **kwargs)

    def add_output_port(self, port_id: str, port_type: PortType = PortType.ANY, **kwargs) -> None:
        self.output_ports[port_id] = OutputPort(port_id=port_id, port_type=port_type, **kwargs)

    def is_input_compatible(self, port_id: str, source_port: OutputPort) -> bool:
        """Check whether an upstream output port may feed one of our inputs."""
        port = self.input_ports.get(port_id)
        if port is None:
            return False
        return is_compatible(source_port.port_type, port.port_type)

    def validate_inputs(self, inputs: Dict[str, Any]) -> Dict[str, Any]:
        """
        Check gathered inputs against the declared input ports.

        Required ports must be present, present values must match the port
        type, and ports with a declared default receive it when absent.
        Inputs without a declared port are passed through.

        Raises:
            ValueError: If a required input is missing or has the wrong type
        """
        validated = dict(inputs)
        for port_id, port in self.input_ports.items():
            value = validated.get(port_id)
            if value is None:
                if port.has_default:
                    validated[port_id] = deepcopy(port.default)
                elif port.required:
                    raise ValueError(f"Required input '{port_id}' is missing for node '{self.node_id}'")
                continue
            if not value_matches(port.port_type, value):
                raise ValueError(
                    f"Invalid input for port '{port_id}' in node '{self.node_id}': "
                    f"expected {PortType(port.port_type).value}, got {type(value).__name__}"
                )
        return validated

    # ------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------

    def resolve_dynamic_settings(
        self,
        inputs: Dict[str, Any],
        context: ExecutionContext,
    ) -> Dict[str, Any]:
        """
        Produce concrete settings for this run.

        Walks a deep copy of the raw settings and replaces every
        expression using upstream results, the inputs, the context and
        the raw settings themselves. Never raises for a bad expression;
        the offending string is kept as written.
        """
        raw = deepcopy(self.original_settings)
        resolver = ExpressionResolver(
            results=context.results,
            inputs=inputs,
            settings=raw,
            context=context.expression_scope(),
        )
        return resolver.resolve(raw)

    # ------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------

    @abstractmethod
    async def execute(
        self,
        inputs: Dict[str, Any],
        context: ExecutionContext,
    ) -> ExecutionResult:
        """
        Run the node.

        Args:
            inputs: Values gathered from upstream connections
            context: The run's execution context

        Returns:
            ExecutionResult describing the outcome
        """

    def set_status(self, status: NodeStatus) -> None:
        self.status = status
        if status == NodeStatus.COMPLETED:
            self.execution_count += 1
            self.last_execution_time = datetime.now()

    def reset(self) -> None:
        """Return to idle before a new run."""
        self.status = NodeStatus.IDLE

    def clone(self, new_id: Optional[str] = None) -> "BaseNode":
        """Create a fresh, idle copy of this node from its raw settings."""
        cloned = type(self)(new_id or self.node_id, deepcopy(self.original_settings), name=self.name)
        cloned.policy = deepcopy(self.policy)
        return cloned

    def get_node_info(self) -> Dict[str, Any]:
        return {
            "id": self.node_id,
            "name": self.name,
            "type": self.node_type,
            "category": self.category,
            "status": self.status.value,
            "settings": self.settings,
            "original_settings": self.original_settings,
            "input_ports": [port.to_dict() for port in self.input_ports.values()],
            "output_ports": [port.to_dict() for port in self.output_ports.values()],
            "execution_count": self.execution_count,
            "last_execution_time": self.last_execution_time.isoformat() if self.last_execution_time else None,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id='{self.node_id}', type='{self.node_type}', status='{self.status.value}')"
