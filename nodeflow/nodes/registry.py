"""
Node Type Registry.

Maps node type tags (e.g. "http-request") to node classes so that
persisted workflows can be turned back into live node instances.
"""

from typing import Any, Callable, Dict, List, Optional, Type
import logging

from nodeflow.engine.errors import UnknownTypeError
from nodeflow.engine.node import BaseNode
from nodeflow.engine.policy import NodePolicy


logger = logging.getLogger(__name__)


class NodeRegistry:
    """
    Registry of node types.

    Usage:
        registry = NodeRegistry()

        @registry.register("my-node")
        class MyNode(BaseNode):
            ...

        node = registry.create("my-node", "n1", {"key": "value"})
    """

    def __init__(self):
        self._types: Dict[str, Type[BaseNode]] = {}

    def register(self, node_type: str) -> Callable[[Type[BaseNode]], Type[BaseNode]]:
        """
        Decorator registering a node class under a type tag.

        The tag is also stored on the class as node_type.
        """
        def decorator(node_class: Type[BaseNode]) -> Type[BaseNode]:
            self.add(node_type, node_class)
            return node_class
        return decorator

    def add(self, node_type: str, node_class: Type[BaseNode]) -> None:
        """Register a node class directly (non-decorator version)."""
        if not node_type:
            raise ValueError("Node type tag cannot be empty")
        if not (isinstance(node_class, type) and issubclass(node_class, BaseNode)):
            raise TypeError(f"{node_class!r} is not a BaseNode subclass")
        existing = self._types.get(node_type)
        if existing is not None and existing is not node_class:
            logger.warning(f"Replacing node type '{node_type}': {existing.__name__} -> {node_class.__name__}")
        node_class.node_type = node_type
        self._types[node_type] = node_class
        logger.debug(f"Registered node type: {node_type}")

    def get(self, node_type: str) -> Type[BaseNode]:
        """
        Get the class for a type tag.

        Raises:
            UnknownTypeError: If the tag is not registered
        """
        node_class = self._types.get(node_type)
        if node_class is None:
            raise UnknownTypeError(node_type)
        return node_class

    def is_registered(self, node_type: str) -> bool:
        return node_type in self._types

    def registered_types(self) -> List[str]:
        return list(self._types.keys())

    def create(
        self,
        node_type: str,
        node_id: str,
        settings: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
        policy: Optional[NodePolicy] = None,
    ) -> BaseNode:
        """Instantiate a node of the given type."""
        return self.get(node_type)(node_id, settings, name=name, policy=policy)

    def describe(self) -> List[Dict[str, Any]]:
        """Describe every registered type, including its declared ports."""
        described = []
        for node_type, node_class in self._types.items():
            probe = node_class("__probe__")
            described.append({
                "type": node_type,
                "name": node_class.display_name,
                "category": node_class.category,
                "description": (node_class.__doc__ or "").strip().split("\n")[0],
                "input_ports": [port.to_dict() for port in probe.input_ports.values()],
                "output_ports": [port.to_dict() for port in probe.output_ports.values()],
            })
        return described

    def __contains__(self, node_type: str) -> bool:
        return self.is_registered(node_type)

    def __len__(self) -> int:
        return len(self._types)


# Global node registry instance
node_registry = NodeRegistry()


def register_node(node_type: str) -> Callable[[Type[BaseNode]], Type[BaseNode]]:
    """
    Convenience decorator to register a node type in the global registry.

    Usage:
        @register_node("timer-trigger")
        class TimerTriggerNode(BaseNode):
            ...
    """
    return node_registry.register(node_type)


def initialize_builtin_types() -> None:
    """
    Make sure the built-in node types are registered.

    Importing the node modules registers them; this re-registers any
    built-in tag that was removed or replaced since.
    """
    from nodeflow.nodes.agent import AgentNode
    from nodeflow.nodes.code import CodeNode
    from nodeflow.nodes.condition import ConditionNode
    from nodeflow.nodes.http import HttpRequestNode
    from nodeflow.nodes.trigger import TimerTriggerNode

    builtins = {
        "timer-trigger": TimerTriggerNode,
        "http-request": HttpRequestNode,
        "code": CodeNode,
        "condition": ConditionNode,
        "agent": AgentNode,
    }
    for node_type, node_class in builtins.items():
        if node_registry._types.get(node_type) is not node_class:
            node_registry.add(node_type, node_class)
