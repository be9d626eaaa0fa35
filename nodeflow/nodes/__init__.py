"""
Nodes package - Node type registry and built-in node types.

Importing this package registers the built-in types.
"""

from nodeflow.nodes.registry import NodeRegistry, node_registry, register_node, initialize_builtin_types
from nodeflow.nodes.trigger import TimerTriggerNode
from nodeflow.nodes.http import HttpRequestNode
from nodeflow.nodes.code import CodeNode
from nodeflow.nodes.condition import ConditionNode
from nodeflow.nodes.agent import AgentNode

__all__ = [
    "NodeRegistry",
    "node_registry",
    "register_node",
    "initialize_builtin_types",
    "TimerTriggerNode",
    "HttpRequestNode",
    "CodeNode",
    "ConditionNode",
    "AgentNode",
]
