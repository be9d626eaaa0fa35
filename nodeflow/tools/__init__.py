"""
Tools package - Tool registry, built-in tools and the language model interface.
"""

from nodeflow.tools.registry import (
    Tool,
    ToolCall,
    ToolExecutionResult,
    ToolRegistry,
    tool_registry,
    register_tool,
    get_tool,
)
from nodeflow.tools.provider import LLMProvider, LLMResponse, Message, ToolInvocation
from nodeflow.tools import builtin  # noqa: F401 - registers built-in tools

__all__ = [
    "Tool",
    "ToolCall",
    "ToolExecutionResult",
    "ToolRegistry",
    "tool_registry",
    "register_tool",
    "get_tool",
    "LLMProvider",
    "LLMResponse",
    "Message",
    "ToolInvocation",
]
