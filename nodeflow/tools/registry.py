"""
Tool Registry.

Tools are named, described callables with a pydantic parameter model.
Agent nodes invoke them through the registry, which validates the input,
times the call and always reports a uniform ToolExecutionResult, whether
the tool succeeded or raised.
"""

from typing import Any, Callable, Dict, Iterator, List, Optional, Type
from dataclasses import dataclass, field
import asyncio
import functools
import inspect
import logging
import time

from pydantic import BaseModel, ValidationError


logger = logging.getLogger(__name__)


@dataclass
class Tool:
    """
    A registered tool.

    Attributes:
        tool_id: Unique identifier for the tool
        name: Human-readable name
        func: The callable (sync or async), called with the validated parameters
        description: What the tool does
        parameters: Pydantic model describing the accepted input
        category: Grouping used by listings
    """
    tool_id: str
    name: str
    func: Callable[..., Any]
    description: str = ""
    parameters: Optional[Type[BaseModel]] = None
    category: str = "general"

    @property
    def is_async(self) -> bool:
        return asyncio.iscoroutinefunction(self.func)

    def parameter_schema(self) -> Dict[str, Any]:
        if self.parameters is None:
            return {"type": "object", "properties": {}}
        return self.parameters.model_json_schema()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize tool metadata."""
        return {
            "id": self.tool_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "parameters": self.parameter_schema(),
        }


@dataclass
class ToolExecutionResult:
    """Uniform outcome of a tool invocation."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "metadata": self.metadata,
        }


@dataclass
class ToolCall:
    """One entry of an agent invocation's tool call history."""
    tool_id: str
    tool_name: str
    input: Dict[str, Any]
    result: ToolExecutionResult
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool_id": self.tool_id,
            "tool_name": self.tool_name,
            "input": self.input,
            "result": self.result.to_dict(),
            "timestamp": self.timestamp,
        }


class ToolRegistry:
    """
    Registry for agent tools.

    Usage:
        registry = ToolRegistry()

        class EchoParams(BaseModel):
            text: str

        @registry.register("echo", parameters=EchoParams)
        def echo(text: str) -> dict:
            return {"text": text}

        result = await registry.execute_tool("echo", {"text": "hi"})
    """

    def __init__(self):
        self._tools: Dict[str, Tool] = {}

    def register(
        self,
        tool_id: Optional[str] = None,
        name: Optional[str] = None,
        description: str = "",
        parameters: Optional[Type[BaseModel]] = None,
        category: str = "general",
    ) -> Callable:
        """
        Decorator to register a function as a tool.

        Args:
            tool_id: Tool id (defaults to function name)
            name: Display name (defaults to the id)
            description: Tool description (defaults to docstring)
            parameters: Pydantic model validating the input
            category: Tool category

        Returns:
            Decorator function
        """
        def decorator(func: Callable) -> Callable:
            self.add(func, tool_id=tool_id, name=name, description=description,
                     parameters=parameters, category=category)
            return func

        return decorator

    def add(
        self,
        func: Callable,
        tool_id: Optional[str] = None,
        name: Optional[str] = None,
        description: str = "",
        parameters: Optional[Type[BaseModel]] = None,
        category: str = "general",
    ) -> Tool:
        """Directly add a function as a tool (non-decorator version)."""
        resolved_id = tool_id or func.__name__
        tool = Tool(
            tool_id=resolved_id,
            name=name or resolved_id,
            func=func,
            description=(description or func.__doc__ or "").strip(),
            parameters=parameters,
            category=category,
        )
        self.add_tool(tool)
        return tool

    def add_tool(self, tool: Tool) -> None:
        self._tools[tool.tool_id] = tool
        logger.debug(f"Registered tool: {tool.tool_id}")

    def get(self, tool_id: str) -> Optional[Tool]:
        """Get a tool by id."""
        return self._tools.get(tool_id)

    def remove(self, tool_id: str) -> bool:
        """Remove a tool from the registry."""
        if tool_id in self._tools:
            del self._tools[tool_id]
            return True
        return False

    def list_tools(self) -> List[Dict[str, Any]]:
        """List all registered tools with their metadata."""
        return [tool.to_dict() for tool in self._tools.values()]

    def get_by_category(self, category: str) -> List[Tool]:
        return [tool for tool in self._tools.values() if tool.category == category]

    async def execute_tool(
        self,
        tool_id: str,
        tool_input: Optional[Dict[str, Any]] = None,
        context: Any = None,
    ) -> ToolExecutionResult:
        """
        Validate the input and run a tool.

        Never raises: a missing tool, invalid input or an exception from the
        tool itself all produce a failed result.

        Args:
            tool_id: Tool to run
            tool_input: Raw input, validated against the tool's parameters
            context: Execution context of the calling node, passed to tools
                that declare a ``context`` parameter

        Returns:
            ToolExecutionResult with execution time metadata
        """
        tool = self.get(tool_id)
        if tool is None:
            return ToolExecutionResult(success=False, error=f"Tool not found: {tool_id}")

        start_time = time.time()

        def elapsed() -> Dict[str, Any]:
            return {"execution_time_ms": (time.time() - start_time) * 1000}

        try:
            if tool.parameters is not None:
                kwargs = tool.parameters.model_validate(tool_input or {}).model_dump()
            else:
                kwargs = dict(tool_input or {})
            if "context" in inspect.signature(tool.func).parameters:
                kwargs["context"] = context

            if tool.is_async:
                data = await tool.func(**kwargs)
            else:
                loop = asyncio.get_running_loop()
                data = await loop.run_in_executor(None, functools.partial(tool.func, **kwargs))
        except ValidationError as e:
            logger.warning(f"Invalid input for tool {tool_id}: {e}")
            return ToolExecutionResult(success=False, error=f"Invalid input: {e}", metadata=elapsed())
        except Exception as e:
            logger.warning(f"Tool {tool_id} failed: {e}")
            return ToolExecutionResult(success=False, error=str(e), metadata=elapsed())

        return ToolExecutionResult(success=True, data=data, metadata=elapsed())

    def has(self, tool_id: str) -> bool:
        """Check if a tool is registered."""
        return tool_id in self._tools

    def __contains__(self, tool_id: str) -> bool:
        return self.has(tool_id)

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())


# Global tool registry instance
tool_registry = ToolRegistry()


def register_tool(
    tool_id: Optional[str] = None,
    name: Optional[str] = None,
    description: str = "",
    parameters: Optional[Type[BaseModel]] = None,
    category: str = "general",
) -> Callable:
    """
    Convenience decorator to register a tool in the global registry.

    Usage:
        @register_tool("my-tool", description="Does something cool")
        def my_tool(data: str) -> dict:
            return {"result": data}
    """
    return tool_registry.register(tool_id, name, description, parameters, category)


def get_tool(tool_id: str) -> Optional[Tool]:
    """Get a tool from the global registry."""
    return tool_registry.get(tool_id)
