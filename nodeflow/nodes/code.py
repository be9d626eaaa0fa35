"""
Code node: runs a user-supplied Python snippet against its inputs.
"""

from typing import Any, Dict
from copy import deepcopy
import asyncio
import functools

from nodeflow.engine.node import BaseNode, ExecutionResult
from nodeflow.engine.ports import PortType
from nodeflow.engine.sandbox import compile_snippet
from nodeflow.engine.state import ExecutionContext
from nodeflow.nodes.registry import register_node


@register_node("code")
class CodeNode(BaseNode):
    """
    Executes a Python snippet.

    Settings:
        code: Function body; ``inputs`` holds the gathered inputs and the
            return value becomes the ``result`` output
    """

    display_name = "Code"
    category = "transform"

    def define_ports(self) -> None:
        self.add_input_port("data", PortType.ANY, description="Data for the snippet")
        self.add_output_port("result", PortType.ANY, description="Value returned by the snippet")

    async def execute(self, inputs: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
        snippet = compile_snippet(self.settings.get("code") or "", filename=f"<node {self.node_id}>")

        # Run in executor to not block the event loop
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, functools.partial(snippet, deepcopy(inputs)))

        return ExecutionResult.ok({"result": result})
