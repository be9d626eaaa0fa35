"""
AI agent node.

The agent sends a message to a language model provider. When tools are
enabled the provider may request tool invocations; the agent runs them
through the tool registry, feeds the results back, and repeats until the
provider stops asking or the tool call budget is spent. Every call is
recorded in the history returned with the response.
"""

from typing import Any, Dict, List, Optional
import json
import logging
import time

from nodeflow.config import settings as app_settings
from nodeflow.engine.node import BaseNode, ExecutionResult
from nodeflow.engine.policy import NodePolicy
from nodeflow.engine.ports import PortType
from nodeflow.engine.state import ExecutionContext
from nodeflow.nodes.registry import register_node
from nodeflow.tools.provider import LLMProvider, Message
from nodeflow.tools.registry import Tool, ToolCall, ToolExecutionResult, ToolRegistry, tool_registry


logger = logging.getLogger(__name__)


@register_node("agent")
class AgentNode(BaseNode):
    """
    Generates a response with a language model, optionally using tools.

    Settings:
        system_prompt: Instructions for the model
        model: Model name passed to the provider
        message: Message to send when no ``message`` input is connected
        enable_tools: Offer tools to the model
        tools: Tool ids to offer (defaults to every registered tool)
        max_tool_calls: Total tool invocations allowed per execution
        max_tokens, temperature: Passed through to the provider
    """

    display_name = "AI Agent"
    category = "ai"

    def __init__(
        self,
        node_id: str,
        settings: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
        policy: Optional[NodePolicy] = None,
        provider: Optional[LLMProvider] = None,
        registry: Optional[ToolRegistry] = None,
    ):
        super().__init__(node_id, settings, name=name, policy=policy)
        self.provider = provider
        self.registry = registry or tool_registry

    def define_ports(self) -> None:
        self.add_input_port("message", PortType.STRING, description="Message for the agent")
        self.add_output_port("response", PortType.AI_RESPONSE)
        self.add_output_port("tool_calls", PortType.ARRAY)
        self.add_output_port("metadata", PortType.OBJECT)

    def get_tools(self) -> List[Tool]:
        """Tools this agent may offer, in registry order."""
        allowed = self.settings.get("tools")
        if allowed is None:
            return list(self.registry)
        return [tool for tool in self.registry if tool.tool_id in allowed]

    async def execute(self, inputs: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
        start_time = time.time()
        message = inputs.get("message") or self.settings.get("message") or ""
        tools = self.get_tools() if self.settings.get("enable_tools") else []

        if self.provider is None:
            response = f"AI response: {message}"
            if tools:
                response += "\n\nAvailable tools: " + ", ".join(tool.name for tool in tools)
            tool_calls: List[ToolCall] = []
            tokens_used = 0
            rounds = 0
        else:
            response, tool_calls, tokens_used, rounds = await self._converse(message, tools, context)

        return ExecutionResult.ok({
            "response": response,
            "tool_calls": [call.to_dict() for call in tool_calls],
            "metadata": {
                "tokens_used": tokens_used,
                "execution_time_ms": (time.time() - start_time) * 1000,
                "tools_used": len(tool_calls),
                "rounds": rounds,
            },
        })

    async def _converse(self, message: str, tools: List[Tool], context: ExecutionContext):
        """Run the provider/tool loop and return (text, calls, tokens, rounds)."""
        budget = self.settings.get("max_tool_calls")
        if budget is None:
            budget = app_settings.AGENT_MAX_TOOL_CALLS
        available = {tool.tool_id: tool for tool in tools}

        messages = [Message(role="user", content=message)]
        tool_calls: List[ToolCall] = []
        tokens_used = 0
        rounds = 0

        while True:
            rounds += 1
            reply = await self.provider.generate_response(
                messages,
                system_prompt=self.settings.get("system_prompt"),
                model=self.settings.get("model"),
                tools=tools or None,
                max_tokens=self.settings.get("max_tokens", 2000),
                temperature=self.settings.get("temperature"),
            )
            tokens_used += reply.tokens_used

            if not tools or not reply.tool_calls or len(tool_calls) >= budget:
                if reply.tool_calls and tools:
                    logger.info(f"Agent {self.node_id} reached its tool call limit ({budget})")
                return reply.content, tool_calls, tokens_used, rounds

            messages.append(Message(role="assistant", content=reply.content, tool_calls=reply.tool_calls))

            for invocation in reply.tool_calls[: budget - len(tool_calls)]:
                tool = available.get(invocation.tool_id)
                if tool is None:
                    result = ToolExecutionResult(
                        success=False,
                        error=f"Tool not available to this agent: {invocation.tool_id}",
                    )
                else:
                    result = await self.registry.execute_tool(invocation.tool_id, invocation.input, context)

                logger.debug(f"Agent {self.node_id} called {invocation.tool_id}: success={result.success}")
                tool_calls.append(ToolCall(
                    tool_id=invocation.tool_id,
                    tool_name=tool.name if tool else "Unknown",
                    input=invocation.input,
                    result=result,
                ))
                messages.append(Message(
                    role="tool",
                    content=json.dumps(result.to_dict(), default=str),
                    tool_call_id=invocation.invocation_id,
                ))
