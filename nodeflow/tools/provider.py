"""
Language model provider interface.

Agent nodes delegate response generation to an LLMProvider. Given the
conversation so far and the tools on offer, a provider returns generated
text, any tool invocations it wants performed, and token usage.
"""

from typing import Any, Dict, List, Optional, Sequence
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import uuid

from nodeflow.tools.registry import Tool


@dataclass
class ToolInvocation:
    """A tool call requested by the model."""
    tool_id: str
    input: Dict[str, Any] = field(default_factory=dict)
    invocation_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class Message:
    """
    A conversation message.

    Roles are "user", "assistant" and "tool". Tool messages carry the
    id of the invocation they answer.
    """
    role: str
    content: str
    tool_call_id: Optional[str] = None
    tool_calls: List[ToolInvocation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            data["tool_calls"] = [
                {"id": call.invocation_id, "tool_id": call.tool_id, "input": call.input}
                for call in self.tool_calls
            ]
        return data


@dataclass
class LLMResponse:
    """What a provider returns for one generation."""
    content: str
    tool_calls: List[ToolInvocation] = field(default_factory=list)
    tokens_used: int = 0
    execution_time_ms: float = 0.0


class LLMProvider(ABC):
    """Pluggable language model backend."""

    name: str = "provider"

    @abstractmethod
    async def generate_response(
        self,
        messages: Sequence[Message],
        *,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        tools: Optional[Sequence[Tool]] = None,
        max_tokens: int = 2000,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        """
        Generate the next assistant message.

        Args:
            messages: Conversation so far, oldest first
            system_prompt: Instructions for the model
            model: Model name
            tools: Tools the model may request
            max_tokens: Generation limit
            temperature: Sampling temperature

        Returns:
            LLMResponse with text, requested tool invocations and usage
        """
