"""
Timer trigger node.
"""

from typing import Any, Dict
import time

from nodeflow.engine.node import BaseNode, ExecutionResult
from nodeflow.engine.ports import PortType
from nodeflow.engine.state import ExecutionContext
from nodeflow.nodes.registry import register_node


@register_node("timer-trigger")
class TimerTriggerNode(BaseNode):
    """
    Starts a workflow.

    Settings:
        interval: Trigger interval in milliseconds (informational, the
            engine runs a workflow once per request)
        payload: Optional static data passed to downstream nodes
    """

    display_name = "Timer Trigger"
    category = "trigger"

    def define_ports(self) -> None:
        self.add_output_port("timestamp", PortType.NUMBER, description="Trigger time in milliseconds")
        self.add_output_port("data", PortType.OBJECT, description="Workflow and node identifiers")
        self.add_output_port("payload", PortType.ANY, description="Configured payload")

    async def execute(self, inputs: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
        return ExecutionResult.ok({
            "timestamp": int(time.time() * 1000),
            "data": {
                "workflow_id": context.workflow_id,
                "node_id": context.node_id,
            },
            "payload": self.settings.get("payload"),
        })
